"""MVCC transactions over an ordered key-value store."""

from __future__ import annotations

import bisect
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional, Tuple

from .encoding import encode_bytes, encode_u64, take_byte, take_bytes, take_u64
from .errors import InternalError, InvalidValueError, ReadOnlyError, SerializationError
from .locks import LockManager

U64_MAX = 2**64 - 1

Bound = Optional[Tuple[bytes, bool]]


class KvStore:
    """An ordered in-memory key-value store.

    Scan bounds are ``None`` for unbounded or a ``(key, inclusive)`` pair.
    """

    def __init__(self) -> None:
        self._data: dict[bytes, bytes] = {}
        self._keys: list[bytes] = []

    def get(self, key: bytes) -> bytes | None:
        """Returns the value of a key, or None if it is absent."""
        return self._data.get(bytes(key))

    def set(self, key: bytes, value: bytes) -> None:
        """Sets a key to a value."""
        key = bytes(key)
        if key not in self._data:
            bisect.insort(self._keys, key)
        self._data[key] = bytes(value)

    def delete(self, key: bytes) -> None:
        """Deletes a key; deleting an absent key does nothing."""
        key = bytes(key)
        if key in self._data:
            del self._data[key]
            self._keys.pop(bisect.bisect_left(self._keys, key))

    def scan(self, start: Bound = None, end: Bound = None) -> list[tuple[bytes, bytes]]:
        """Returns the key/value pairs within the bounds, in key order."""
        lo = 0
        hi = len(self._keys)
        if start is not None:
            key, inclusive = start
            find = bisect.bisect_left if inclusive else bisect.bisect_right
            lo = find(self._keys, bytes(key))
        if end is not None:
            key, inclusive = end
            find = bisect.bisect_right if inclusive else bisect.bisect_left
            hi = find(self._keys, bytes(key))
        return [(k, self._data[k]) for k in self._keys[lo:hi]]

    def flush(self) -> None:
        """Persists pending writes. The in-memory store has nothing to flush."""


class ModeKind(Enum):
    """The kinds of transaction mode."""

    READ_WRITE = "read_write"
    READ_ONLY = "read_only"
    SNAPSHOT = "snapshot"


@dataclass(frozen=True)
class Mode:
    """A transaction mode. Snapshot modes carry the version they read at."""

    kind: ModeKind = ModeKind.READ_WRITE
    version: int | None = None

    def __post_init__(self) -> None:
        if self.kind is ModeKind.SNAPSHOT:
            if self.version is None:
                raise InvalidValueError("Snapshot mode requires a version")
        elif self.version is not None:
            raise InvalidValueError(f"Mode {self.kind.name} takes no version")

    def allows_write(self) -> bool:
        """Whether the mode can mutate data."""
        return self.kind is ModeKind.READ_WRITE

    def satisfies(self, other: Mode) -> bool:
        """Whether this mode satisfies another (e.g. read-write satisfies read-only)."""
        if other.kind is ModeKind.READ_ONLY and self.kind in (
            ModeKind.READ_WRITE,
            ModeKind.SNAPSHOT,
        ):
            return True
        return self == other


class KeyKind(Enum):
    """The kinds of MVCC key, by their encoded prefix."""

    TXN_NEXT = 0x01
    TXN_ACTIVE = 0x02
    TXN_SNAPSHOT = 0x03
    TXN_UPDATE = 0x04
    METADATA = 0x05
    RECORD = 0xFF


@dataclass(frozen=True)
class MvccKey:
    """An MVCC key. The encoding preserves grouping and ordering of keys.

    TXN_ACTIVE and TXN_UPDATE use ``txn_id``; TXN_SNAPSHOT and RECORD use
    ``version``; TXN_UPDATE, RECORD and METADATA use ``key``.
    """

    kind: KeyKind
    txn_id: int | None = None
    version: int | None = None
    key: bytes | None = None

    def encode(self) -> bytes:
        """Encodes the key into bytes."""
        prefix = bytes([self.kind.value])
        if self.kind is KeyKind.TXN_NEXT:
            return prefix
        if self.kind is KeyKind.TXN_ACTIVE:
            return prefix + encode_u64(self.txn_id)
        if self.kind is KeyKind.TXN_SNAPSHOT:
            return prefix + encode_u64(self.version)
        if self.kind is KeyKind.TXN_UPDATE:
            return prefix + encode_u64(self.txn_id) + encode_bytes(self.key)
        if self.kind is KeyKind.METADATA:
            return prefix + encode_bytes(self.key)
        return prefix + encode_bytes(self.key) + encode_u64(self.version)


def decode_key(data: bytes) -> MvccKey:
    """Decodes an MVCC key from bytes."""
    prefix, rest = take_byte(data)
    if prefix == KeyKind.TXN_NEXT.value:
        key = MvccKey(KeyKind.TXN_NEXT)
    elif prefix == KeyKind.TXN_ACTIVE.value:
        txn_id, rest = take_u64(rest)
        key = MvccKey(KeyKind.TXN_ACTIVE, txn_id=txn_id)
    elif prefix == KeyKind.TXN_SNAPSHOT.value:
        version, rest = take_u64(rest)
        key = MvccKey(KeyKind.TXN_SNAPSHOT, version=version)
    elif prefix == KeyKind.TXN_UPDATE.value:
        txn_id, rest = take_u64(rest)
        raw, rest = take_bytes(rest)
        key = MvccKey(KeyKind.TXN_UPDATE, txn_id=txn_id, key=raw)
    elif prefix == KeyKind.METADATA.value:
        raw, rest = take_bytes(rest)
        key = MvccKey(KeyKind.METADATA, key=raw)
    elif prefix == KeyKind.RECORD.value:
        raw, rest = take_bytes(rest)
        version, rest = take_u64(rest)
        key = MvccKey(KeyKind.RECORD, version=version, key=raw)
    else:
        raise InternalError(f"Unknown MVCC key prefix {prefix:x}")
    if rest:
        raise InternalError("Unexpected data remaining at end of key")
    return key


def _txn_next() -> bytes:
    return MvccKey(KeyKind.TXN_NEXT).encode()


def _txn_active(txn_id: int) -> bytes:
    return MvccKey(KeyKind.TXN_ACTIVE, txn_id=txn_id).encode()


def _txn_snapshot(version: int) -> bytes:
    return MvccKey(KeyKind.TXN_SNAPSHOT, version=version).encode()


def _txn_update(txn_id: int, key: bytes) -> bytes:
    return MvccKey(KeyKind.TXN_UPDATE, txn_id=txn_id, key=key).encode()


def _record(key: bytes, version: int) -> bytes:
    return MvccKey(KeyKind.RECORD, version=version, key=bytes(key)).encode()


def _decode_record(raw: bytes) -> MvccKey:
    key = decode_key(raw)
    if key.kind is not KeyKind.RECORD:
        raise InternalError(f"Expected Record, got {key}")
    return key


def _serialize_u64(n: int) -> bytes:
    return encode_u64(n)


def _deserialize_u64(data: bytes) -> int:
    n, rest = take_u64(data)
    if rest:
        raise InternalError("Unexpected data after integer")
    return n


def _serialize_mode(mode: Mode) -> bytes:
    if mode.kind is ModeKind.READ_WRITE:
        return b"\x00"
    if mode.kind is ModeKind.READ_ONLY:
        return b"\x01"
    return b"\x02" + encode_u64(mode.version)


def _deserialize_mode(data: bytes) -> Mode:
    tag, rest = take_byte(data)
    if tag == 0x00 and not rest:
        return Mode(ModeKind.READ_WRITE)
    if tag == 0x01 and not rest:
        return Mode(ModeKind.READ_ONLY)
    if tag == 0x02:
        return Mode(ModeKind.SNAPSHOT, _deserialize_u64(rest))
    raise InternalError(f"Invalid transaction mode encoding {bytes(data)!r}")


def _serialize_ids(ids: frozenset[int]) -> bytes:
    return b"".join(encode_u64(i) for i in sorted(ids))


def _deserialize_ids(data: bytes) -> frozenset[int]:
    ids = set()
    rest = bytes(data)
    while rest:
        n, rest = take_u64(rest)
        ids.add(n)
    return frozenset(ids)


def _serialize_value(value: bytes | None) -> bytes:
    return b"\x00" if value is None else b"\x01" + bytes(value)


def _deserialize_value(data: bytes) -> bytes | None:
    if data == b"\x00":
        return None
    if data[:1] == b"\x01":
        return bytes(data[1:])
    raise InternalError(f"Invalid record value {bytes(data)!r}")


@dataclass(frozen=True)
class Snapshot:
    """Visibility information: the version and the transactions invisible to it."""

    version: int
    invisible: frozenset[int] = frozenset()

    def can_access(self, version: int) -> bool:
        """Whether the given version is visible in this snapshot."""
        return version <= self.version and version not in self.invisible


def take_snapshot(store: KvStore, version: int) -> Snapshot:
    """Takes a new snapshot of active transactions and persists it."""
    invisible = set()
    for raw, _ in store.scan((_txn_active(0), True), (_txn_active(version), False)):
        key = decode_key(raw)
        if key.kind is not KeyKind.TXN_ACTIVE:
            raise InternalError(f"Expected TxnActive, got {key}")
        invisible.add(key.txn_id)
    snapshot = Snapshot(version, frozenset(invisible))
    store.set(_txn_snapshot(version), _serialize_ids(snapshot.invisible))
    return snapshot


def restore_snapshot(store: KvStore, version: int) -> Snapshot:
    """Restores a persisted snapshot, or raises if none exists for the version."""
    data = store.get(_txn_snapshot(version))
    if data is None:
        raise InvalidValueError(f"Snapshot not found for version {version}")
    return Snapshot(version, _deserialize_ids(data))


class MvccScan:
    """Iterates visible, non-deleted, latest-version entries from both ends."""

    def __init__(self, items: list[tuple[bytes, bytes]], snapshot: Snapshot) -> None:
        self._items: deque[tuple[bytes, bytes]] = deque()
        for raw, value in items:
            key = _decode_record(raw)
            if snapshot.can_access(key.version):
                self._items.append((key.key, value))
        self._next_back_seen: bytes | None = None

    def __iter__(self) -> MvccScan:
        return self

    def __next__(self) -> tuple[bytes, bytes]:
        while self._items:
            key, raw = self._items.popleft()
            if self._items and self._items[0][0] == key:
                continue
            value = _deserialize_value(raw)
            if value is not None:
                return key, value
        raise StopIteration

    def next_back(self) -> tuple[bytes, bytes] | None:
        """Returns the next entry from the back, or None when exhausted."""
        while self._items:
            key, raw = self._items.pop()
            if self._next_back_seen == key:
                continue
            self._next_back_seen = key
            value = _deserialize_value(raw)
            if value is not None:
                return key, value
        return None

    def __reversed__(self) -> Iterator[tuple[bytes, bytes]]:
        while (item := self.next_back()) is not None:
            yield item


class Transaction:
    """An MVCC transaction. Create with begin_transaction() or resume_transaction()."""

    def __init__(
        self,
        store: KvStore,
        lock: threading.RLock,
        txn_id: int,
        mode: Mode,
        snapshot: Snapshot,
        lock_manager: LockManager | None = None,
    ) -> None:
        self._store = store
        self._lock = lock
        self.id = txn_id
        self.mode = mode
        self.snapshot = snapshot
        self._lock_manager = lock_manager

    @property
    def _ssi(self) -> LockManager | None:
        if self._lock_manager is not None and self.mode.allows_write():
            return self._lock_manager
        return None

    def commit(self) -> None:
        """Commits the transaction by removing it from the active set."""
        with self._lock:
            lock_manager = self._ssi
            if lock_manager is not None:
                lock_manager.check_abort(self.id)
                data = self._store.get(_txn_next())
                commit_timestamp = 1 if data is None else _deserialize_u64(data)
                lock_manager.commit_txn(self.id, commit_timestamp)
            self._store.delete(_txn_active(self.id))
            self._store.flush()

    def rollback(self) -> None:
        """Rolls back the transaction, removing every entry it wrote."""
        with self._lock:
            if self.mode.allows_write():
                if self._lock_manager is not None:
                    self._lock_manager.rollback_txn(self.id)
                to_delete = []
                updates = self._store.scan(
                    (_txn_update(self.id, b""), True),
                    (_txn_update(self.id + 1, b""), False),
                )
                for raw, _ in updates:
                    key = decode_key(raw)
                    if key.kind is not KeyKind.TXN_UPDATE:
                        raise InternalError(f"Expected TxnUpdate, got {key}")
                    to_delete.append(key.key)
                    to_delete.append(raw)
                for raw in to_delete:
                    self._store.delete(raw)
            self._store.delete(_txn_active(self.id))

    def _write(self, key: bytes, value: bytes | None) -> None:
        if not self.mode.allows_write():
            raise ReadOnlyError()
        key = bytes(key)
        with self._lock:
            lock_manager = self._ssi
            if lock_manager is not None:
                lock_manager.acquire_write_lock(key, self.id)
                lock_manager.check_read_locks(key, self.id)

            lowest = min(self.snapshot.invisible, default=self.id + 1)
            newer = self._store.scan(
                (_record(key, lowest), True), (_record(key, U64_MAX), False)
            )
            for raw, _ in reversed(newer):
                if not self.snapshot.can_access(_decode_record(raw).version):
                    raise SerializationError()

            record = _record(key, self.id)
            self._store.set(_txn_update(self.id, record), b"\x00")
            self._store.set(record, _serialize_value(value))

    def set(self, key: bytes, value: bytes) -> None:
        """Sets a key."""
        self._write(key, bytes(value))

    def delete(self, key: bytes) -> None:
        """Deletes a key."""
        self._write(key, None)

    def get(self, key: bytes) -> bytes | None:
        """Fetches the latest visible value of a key, or None."""
        key = bytes(key)
        with self._lock:
            lock_manager = self._ssi
            if lock_manager is not None:
                lock_manager.acquire_read_lock(key, self.id)
                lock_manager.check_write_locks(key, self.id)

            value = None
            versions = self._store.scan(
                (_record(key, 0), True), (_record(key, self.id), True)
            )
            for raw, data in reversed(versions):
                if self.snapshot.can_access(_decode_record(raw).version):
                    value = _deserialize_value(data)
                    break

            if lock_manager is not None:
                newer = self._store.scan(
                    (_record(key, self.id + 1), True), (_record(key, U64_MAX), True)
                )
                for raw, _ in newer:
                    creator = _decode_record(raw).version
                    lock_manager.abort_or_record_conflict(creator, self.id)
            return value

    def scan(self, start: bytes | None = None, end: bytes | None = None) -> MvccScan:
        """Scans keys from start (inclusive) to end (exclusive); None is unbounded."""
        lower = _record(b"" if start is None else start, 0)
        upper = None if end is None else (_record(end, 0), False)
        with self._lock:
            items = self._store.scan((lower, True), upper)
        return MvccScan(items, self.snapshot)

    def scan_prefix(self, prefix: bytes) -> MvccScan:
        """Scans keys that start with the given non-empty prefix."""
        if not prefix:
            raise InternalError("Scan prefix cannot be empty")
        end = bytearray(prefix)
        for i in reversed(range(len(end))):
            if end[i] == 0xFF:
                if i == 0:
                    raise InternalError("Invalid prefix scan range")
                end[i] = 0x00
                continue
            end[i] += 1
            break
        return self.scan(bytes(prefix), bytes(end))


def begin_transaction(
    store: KvStore,
    lock: threading.RLock,
    mode: Mode,
    lock_manager: LockManager | None = None,
) -> Transaction:
    """Begins a new transaction in the given mode."""
    with lock:
        data = store.get(_txn_next())
        txn_id = 1 if data is None else _deserialize_u64(data)
        store.set(_txn_next(), _serialize_u64(txn_id + 1))
        store.set(_txn_active(txn_id), _serialize_mode(mode))
        # Every transaction takes a snapshot, so that later snapshot
        # transactions at this version see the right set of active ones.
        snapshot = take_snapshot(store, txn_id)
        if mode.kind is ModeKind.SNAPSHOT:
            snapshot = restore_snapshot(store, mode.version)
    if lock_manager is not None:
        lock_manager.init_txn(txn_id)
    return Transaction(store, lock, txn_id, mode, snapshot, lock_manager)


def resume_transaction(
    store: KvStore,
    lock: threading.RLock,
    txn_id: int,
    lock_manager: LockManager | None = None,
) -> Transaction:
    """Resumes an active transaction, raising if it is not active."""
    with lock:
        data = store.get(_txn_active(txn_id))
        if data is None:
            raise InvalidValueError(f"No active transaction {txn_id}")
        mode = _deserialize_mode(data)
        version = mode.version if mode.kind is ModeKind.SNAPSHOT else txn_id
        snapshot = restore_snapshot(store, version)
    if lock_manager is not None:
        lock_manager.init_txn(txn_id)
    return Transaction(store, lock, txn_id, mode, snapshot, lock_manager)