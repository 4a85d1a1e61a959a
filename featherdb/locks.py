"""Lock manager for Serializable Snapshot Isolation."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from .errors import InternalError, SerializationError


@dataclass
class TxnStatus:
    """Conflict flags and commit state of one transaction."""

    in_conflict: bool = False
    out_conflict: bool = False
    commit_timestamp: int | None = None


class LockManager:
    """Tracks SIREAD and WRITE locks and rw-dependencies between transactions."""

    def __init__(self) -> None:
        self._read_locks: dict[bytes, set[int]] = {}
        self._write_locks: dict[bytes, set[int]] = {}
        self._txn_status: dict[int, TxnStatus] = {}
        self._mutex = threading.RLock()

    def _status(self, txn_id: int) -> TxnStatus:
        try:
            return self._txn_status[txn_id]
        except KeyError:
            raise InternalError(
                f"Expected status of txn {txn_id} in SSI manager."
            ) from None

    def init_txn(self, txn_id: int) -> None:
        """Initializes a transaction with clear flags and no commit timestamp."""
        with self._mutex:
            self._txn_status[txn_id] = TxnStatus()

    def _release(self, locks: dict[bytes, set[int]], txn_id: int) -> None:
        for owners in locks.values():
            owners.discard(txn_id)

    def commit_txn(self, txn_id: int, commit_timestamp: int) -> None:
        """Marks the transaction committed and releases its WRITE locks."""
        with self._mutex:
            self._status(txn_id).commit_timestamp = commit_timestamp
            self._release(self._write_locks, txn_id)

    def rollback_txn(self, txn_id: int) -> None:
        """Forgets the transaction and releases all its locks."""
        with self._mutex:
            self._release(self._read_locks, txn_id)
            self._release(self._write_locks, txn_id)
            self._txn_status.pop(txn_id, None)

    def acquire_read_lock(self, key: bytes, owner_id: int) -> None:
        """Acquires a SIREAD lock on the key."""
        with self._mutex:
            self._read_locks.setdefault(bytes(key), set()).add(owner_id)

    def acquire_write_lock(self, key: bytes, owner_id: int) -> None:
        """Acquires a WRITE lock on the key."""
        with self._mutex:
            self._write_locks.setdefault(bytes(key), set()).add(owner_id)

    def check_read_locks(self, key: bytes, txn_id: int) -> None:
        """Records an rw-dependency from every reader of the key to the writer."""
        with self._mutex:
            readers = self._read_locks.get(bytes(key))
            if readers is None:
                return
            for owner_id in list(readers):
                if owner_id == txn_id:
                    continue
                status = self._status(owner_id)
                if status.commit_timestamp is None:
                    self.record_conflict(owner_id, txn_id)
                elif status.commit_timestamp > txn_id and status.in_conflict:
                    raise SerializationError()
            self.check_abort(txn_id)

    def check_write_locks(self, key: bytes, txn_id: int) -> None:
        """Records an rw-dependency from the reader to other lock holders of the key."""
        with self._mutex:
            owners = self._read_locks.get(bytes(key))
            if owners is None:
                return
            for owner_id in list(owners):
                if owner_id == txn_id:
                    continue
                self.record_conflict(txn_id, owner_id)
            self.check_abort(txn_id)

    def abort_or_record_conflict(self, creator_id: int, txn_id: int) -> None:
        """Records a dependency on the creator of a newer version, aborting if needed."""
        with self._mutex:
            status = self._status(creator_id)
            if status.commit_timestamp is not None and status.out_conflict:
                raise SerializationError()
            self.record_conflict(txn_id, creator_id)
            self.check_abort(txn_id)

    def record_conflict(self, out_id: int, in_id: int) -> None:
        """Records an rw-dependency from out_id (reader) to in_id (writer)."""
        with self._mutex:
            out_status = self._status(out_id)
            in_status = self._status(in_id)
            out_status.out_conflict = True
            in_status.in_conflict = True

    def check_abort(self, txn_id: int) -> None:
        """Raises SerializationError if the transaction has become a pivot."""
        with self._mutex:
            status = self._status(txn_id)
            if status.in_conflict and status.out_conflict:
                raise SerializationError()