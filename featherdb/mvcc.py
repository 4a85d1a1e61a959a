"""An MVCC-based transactional key-value store."""

from __future__ import annotations

import threading

from .locks import LockManager
from .transaction import (
    KeyKind,
    KvStore,
    Mode,
    ModeKind,
    MvccKey,
    Transaction,
    begin_transaction,
    resume_transaction,
)


class MVCC:
    """Transactional key-value store using multi-version concurrency control.

    With ``serializable`` set, transactions run under Serializable Snapshot
    Isolation; otherwise plain snapshot isolation is used.
    """

    def __init__(self, store: KvStore | None = None, serializable: bool = False) -> None:
        self._store = store if store is not None else KvStore()
        self._lock = threading.RLock()
        self._lock_manager = LockManager() if serializable else None

    def begin(self) -> Transaction:
        """Begins a new read-write transaction."""
        return self.begin_with_mode(Mode(ModeKind.READ_WRITE))

    def begin_with_mode(self, mode: Mode) -> Transaction:
        """Begins a new transaction in the given mode."""
        return begin_transaction(self._store, self._lock, mode, self._lock_manager)

    def resume(self, txn_id: int) -> Transaction:
        """Resumes the active transaction with the given ID."""
        return resume_transaction(self._store, self._lock, txn_id, self._lock_manager)

    def get_metadata(self, key: bytes) -> bytes | None:
        """Fetches an unversioned metadata value."""
        with self._lock:
            return self._store.get(MvccKey(KeyKind.METADATA, key=bytes(key)).encode())

    def set_metadata(self, key: bytes, value: bytes) -> None:
        """Sets an unversioned metadata value."""
        with self._lock:
            self._store.set(MvccKey(KeyKind.METADATA, key=bytes(key)).encode(), bytes(value))