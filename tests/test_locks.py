import pytest

from featherdb.errors import InternalError, SerializationError
from featherdb.locks import LockManager, TxnStatus


@pytest.fixture
def manager():
    lm = LockManager()
    for txn in (1, 2, 3, 4):
        lm.init_txn(txn)
    return lm


def test_txn_status_defaults():
    status = TxnStatus()
    assert (status.in_conflict, status.out_conflict, status.commit_timestamp) == (
        False,
        False,
        None,
    )


def test_unknown_txn_is_internal_error():
    lm = LockManager()
    with pytest.raises(InternalError) as info:
        lm.check_abort(5)
    assert str(info.value) == "Expected status of txn 5 in SSI manager."


def test_commit_unknown_txn(manager):
    with pytest.raises(InternalError):
        manager.commit_txn(9, 10)


def test_single_direction_conflict_is_fine(manager):
    manager.record_conflict(1, 2)
    manager.check_abort(1)
    manager.check_abort(2)
    with pytest.raises(SerializationError):
        manager.record_conflict(3, 1)
        manager.check_abort(1)


def test_pivot_aborts(manager):
    manager.record_conflict(1, 2)
    manager.record_conflict(2, 3)
    with pytest.raises(SerializationError):
        manager.check_abort(2)


def test_check_read_locks_records_conflict(manager):
    manager.acquire_read_lock(b"key", 1)
    manager.check_read_locks(b"key", 2)
    # txn 1 now has an out-conflict; a further in-conflict makes it a pivot.
    manager.record_conflict(3, 1)
    with pytest.raises(SerializationError):
        manager.check_abort(1)


def test_check_read_locks_skips_own_lock(manager):
    manager.acquire_read_lock(b"key", 1)
    manager.acquire_read_lock(b"key", 2)
    # Only the lock of txn 1 counts: txn 2 gains an in-conflict, not both flags.
    manager.check_read_locks(b"key", 2)
    manager.record_conflict(2, 3)
    with pytest.raises(SerializationError):
        manager.check_abort(2)
    manager.record_conflict(4, 1)
    with pytest.raises(SerializationError):
        manager.check_abort(1)


def test_check_read_locks_without_readers(manager):
    # With no readers there is nothing to check, even for an unknown txn.
    assert manager.check_read_locks(b"nothing", 99) is None
    with pytest.raises(InternalError):
        manager.check_abort(99)
    manager.check_read_locks(b"nothing", 1)
    manager.record_conflict(1, 2)
    manager.record_conflict(3, 1)
    with pytest.raises(SerializationError):
        manager.check_abort(1)


def test_committed_reader_with_in_conflict_aborts_writer(manager):
    manager.acquire_read_lock(b"key", 1)
    manager.record_conflict(3, 1)
    manager.commit_txn(1, 5)
    with pytest.raises(SerializationError):
        manager.check_read_locks(b"key", 2)


def test_committed_reader_before_writer_is_ignored(manager):
    manager.acquire_read_lock(b"key", 1)
    manager.record_conflict(3, 1)
    manager.commit_txn(1, 2)
    manager.check_read_locks(b"key", 4)
    manager.record_conflict(4, 2)
    manager.check_abort(4)
    # txn 4 had no in-conflict recorded by the read-lock check; adding one now aborts it.
    manager.record_conflict(3, 4)
    with pytest.raises(SerializationError):
        manager.check_abort(4)


def test_check_write_locks_records_conflict_from_reader(manager):
    manager.acquire_read_lock(b"key", 1)
    manager.check_write_locks(b"key", 2)
    # txn 2 has an out-conflict, txn 1 an in-conflict.
    manager.record_conflict(1, 3)
    with pytest.raises(SerializationError):
        manager.check_abort(1)


def test_rollback_releases_read_locks(manager):
    manager.acquire_read_lock(b"key", 1)
    manager.rollback_txn(1)
    manager.check_read_locks(b"key", 2)
    with pytest.raises(InternalError):
        manager.check_abort(1)


def test_abort_or_record_conflict_committed_creator_with_out_conflict(manager):
    manager.record_conflict(2, 3)
    manager.commit_txn(2, 4)
    with pytest.raises(SerializationError):
        manager.abort_or_record_conflict(2, 1)


def test_abort_or_record_conflict_records(manager):
    manager.abort_or_record_conflict(2, 1)
    manager.record_conflict(3, 1)
    with pytest.raises(SerializationError):
        manager.check_abort(1)


def test_write_lock_acquire_and_commit(manager):
    manager.acquire_write_lock(b"key", 1)
    manager.commit_txn(1, 2)
    manager.check_abort(1)
    manager.record_conflict(1, 2)
    manager.record_conflict(3, 1)
    with pytest.raises(SerializationError):
        manager.check_abort(1)