import threading

import pytest

from featherdb.errors import (
    InternalError,
    InvalidValueError,
    ReadOnlyError,
    SerializationError,
)
from featherdb.locks import LockManager
from featherdb.transaction import (
    KeyKind,
    KvStore,
    Mode,
    ModeKind,
    MvccKey,
    Snapshot,
    begin_transaction,
    decode_key,
    restore_snapshot,
    resume_transaction,
    take_snapshot,
)

RW = Mode(ModeKind.READ_WRITE)
RO = Mode(ModeKind.READ_ONLY)


class Env:
    def __init__(self):
        self.store = KvStore()
        self.lock = threading.RLock()
        self.lm = LockManager()

    def begin(self, mode=RW):
        return begin_transaction(self.store, self.lock, mode, self.lm)

    def resume(self, txn_id):
        return resume_transaction(self.store, self.lock, txn_id, self.lm)


@pytest.fixture
def env():
    return Env()


def test_mode_allows_write():
    assert RW.allows_write() is True
    assert RO.allows_write() is False
    assert Mode(ModeKind.SNAPSHOT, 1).allows_write() is False


def test_mode_satisfies():
    snap = Mode(ModeKind.SNAPSHOT, 1)
    assert RW.satisfies(RO)
    assert snap.satisfies(RO)
    assert RW.satisfies(RW)
    assert snap.satisfies(Mode(ModeKind.SNAPSHOT, 1))
    assert not RO.satisfies(RW)
    assert not snap.satisfies(Mode(ModeKind.SNAPSHOT, 2))


def test_mode_snapshot_requires_version():
    with pytest.raises(InvalidValueError):
        Mode(ModeKind.SNAPSHOT)


@pytest.mark.parametrize(
    "key",
    [
        MvccKey(KeyKind.TXN_NEXT),
        MvccKey(KeyKind.TXN_ACTIVE, txn_id=7),
        MvccKey(KeyKind.TXN_SNAPSHOT, version=3),
        MvccKey(KeyKind.TXN_UPDATE, txn_id=2, key=b"a\x00b"),
        MvccKey(KeyKind.METADATA, key=b"foo"),
        MvccKey(KeyKind.RECORD, version=5, key=b"\x00\x01"),
    ],
)
def test_key_round_trip(key):
    assert decode_key(key.encode()) == key


def test_key_encoding_bytes():
    assert MvccKey(KeyKind.TXN_NEXT).encode() == b"\x01"
    assert (
        MvccKey(KeyKind.RECORD, version=1, key=b"a").encode()
        == b"\xffa\x00\x00" + b"\x00" * 7 + b"\x01"
    )


def test_decode_key_errors():
    with pytest.raises(InternalError):
        decode_key(b"\x09")
    with pytest.raises(InternalError):
        decode_key(b"\x01\x00")


def test_record_keys_do_not_overlap():
    short = MvccKey(KeyKind.RECORD, version=3, key=b"\x00").encode()
    long = MvccKey(KeyKind.RECORD, version=2, key=b"\x00" * 8 + b"\x02").encode()
    assert short < long


def test_kvstore_scan_bounds():
    store = KvStore()
    for k in (b"a", b"b", b"c", b"d"):
        store.set(k, k)
    store.delete(b"d")
    store.delete(b"zz")
    assert [k for k, _ in store.scan((b"a", False), (b"c", True))] == [b"b", b"c"]
    assert [k for k, _ in store.scan((b"a", True), (b"c", False))] == [b"a", b"b"]
    assert [k for k, _ in store.scan()] == [b"a", b"b", b"c"]
    assert store.get(b"d") is None


def test_snapshot_can_access():
    snap = Snapshot(5, frozenset({3}))
    assert snap.can_access(4)
    assert snap.can_access(5)
    assert not snap.can_access(3)
    assert not snap.can_access(6)


def test_take_and_restore_snapshot(env):
    t1 = env.begin()
    t2 = env.begin()
    taken = take_snapshot(env.store, 5)
    assert taken.invisible == frozenset({t1.id, t2.id})
    assert restore_snapshot(env.store, 5) == taken
    with pytest.raises(InvalidValueError, match="Snapshot not found for version 9"):
        restore_snapshot(env.store, 9)


def test_begin_ids_increment(env):
    t1 = env.begin()
    assert (t1.id, t1.mode) == (1, RW)
    t1.commit()
    t2 = env.begin()
    assert t2.id == 2
    t2.rollback()
    assert env.begin().id == 3


def test_set_get_and_visibility(env):
    t1 = begin_transaction(env.store, env.lock, RW, env.lm)
    assert t1.get(b"a") is None
    t1.set(b"a", b"\x01")
    assert t1.get(b"a") == b"\x01"
    t2 = begin_transaction(env.store, env.lock, RW, env.lm)
    assert t2.get(b"a") is None
    t1.commit()
    t3 = begin_transaction(env.store, env.lock, RW, env.lm)
    assert t3.get(b"a") == b"\x01"


def test_read_only_cannot_write(env):
    txn = env.begin(RO)
    with pytest.raises(ReadOnlyError):
        txn.set(b"a", b"x")
    with pytest.raises(ReadOnlyError):
        txn.delete(b"a")


def test_rollback_removes_writes(env):
    t0 = begin_transaction(env.store, env.lock, RW, env.lm)
    t0.set(b"key", b"\x00")
    t0.commit()
    t2 = begin_transaction(env.store, env.lock, RW, env.lm)
    t2.set(b"key", b"\x02")
    t2.rollback()
    t3 = begin_transaction(env.store, env.lock, RW, env.lm)
    assert t3.get(b"key") == b"\x00"
    t3.set(b"key", b"\x03")
    t3.commit()
    assert begin_transaction(env.store, env.lock, RW, env.lm).get(b"key") == b"\x03"


def test_concurrent_write_conflict(env):
    t1 = begin_transaction(env.store, env.lock, RW, env.lm)
    t2 = begin_transaction(env.store, env.lock, RW, env.lm)
    t2.set(b"key", b"\x02")
    with pytest.raises(SerializationError):
        t1.set(b"key", b"\x01")


def test_scan_forward_and_back(env):
    txn = begin_transaction(env.store, env.lock, RW, env.lm)
    txn.set(b"a", b"\x01")
    txn.delete(b"b")
    txn.set(b"c", b"\x01")
    txn.delete(b"c")
    txn.set(b"c", b"\x03")
    txn.set(b"d", b"\x01")
    txn.delete(b"d")
    txn.set(b"e", b"\x04")
    txn.set(b"e", b"\x05")
    txn.commit()

    txn = begin_transaction(env.store, env.lock, RW, env.lm)
    expected = [(b"a", b"\x01"), (b"c", b"\x03"), (b"e", b"\x05")]
    assert list(txn.scan()) == expected
    assert list(reversed(txn.scan())) == expected[::-1]

    scan = txn.scan()
    assert next(scan) == (b"a", b"\x01")
    assert scan.next_back() == (b"e", b"\x05")
    assert scan.next_back() == (b"c", b"\x03")
    assert next(scan, None) is None


def test_scan_prefix(env):
    txn = begin_transaction(env.store, env.lock, RW, env.lm)
    for key in (b"a", b"az", b"b", b"ba", b"bb", b"c"):
        txn.set(key, key)
    txn.commit()
    txn = begin_transaction(env.store, env.lock, RW, env.lm)
    assert [k for k, _ in txn.scan_prefix(b"b")] == [b"b", b"ba", b"bb"]
    with pytest.raises(InternalError):
        txn.scan_prefix(b"")
    with pytest.raises(InternalError):
        txn.scan_prefix(b"\xff\xff")


def test_snapshot_mode(env):
    t = env.begin()
    t.set(b"key", b"\x01")
    t.commit()
    t = env.begin()
    t.set(b"key", b"\x02")
    t.commit()
    snap = env.begin(Mode(ModeKind.SNAPSHOT, 1))
    assert snap.id == 3
    assert snap.get(b"key") == b"\x01"
    with pytest.raises(InvalidValueError):
        env.begin(Mode(ModeKind.SNAPSHOT, 9))


def test_resume(env):
    t1 = env.begin()
    t1.set(b"b", b"t1")
    resumed = env.resume(t1.id)
    assert (resumed.id, resumed.mode) == (t1.id, RW)
    assert resumed.get(b"b") == b"t1"
    resumed.commit()
    with pytest.raises(InvalidValueError, match="No active transaction 1"):
        env.resume(1)