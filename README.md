# featherdb

Building blocks of a small distributed database, as a plain Python library
with no third-party dependencies.

## Modules

- **`featherdb.encoding`**: order-preserving binary encodings for keys.
  Booleans, byte strings, strings, `u64`, `i64`, `f64` and tagged values
  (`None`, `bool`, `float`, `int`, `str`) are encoded so that byte-wise
  comparison matches their natural order. `encode_*` functions produce bytes.
  `take_*` functions decode from the front of a byte string and return
  `(value, rest)`.
- **`featherdb.transaction`**: MVCC transactions. It holds `KvStore` (an ordered
  in-memory key-value store), the transaction `Mode` (`ModeKind.READ_WRITE`,
  `READ_ONLY` or `SNAPSHOT` with a version), `MvccKey` with `decode_key`,
  `Snapshot`, `Transaction` and `MvccScan`. An `MvccScan` iterates forwards,
  and also backwards through `next_back()` or `reversed()`.
- **`featherdb.mvcc`**: `MVCC`, the entry point for transactions. It offers
  `begin()`, `begin_with_mode(mode)`, `resume(txn_id)`, and unversioned
  metadata through `get_metadata` and `set_metadata`. With `serializable=True`,
  transactions run under serializable snapshot isolation.
- **`featherdb.locks`**: `LockManager`, which tracks SIREAD and WRITE locks and
  read-write dependencies for serializable snapshot isolation. `TxnStatus`
  holds the per-transaction flags.
- **`featherdb.commands`**: the session commands `Mutation`, `Query` and
  `Registration`, with `encode_command` and `decode_command`. `RpcStatus`
  (`OK`, `NOT_LEADER`, `SESSION_EXPIRED`) has `encode()` and `decode()`.
- **`featherdb.raft_log`**: the replicated `Log` of `Entry` records over an
  in-memory `LogStore`. It supports `append`, `commit`, `get`, `scan`,
  `truncate` and `splice`. Committed entries are never truncated.
- **`featherdb.errors`**: the error hierarchy rooted at `FeatherError`:
  `AbortError`, `ConfigError`, `InternalError`, `ParseError`, `ReadOnlyError`,
  `SerializationError`, `InvalidValueError` and `NotLeaderError`. Errors convert
  to and from tagged status messages such as `"[Parse] bad input"` with
  `to_status_message` and `from_status_message`.

## Installation

```
pip install .
```

## Example

```python
from featherdb.mvcc import MVCC
from featherdb.transaction import Mode, ModeKind
from featherdb.errors import SerializationError

mvcc = MVCC(serializable=True)          # uses a fresh in-memory KvStore

txn = mvcc.begin()
txn.set(b"a", b"1")
txn.set(b"b", b"2")
txn.commit()

reader = mvcc.begin_with_mode(Mode(ModeKind.READ_ONLY))
assert reader.get(b"a") == b"1"
print(list(reader.scan_prefix(b"b")))   # [(b'b', b'2')]
reader.commit()

t1, t2 = mvcc.begin(), mvcc.begin()
t1.set(b"key", b"t1")
try:
    t2.set(b"key", b"t2")
except SerializationError:
    t2.rollback()                       # retry the transaction
```

Encodings keep their order:

```python
from featherdb.encoding import encode_i64, take_i64

assert encode_i64(-1) < encode_i64(0) < encode_i64(1)
value, rest = take_i64(encode_i64(1024) + b"\xff")
assert (value, rest) == (1024, b"\xff")
```

A replicated log:

```python
from featherdb.commands import Registration
from featherdb.raft_log import Log

log = Log()
log.append(1, Registration(session_id=1))
log.commit(1)
print([entry.index for entry in log.scan()])   # [1]
```

## What this package does not do

This package is a library only. It has no network server or client and no
command-line program. It does not include a SQL layer, Raft elections or
replication between nodes. Both `KvStore` and `LogStore` keep their data in
memory, so nothing is written to disk.

## Running the tests

```
pip install ".[test]"
pytest
```