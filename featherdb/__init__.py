"""Building blocks of a small distributed database: key encoding, MVCC transactions and a replicated log."""

__version__ = "0.1.0"

__all__ = ["commands", "encoding", "errors", "locks", "mvcc", "raft_log", "transaction"]