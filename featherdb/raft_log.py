"""The replicated Raft log and an in-memory store for it.

Log entries are encoded as the entry index and term, each a little-endian
u64, followed by the encoded command.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterable, Iterator

from .commands import Command, decode_command, encode_command
from .errors import InternalError, InvalidValueError

_U64 = struct.Struct("<Q")
_HEADER = struct.Struct("<QQ")


class LogStore:
    """An in-memory, append-only log store with 1-based indexes.

    Committed entries can never be removed by truncation.
    """

    def __init__(self) -> None:
        self._entries: list[bytes] = []
        self._commit_index = 0

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: bytes) -> int:
        """Appends an entry, returning its index."""
        self._entries.append(bytes(entry))
        return len(self._entries)

    def commit(self, index: int) -> None:
        """Marks entries up to and including the index as committed."""
        if index > len(self._entries):
            raise InternalError(f"Cannot commit non-existant index {index}")
        if index < self._commit_index:
            raise InternalError(
                f"Cannot commit below current index {self._commit_index}"
            )
        self._commit_index = index

    def commit_index(self) -> int:
        """Returns the last committed index, or 0 if nothing is committed."""
        return self._commit_index

    def get(self, index: int) -> bytes | None:
        """Returns the entry at the index, or None if there is none."""
        if 1 <= index <= len(self._entries):
            return self._entries[index - 1]
        return None

    def scan(self, start: int | None = None, end: int | None = None) -> Iterator[bytes]:
        """Yields entries from start to end, both inclusive; None is unbounded."""
        lo = 1 if start is None else max(start, 1)
        hi = len(self._entries) if end is None else min(end, len(self._entries))
        for index in range(lo, hi + 1):
            yield self._entries[index - 1]

    def truncate(self, index: int) -> int:
        """Removes entries after the index, returning the new last index."""
        if index < self._commit_index:
            raise InternalError(
                f"Cannot truncate below committed index {self._commit_index}"
            )
        del self._entries[index:]
        return len(self._entries)


@dataclass(frozen=True)
class Entry:
    """A replicated log entry."""

    index: int
    term: int
    command: Command


def encode_entry(entry: Entry) -> bytes:
    """Encodes a log entry into bytes."""
    try:
        header = _HEADER.pack(entry.index, entry.term)
    except struct.error as err:
        raise InvalidValueError(f"Entry index or term out of range: {entry}") from err
    return header + encode_command(entry.command)


def decode_entry(data: bytes) -> Entry:
    """Decodes a log entry from bytes."""
    data = bytes(data)
    if len(data) < _HEADER.size:
        raise InternalError(f"Unable to decode entry from {len(data)} bytes")
    index, term = _HEADER.unpack_from(data)
    return Entry(index, term, decode_command(data[_HEADER.size:]))


class Log:
    """The Raft log, tracking the last stored and last committed entries."""

    def __init__(self, store: LogStore | None = None) -> None:
        self.store = store if store is not None else LogStore()
        self.commit_index, self.commit_term = self._position(
            self.store.commit_index(), "Committed entry not found"
        )
        self.last_index, self.last_term = self._position(
            len(self.store), "Last entry not found"
        )

    def _position(self, index: int, missing: str) -> tuple[int, int]:
        if index == 0:
            return 0, 0
        entry = self.get(index)
        if entry is None:
            raise InternalError(missing)
        return entry.index, entry.term

    def append(self, term: int, command: Command) -> Entry:
        """Appends a command to the log, returning the new entry."""
        entry = Entry(self.last_index + 1, term, command)
        self.store.append(encode_entry(entry))
        self.last_index = entry.index
        self.last_term = entry.term
        return entry

    def commit(self, index: int) -> int:
        """Commits entries up to and including the index."""
        entry = self.get(index)
        if entry is None:
            raise InternalError(f"Entry {index} not found")
        self.store.commit(index)
        self.commit_index = entry.index
        self.commit_term = entry.term
        return index

    def get(self, index: int) -> Entry | None:
        """Fetches the entry at the index, or None."""
        data = self.store.get(index)
        return None if data is None else decode_entry(data)

    def scan(self, start: int | None = None, end: int | None = None) -> Iterator[Entry]:
        """Yields entries from start to end, both inclusive; None is unbounded."""
        for data in self.store.scan(start, end):
            yield decode_entry(data)

    def splice(self, entries: Iterable[Entry]) -> int:
        """Splices contiguous entries onto the log, returning the last index.

        The first entry may begin at most at ``last_index + 1``. Missing
        entries are appended; an existing entry with a different term is
        replaced along with every entry after it.
        """
        entries = list(entries)
        if entries:
            first = entries[0].index
            if first > self.last_index + 1:
                raise InternalError("Spliced entries cannot begin past last index")
            for offset, entry in enumerate(entries):
                if entry.index != first + offset:
                    raise InternalError("Spliced entries must be contiguous")
        for entry in entries:
            current = self.get(entry.index)
            if current is not None:
                if current.term == entry.term:
                    continue
                self.truncate(entry.index - 1)
            self.append(entry.term, entry.command)
        return self.last_index

    def truncate(self, index: int) -> int:
        """Truncates the log so its last entry is at most the index.

        Refuses to remove committed entries.
        """
        new_last = self.store.truncate(index)
        if new_last == 0:
            last_index, last_term = 0, 0
        else:
            entry = self.get(new_last)
            if entry is None:
                raise InternalError(f"Entry {index} not found")
            last_index, last_term = entry.index, entry.term
        self.last_index = last_index
        self.last_term = last_term
        return last_index