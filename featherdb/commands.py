"""Raft session commands and RPC status codes, with their binary encoding.

Commands are encoded as a little-endian u32 variant index followed by the
variant's fields: u64 values as little-endian 8-byte integers and byte
strings as a little-endian u64 length followed by the bytes.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Union

from .errors import InternalError, InvalidValueError

_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")


@dataclass(frozen=True)
class Mutation:
    """A command that mutates the state machine."""

    session_id: int
    sequence_number: int
    mutation: bytes


@dataclass(frozen=True)
class Query:
    """A command that queries the state machine."""

    session_id: int
    sequence_number: int
    query: bytes


@dataclass(frozen=True)
class Registration:
    """A command that registers a client session."""

    session_id: int


Command = Union[Mutation, Query, Registration]


class RpcStatus(IntEnum):
    """The status of a key-value RPC reply."""

    OK = 0
    NOT_LEADER = 1
    SESSION_EXPIRED = 2

    def encode(self) -> bytes:
        """Encodes the status as its variant index."""
        return _U32.pack(self.value)

    @classmethod
    def decode(cls, data: bytes) -> RpcStatus:
        """Decodes a status from its variant index."""
        reader = _Reader(data)
        index = reader.u32()
        reader.finish()
        try:
            return cls(index)
        except ValueError:
            raise InternalError(f"Invalid RPC status variant {index}") from None


def _u64(n: int) -> bytes:
    try:
        return _U64.pack(n)
    except struct.error as err:
        raise InvalidValueError(f"Integer {n} out of u64 range") from err


def _blob(data: bytes) -> bytes:
    data = bytes(data)
    return _U64.pack(len(data)) + data


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def _take(self, n: int) -> bytes:
        if self._pos + n > len(self._data):
            raise InternalError("Unexpected end of encoded data")
        chunk = self._data[self._pos:self._pos + n]
        self._pos += n
        return chunk

    def u32(self) -> int:
        return _U32.unpack(self._take(4))[0]

    def u64(self) -> int:
        return _U64.unpack(self._take(8))[0]

    def blob(self) -> bytes:
        return self._take(self.u64())

    def finish(self) -> None:
        if self._pos != len(self._data):
            raise InternalError("Unexpected data remaining after command")


def encode_command(command: Command) -> bytes:
    """Encodes a command into bytes."""
    if isinstance(command, Mutation):
        return (
            _U32.pack(0)
            + _u64(command.session_id)
            + _u64(command.sequence_number)
            + _blob(command.mutation)
        )
    if isinstance(command, Query):
        return (
            _U32.pack(1)
            + _u64(command.session_id)
            + _u64(command.sequence_number)
            + _blob(command.query)
        )
    if isinstance(command, Registration):
        return _U32.pack(2) + _u64(command.session_id)
    raise InvalidValueError(f"Cannot encode command of type {type(command).__name__}")


def decode_command(data: bytes) -> Command:
    """Decodes a command from bytes."""
    reader = _Reader(data)
    variant = reader.u32()
    command: Command
    if variant == 0:
        command = Mutation(reader.u64(), reader.u64(), reader.blob())
    elif variant == 1:
        command = Query(reader.u64(), reader.u64(), reader.blob())
    elif variant == 2:
        command = Registration(reader.u64())
    else:
        raise InternalError(f"Invalid command variant {variant}")
    reader.finish()
    return command