"""Order-preserving encodings for use in keys.

bool:   0x00 for false, 0x01 for true.
bytes:  0x00 is escaped as 0x00 0xff, terminated with 0x00 0x00.
str:    UTF-8, then encoded like bytes.
u64:    Big-endian binary representation.
i64:    Big-endian binary representation, with the sign bit flipped.
f64:    Big-endian binary representation, with the sign bit flipped if
        positive, all bits flipped if negative.
value:  A type prefix (0x00 null, 0x01 boolean, 0x02 float, 0x03 integer,
        0x04 string) followed by one of the encodings above.

The ``take_*`` functions decode a value from the front of a byte string and
return it together with the bytes that remain.
"""

from __future__ import annotations

import struct
from typing import Union

from .errors import InternalError, InvalidValueError

Value = Union[None, bool, float, int, str]

_U64 = struct.Struct(">Q")
_I64 = struct.Struct(">q")
_F64 = struct.Struct(">d")

_NULL = 0x00
_BOOLEAN = 0x01
_FLOAT = 0x02
_INTEGER = 0x03
_STRING = 0x04


def encode_boolean(value: bool) -> int:
    """Encodes a boolean as a single byte: 0x00 for false, 0x01 for true."""
    return 0x01 if value else 0x00


def decode_boolean(byte: int) -> bool:
    """Decodes a boolean byte. See encode_boolean() for the format."""
    if byte == 0x00:
        return False
    if byte == 0x01:
        return True
    raise InternalError(f"Invalid boolean value {byte}")


def take_boolean(data: bytes) -> tuple[bool, bytes]:
    """Decodes a boolean from the front of data."""
    byte, rest = take_byte(data)
    return decode_boolean(byte), rest


def encode_bytes(data: bytes) -> bytes:
    """Encodes a byte string, escaping 0x00 as 0x00 0xff and terminating with 0x00 0x00."""
    return bytes(data).replace(b"\x00", b"\x00\xff") + b"\x00\x00"


def take_byte(data: bytes) -> tuple[int, bytes]:
    """Takes a single raw byte from the front of data."""
    data = bytes(data)
    if not data:
        raise InternalError("Unexpected end of bytes")
    return data[0], data[1:]


def take_bytes(data: bytes) -> tuple[bytes, bytes]:
    """Decodes an escaped byte string from the front of data. See encode_bytes()."""
    data = bytes(data)
    decoded = bytearray()
    pos = 0
    while True:
        zero = data.find(b"\x00", pos)
        if zero < 0:
            raise InvalidValueError("Unexpected end of bytes")
        decoded += data[pos:zero]
        if zero + 1 >= len(data):
            raise InvalidValueError("Unexpected end of bytes")
        following = data[zero + 1]
        if following == 0x00:
            return bytes(decoded), data[zero + 2:]
        if following == 0xFF:
            decoded.append(0x00)
            pos = zero + 2
            continue
        raise InvalidValueError(f"Invalid byte escape {following}")


def _fixed8(data: bytes, what: str) -> bytes:
    data = bytes(data)
    if len(data) != 8:
        raise InternalError(f"Unable to decode {what} from {len(data)} bytes")
    return data


def _take8(data: bytes, what: str) -> tuple[bytes, bytes]:
    data = bytes(data)
    if len(data) < 8:
        raise InternalError(f"Unable to decode {what} from {len(data)} bytes")
    return data[:8], data[8:]


def encode_f64(n: float) -> bytes:
    """Encodes a float preserving numeric order, with NaN sorting last."""
    raw = bytearray(_F64.pack(n))
    if raw[0] & 0x80:
        return bytes(b ^ 0xFF for b in raw)
    raw[0] ^= 0x80
    return bytes(raw)


def decode_f64(data: bytes) -> float:
    """Decodes an 8-byte float. See encode_f64() for the format."""
    raw = bytearray(_fixed8(data, "f64"))
    if raw[0] & 0x80:
        raw[0] ^= 0x80
    else:
        raw = bytearray(b ^ 0xFF for b in raw)
    return _F64.unpack(bytes(raw))[0]


def take_f64(data: bytes) -> tuple[float, bytes]:
    """Decodes a float from the front of data."""
    head, rest = _take8(data, "f64")
    return decode_f64(head), rest


def encode_i64(n: int) -> bytes:
    """Encodes a signed 64-bit integer big-endian with the sign bit flipped."""
    try:
        raw = bytearray(_I64.pack(n))
    except struct.error as err:
        raise InvalidValueError(f"Integer {n} out of i64 range") from err
    raw[0] ^= 0x80
    return bytes(raw)


def decode_i64(data: bytes) -> int:
    """Decodes an 8-byte signed integer. See encode_i64() for the format."""
    raw = bytearray(_fixed8(data, "i64"))
    raw[0] ^= 0x80
    return _I64.unpack(bytes(raw))[0]


def take_i64(data: bytes) -> tuple[int, bytes]:
    """Decodes a signed integer from the front of data."""
    head, rest = _take8(data, "i64")
    return decode_i64(head), rest


def encode_string(string: str) -> bytes:
    """Encodes a string as its escaped UTF-8 bytes."""
    return encode_bytes(string.encode("utf-8"))


def take_string(data: bytes) -> tuple[str, bytes]:
    """Decodes a string from the front of data."""
    raw, rest = take_bytes(data)
    try:
        return raw.decode("utf-8"), rest
    except UnicodeDecodeError as err:
        raise InternalError(str(err)) from err


def encode_u64(n: int) -> bytes:
    """Encodes an unsigned 64-bit integer big-endian."""
    try:
        return _U64.pack(n)
    except struct.error as err:
        raise InvalidValueError(f"Integer {n} out of u64 range") from err


def decode_u64(data: bytes) -> int:
    """Decodes an 8-byte unsigned integer."""
    return _U64.unpack(_fixed8(data, "u64"))[0]


def take_u64(data: bytes) -> tuple[int, bytes]:
    """Decodes an unsigned integer from the front of data."""
    head, rest = _take8(data, "u64")
    return decode_u64(head), rest


def encode_value(value: Value) -> bytes:
    """Encodes a value with a one-byte type prefix."""
    if value is None:
        return bytes([_NULL])
    if isinstance(value, bool):
        return bytes([_BOOLEAN, encode_boolean(value)])
    if isinstance(value, float):
        return bytes([_FLOAT]) + encode_f64(value)
    if isinstance(value, int):
        return bytes([_INTEGER]) + encode_i64(value)
    if isinstance(value, str):
        return bytes([_STRING]) + encode_string(value)
    raise InvalidValueError(f"Cannot encode value of type {type(value).__name__}")


def take_value(data: bytes) -> tuple[Value, bytes]:
    """Decodes a prefixed value from the front of data."""
    prefix, rest = take_byte(data)
    if prefix == _NULL:
        return None, rest
    if prefix == _BOOLEAN:
        return take_boolean(rest)
    if prefix == _FLOAT:
        return take_f64(rest)
    if prefix == _INTEGER:
        return take_i64(rest)
    if prefix == _STRING:
        return take_string(rest)
    raise InternalError(f"Invalid value prefix {prefix:x}")