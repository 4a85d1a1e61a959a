"""Error types shared across the database, and their RPC status encoding."""

from __future__ import annotations

from typing import ClassVar


class FeatherError(Exception):
    """Base class for all database errors. All except InternalError are user-facing."""

    tag: ClassVar[str] = ""
    default_message: ClassVar[str] = ""

    def __init__(self, message: str | None = None) -> None:
        if message is None:
            message = self.default_message
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FeatherError):
            return NotImplemented
        return type(self) is type(other) and self.message == other.message

    def __hash__(self) -> int:
        return hash((type(self), self.message))


class AbortError(FeatherError):
    """The operation was aborted."""

    tag = "Abort"
    default_message = "Operation aborted"


class ConfigError(FeatherError):
    """Invalid or missing configuration."""

    tag = "Config"


class InternalError(FeatherError):
    """An unexpected internal failure."""

    tag = "Internal"


class ParseError(FeatherError):
    """Input could not be parsed."""

    tag = "Parse"


class ReadOnlyError(FeatherError):
    """A write was attempted in a read-only transaction."""

    tag = "ReadOnly"
    default_message = "Read-only transaction"


class SerializationError(FeatherError):
    """A serialization conflict; the transaction should be retried."""

    tag = "Serialization"
    default_message = "Serialization failure, retry transaction"


class InvalidValueError(FeatherError):
    """An invalid value was supplied or encountered."""

    tag = "Value"


class NotLeaderError(FeatherError):
    """The contacted node is not the Raft leader."""

    tag = "NotLeader"
    default_message = "Not leader"


_BY_TAG: dict[str, type[FeatherError]] = {
    cls.tag: cls
    for cls in (
        AbortError,
        ConfigError,
        InternalError,
        ParseError,
        ReadOnlyError,
        SerializationError,
        InvalidValueError,
        NotLeaderError,
    )
}

_FIXED = (AbortError, ReadOnlyError, SerializationError, NotLeaderError)


def _debug_quote(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    escaped = escaped.replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t")
    return f'"{escaped}"'


def to_status_message(error: FeatherError) -> str:
    """Encodes an error as a tagged status message, e.g. "[Parse] bad input"."""
    if not isinstance(error, FeatherError) or type(error) not in _BY_TAG.values():
        raise TypeError(f"cannot encode {error!r} as a status message")
    if isinstance(error, _FIXED):
        return f"[{error.tag}] {error.default_message}"
    return f"[{error.tag}] {error.message}"


def from_status_message(message: str) -> FeatherError:
    """Decodes a tagged status message back into an error."""
    head, _, rest = message.partition(" ")
    if head.startswith("[") and head.endswith("]"):
        cls = _BY_TAG.get(head[1:-1])
        if cls is not None:
            if cls in _FIXED:
                return cls()
            return cls(rest)
    return InternalError(f"Unknown error type: {_debug_quote(message)}")