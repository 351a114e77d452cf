"""Error taxonomy shared by the command and state cores.

Every error carries a stable ``code`` so adapters can translate it into
their transport's ``{code, message}`` representation without inspecting
the exception type.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class BuffetError(Exception):
    """Base class for all errors raised by the buffet core."""

    code = "buffet_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ParseError(BuffetError):
    """Raised when an input payload is malformed."""

    code = "parse_error"


class ValidationError(BuffetError):
    """Raised when a value does not match its declared schema."""

    code = "invalid_value"

    def __init__(self, field: str, reason: str) -> None:
        location = field or "<root>"
        super().__init__(f"{location}: {reason}")
        self.field = field
        self.reason = reason

    def prefixed(self, prefix: str) -> "ValidationError":
        """Return a copy whose field path is nested under ``prefix``."""
        if not prefix:
            return self
        if not self.field:
            return ValidationError(prefix, self.reason)
        joiner = "" if self.field.startswith("[") else "."
        return ValidationError(f"{prefix}{joiner}{self.field}", self.reason)

    def as_dict(self) -> Dict[str, Any]:
        payload = super().as_dict()
        payload["field"] = self.field
        return payload


class NotFoundError(BuffetError):
    """Raised when a command name, command id or property is unknown."""

    code = "not_found"

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"Unknown {kind}: {name!r}")
        self.kind = kind
        self.name = name

    def as_dict(self) -> Dict[str, Any]:
        payload = super().as_dict()
        payload["kind"] = self.kind
        return payload


class LoadError(BuffetError):
    """Raised when a definition source cannot be loaded."""

    code = "invalid_command_definition"

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Failed to load {name!r}: {reason}")
        self.name = name
        self.reason = reason


class ConflictError(LoadError):
    """Raised when two categories define the same command name."""

    code = "duplicate_command_definition"


class StateConflictError(BuffetError):
    """Raised when mutating a command that already reached a terminal state."""

    code = "command_expired"

    def __init__(self, command_id: Optional[str], state: str) -> None:
        super().__init__(
            f"Command {command_id or '<unassigned>'} is already {state}"
        )
        self.command_id = command_id
        self.state = state


class GapError(BuffetError):
    """Raised when a state change cursor points at evicted history."""

    code = "state_gap"

    def __init__(self, cursor: int, oldest: int, newest: int) -> None:
        super().__init__(
            f"Cursor {cursor} is outside retained changes [{oldest}, {newest}); "
            "resync required"
        )
        self.cursor = cursor
        self.oldest = oldest
        self.newest = newest


class BatchUpdateError(BuffetError):
    """Raised after a best-effort batch update when some entries failed."""

    code = "batch_update_failed"

    def __init__(self, errors: Sequence[BuffetError]) -> None:
        self.errors: List[BuffetError] = list(errors)
        summary = "; ".join(str(error) for error in self.errors)
        super().__init__(f"{len(self.errors)} property update(s) failed: {summary}")

    def as_dict(self) -> Dict[str, Any]:
        payload = super().as_dict()
        payload["errors"] = [error.as_dict() for error in self.errors]
        return payload
