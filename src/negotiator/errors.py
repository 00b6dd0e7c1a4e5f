"""
Error hierarchy for the negotiation engine.

NotFound, Expired and InvalidState are recoverable: the facilitator can retry,
pick an alternate provider or re-open a negotiation. ValidationError is a
caller fault and is never retried automatically.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, TypeVar

E = TypeVar("E", bound=Enum)


class NegotiatorError(Exception):
    """Base error carrying a message and structured context."""

    recoverable = True

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "recoverable": self.recoverable,
        }

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class NotFoundError(NegotiatorError):
    """Unknown advertisement, inquiry, voting, breakdown, proposal or contract id."""


class ExpiredError(NegotiatorError):
    """Action attempted on a time-lapsed record."""


class InvalidStateError(NegotiatorError):
    """Operation not legal in the record's current state."""


class ValidationError(NegotiatorError, ValueError):
    """Missing or malformed input."""

    recoverable = False


def coerce_enum(enum_type: type[E], value: Any, field: str) -> E:
    """Convert ``value`` to a member of ``enum_type`` or raise ValidationError."""
    try:
        return enum_type(value)
    except ValueError as e:
        allowed = ", ".join(str(m.value) for m in enum_type)
        raise ValidationError(f"{field} must be one of {allowed}; got {value!r}") from e


def check_fields(data: Any, allowed: set[str], what: str) -> dict[str, Any]:
    """Ensure ``data`` is a mapping with no keys outside ``allowed``."""
    if not isinstance(data, dict):
        raise ValidationError(f"{what} must be an object, got {type(data).__name__}")
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(f"Unknown {what} field(s): {', '.join(unknown)}")
    return data


def as_number(value: Any, field: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field} must be a number; got {value!r}") from e
