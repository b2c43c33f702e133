from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class ApplyError(Exception):
    """Canonical error type for domain apply and dispatch failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class InvalidInput(ApplyError):
    """Null address, zero amount, malformed account or context."""

    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("invalid_input", reason, details)


class Unauthorized(ApplyError):
    """Owner or role check failed. Raised before any state is touched."""

    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("unauthorized", reason, details)


class InvariantViolation(ApplyError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("invariant_violation", reason, details)


class InsufficientFunds(ApplyError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("insufficient_funds", reason, details)


class ExternalCallFailed(ApplyError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("external_call_failed", reason, details)


__all__ = [
    "ApplyError",
    "ExternalCallFailed",
    "InsufficientFunds",
    "InvalidInput",
    "InvariantViolation",
    "Unauthorized",
]
