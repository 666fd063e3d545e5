"""
Error taxonomy for the Sage core.

Every failure the core reports is a ``SageError`` carrying a stable
error code, a human-readable message and optional detail/hint, in the
same envelope the transport layer sends to clients. None of these errors
is transient: the same input against the same state fails the same way,
so ``retryable`` is always False.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError


class ErrorCode(str, Enum):
    """Standardized error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"


class SageError(Exception):
    """
    Base class for all errors raised by the core.

    Attributes:
        code: Standardized error code from ErrorCode enum
        message: Human-readable error message
        detail: Optional technical details for debugging
        hint: Optional suggestion for resolving the error
        retryable: Whether the caller should retry (never, for this core)
    """

    code: ErrorCode = ErrorCode.VALIDATION_ERROR
    default_hint: str | None = None

    def __init__(
        self,
        message: str,
        detail: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.hint = hint if hint is not None else self.default_hint
        self.retryable = False

    def to_dict(self) -> dict[str, dict[str, Any]]:
        """
        Convert error to dictionary format for JSON responses.

        Returns:
            Dictionary with 'error' key containing error details
        """
        error_dict: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }

        if self.detail is not None:
            error_dict["detail"] = self.detail

        if self.hint is not None:
            error_dict["hint"] = self.hint

        return {"error": error_dict}


class ValidationError(SageError):
    """Malformed input: empty name, out-of-range strength, self-loop, bad enum."""

    code = ErrorCode.VALIDATION_ERROR
    default_hint = "Check the input format and try again"


class NotFoundError(SageError):
    """A referenced id does not exist in the owner's scope."""

    code = ErrorCode.NOT_FOUND
    default_hint = "Check the identifier"


class ConflictError(SageError):
    """The request conflicts with current state and must be changed."""

    code = ErrorCode.CONFLICT
    default_hint = "The request conflicts with the current state; do not retry it verbatim"


class SelfMergeError(ValidationError, ConflictError):
    """A concept cannot be merged into itself."""


def from_pydantic(exc: PydanticValidationError, message: str) -> ValidationError:
    """Translate a pydantic validation failure into a core ValidationError."""
    reasons = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'value'}: {err['msg']}"
        for err in exc.errors()
    )
    return ValidationError(message, detail=reasons)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Predefined Error Factories
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def concept_not_found(concept_id: str) -> NotFoundError:
    """Create error for a missing concept."""
    return NotFoundError("Concept not found", detail=f"Concept ID: {concept_id}")


def entry_not_found(entry_id: str) -> NotFoundError:
    """Create error for a missing knowledge entry."""
    return NotFoundError("Knowledge entry not found", detail=f"Entry ID: {entry_id}")


def session_not_found(session_id: str) -> NotFoundError:
    """Create error for a missing review session."""
    return NotFoundError(
        "Review session not found",
        detail=f"Session ID: {session_id}",
        hint="Start a new review session",
    )


def validation_error(field: str, reason: str) -> ValidationError:
    """Create error for validation failures."""
    return ValidationError(f"Validation failed for field: {field}", detail=reason)
