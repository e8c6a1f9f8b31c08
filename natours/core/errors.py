"""Application-level exception types.

This module defines the typed errors forwarded through the request pipeline.
Every error carries an HTTP status code and an ``is_operational`` flag that is
fixed at the point of detection:

- operational errors (validation, not found, rate limited) have messages that
  are safe to show to clients;
- anything else is a programming error and is only ever described to clients
  with a generic message outside development.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep the shape flexible while encouraging
    consistent keys across the codebase.
    """

    hint: str
    limit: int
    actual_value: int
    retry_after: int
    path: str
    method: str
    errors: list[dict[str, Any]]
    context: NotRequired[dict[str, Any]]


@dataclass(eq=False)
class AppError(Exception):
    """Base error for pipeline and collaborator failures.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status code in the 400-599 range.
        code: Stable, machine-readable error code.
        details: Optional structured details for debugging/observability.
        is_operational: Whether ``message`` is safe to send to clients.
        headers: Extra response headers (e.g., ``Allow`` for a 405).
    """

    message: str
    status_code: int = 500
    code: str = "app_error"
    details: ErrorDetails | None = None
    is_operational: bool = True
    headers: dict[str, str] | None = None

    def __post_init__(self) -> None:
        if not 400 <= self.status_code <= 599:
            raise ValueError(f"status_code must be within 400-599, got {self.status_code}")
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)

    @property
    def status(self) -> str:
        """``"fail"`` for client errors, ``"error"`` for server errors."""
        return "fail" if self.status_code < 500 else "error"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "AppError":
        """Coerce an untyped exception into a non-operational 500 error.

        The original exception is kept as ``__cause__`` so its traceback is
        still available for diagnostics.
        """
        if isinstance(exc, AppError):
            return exc
        error = cls(
            message=str(exc) or type(exc).__name__,
            status_code=500,
            code="internal_server_error",
            is_operational=False,
        )
        error.__cause__ = exc
        return error


@dataclass(eq=False)
class ValidationAppError(AppError):
    """Raised when request input is malformed or invalid."""

    status_code: int = 400
    code: str = "validation_error"


@dataclass(eq=False)
class PayloadTooLargeAppError(AppError):
    """Raised when a request body exceeds the configured size limit."""

    status_code: int = 413
    code: str = "payload_too_large"


@dataclass(eq=False)
class NotFoundAppError(AppError):
    """Raised when no route matched the request."""

    status_code: int = 404
    code: str = "not_found"


@dataclass(eq=False)
class RateLimitAppError(AppError):
    """Raised when a client exceeded its request budget."""

    status_code: int = 429
    code: str = "rate_limit_exceeded"
