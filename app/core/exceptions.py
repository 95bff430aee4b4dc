"""
Application exception hierarchy.

Domain errors raised by services when something unexpected happens (as
opposed to expected business outcomes, which are returned as ServiceResult
failures). Each error carries a machine-readable code and the HTTP status the
API layer should answer with.

Hierarchy:
    BaseApplicationError
    ├── ConflictError          409
    └── ExternalServiceError   502

Usage:
    from core.exceptions import ConflictError

    raise ConflictError(
        "Escrow hold changed while it was being released",
        error_code="INVALID_STATE_TRANSITION",
        details={"hold_id": str(hold_id)},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (ids, amounts, field errors)
        status_code: HTTP status used when the error reaches the API layer
    """

    default_error_code: str = "APPLICATION_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize for an API response body.

        Example:
            {
                "error": "Escrow hold not found",
                "error_code": "HOLD_NOT_FOUND",
                "details": {"hold_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with the current record state.

    Covers invalid state transitions, optimistic locking failures and lock
    contention. HTTP 409.
    """

    default_error_code: str = "CONFLICT"
    status_code: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    Raised when a third-party service call fails.

    Subclasses say whether the failure is worth retrying. Log the original
    error but do not expose gateway internals to clients.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    status_code: int = 502
