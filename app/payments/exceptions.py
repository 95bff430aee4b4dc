"""
Payment-specific exceptions.

Exception Hierarchy:
    GatewayError (ExternalServiceError) - Base for all Paystack failures
    ├── GatewayRequestError - 4xx / status=false (permanent)
    ├── GatewayAuthenticationError - Bad secret key (permanent)
    ├── GatewayRateLimitError - 429 (transient, retry)
    ├── GatewayUnavailableError - 5xx / network failure (transient, retry)
    └── GatewayTimeoutError - No response within the timeout (transient, retry)

    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)

Usage:
    from payments.exceptions import GatewayError

    try:
        PaystackAdapter.initiate_transfer(...)
    except GatewayError as e:
        if e.is_retryable:
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import ConflictError, ExternalServiceError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base for payment gateway failures.

    Attributes:
        is_retryable: Whether the same call may succeed if repeated
        http_status: Gateway HTTP status, when a response was received

    Note:
        A retryable failure on a transfer or refund does not mean nothing
        happened at the gateway. Retries reuse the same reference so the
        gateway can deduplicate them.
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        http_status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if http_status is not None:
            details["http_status"] = http_status
        super().__init__(message, error_code=error_code, details=details)
        self.http_status = http_status


class GatewayRequestError(GatewayError):
    """Gateway rejected the request (validation, unknown recipient, ...)."""

    default_error_code: str = "GATEWAY_REQUEST_REJECTED"


class GatewayAuthenticationError(GatewayError):
    """Secret key missing or rejected. Needs configuration, not a retry."""

    default_error_code: str = "GATEWAY_AUTHENTICATION_FAILED"


class GatewayRateLimitError(GatewayError):
    default_error_code: str = "GATEWAY_RATE_LIMITED"
    is_retryable: bool = True


class GatewayUnavailableError(GatewayError):
    """Network failure or 5xx from the gateway."""

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class GatewayTimeoutError(GatewayError):
    """
    No response within PAYSTACK_API_TIMEOUT_SECONDS.

    The operation may have succeeded at the gateway. Treated as failed
    locally; a later webhook settles the real outcome.
    """

    default_error_code: str = "GATEWAY_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Example:
        with DistributedLock(f"escrow:auto_release:{txn_id}", timeout=5):
            ...
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"
