"""
Paystack API adapter for escrow payment operations.

This module provides the PaystackAdapter class which encapsulates all
Paystack API interactions. Every gateway call made by the escrow, payout
and checkout services goes through this adapter so timeouts, error
translation and logging are handled in one place.

Features:
- Bounded timeout on every API call (httpx)
- Automatic error translation to GatewayError subclasses
- Structured logging with timing metrics
- Deterministic references so the gateway deduplicates resubmissions
- HMAC-SHA512 webhook signature verification

Configuration (via settings):
- PAYSTACK_SECRET_KEY: API secret key, also the webhook signing key
- PAYSTACK_BASE_URL: API root (default: https://api.paystack.co)
- PAYSTACK_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- PAYSTACK_CALLBACK_URL: Hosted checkout redirect target

Usage:
    from payments.adapters import PaystackAdapter

    result = PaystackAdapter.initiate_transfer(
        amount_cents=100000,
        recipient_code="RCP_xxx",
        reason="Payout for Leather bag",
        reference=ReferenceGenerator.payout(hold.id),
    )
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import httpx
from django.conf import settings

from payments.exceptions import (
    GatewayAuthenticationError,
    GatewayError,
    GatewayRateLimitError,
    GatewayRequestError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)

SIGNATURE_HEADER = "x-paystack-signature"


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class ChargeInitResult:
    """
    Result from /transaction/initialize.

    Attributes:
        checkout_url: Hosted checkout page the buyer is redirected to
        reference: Our transaction reference, echoed by the gateway
        access_code: Gateway access code for inline checkout
    """

    checkout_url: str
    reference: str
    access_code: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChargeVerification:
    """
    Result from /transaction/verify/{reference}.

    Attributes:
        reference: Transaction reference
        status: Gateway charge status (success, failed, abandoned, ...)
        amount_cents: Charged amount in minor units
        currency: Currency code
        channel: Payment channel (card, mobile_money, ...)
        gateway_id: Gateway's numeric transaction id
        paid_at: When the gateway recorded the charge (ISO string)
    """

    reference: str
    status: str
    amount_cents: int
    currency: str
    channel: str = ""
    gateway_id: str = ""
    paid_at: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_successful(self) -> bool:
        return self.status == "success"


@dataclass
class TransferResult:
    """
    Result from /transfer.

    Attributes:
        transfer_code: Gateway transfer code (TRF_xxx)
        reference: Our transfer reference
        status: Gateway transfer status (pending, success, otp, ...)
        amount_cents: Transferred amount in minor units
    """

    transfer_code: str
    reference: str
    status: str
    amount_cents: int
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    """
    Result from /refund.

    Attributes:
        refund_reference: Gateway refund id
        status: Gateway refund status (pending, processing, processed)
        amount_cents: Refunded amount in minor units
        transaction_reference: Reference of the refunded charge
    """

    refund_reference: str
    status: str
    amount_cents: int
    transaction_reference: str
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class RecipientResult:
    """Result from /transferrecipient."""

    recipient_code: str
    name: str
    account_number: str = ""
    bank_code: str = ""
    bank_name: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class Bank:
    name: str
    code: str
    type: str = ""
    currency: str = ""


# =============================================================================
# Reference Generator
# =============================================================================


class ReferenceGenerator:
    """
    Build gateway references.

    Transfer references are derived from the hold id so resubmitting the
    same attempt is deduplicated by the gateway. Retries append a suffix so
    the gateway treats them as fresh attempts.

    Example:
        ReferenceGenerator.payout(hold.id)
        # "payout_3f2a..."
        ReferenceGenerator.payout(hold.id, retry=2)
        # "payout_3f2a..._retry_2"
    """

    @staticmethod
    def payout(hold_id: uuid.UUID, retry: int = 0) -> str:
        base = f"payout_{hold_id.hex}"
        return f"{base}_retry_{retry}" if retry else base

    @staticmethod
    def charge() -> str:
        """Fresh reference for a new checkout attempt."""
        return f"esc_{uuid.uuid4().hex}"


# =============================================================================
# Paystack Adapter
# =============================================================================


class PaystackAdapter:
    """
    Adapter for Paystack API operations.

    All methods are classmethods - no instance state is maintained.
    Thread-safe for use from Celery workers.

    Every operation either returns a result dataclass or raises a
    GatewayError subclass. Callers decide how a failure is compensated.
    """

    # Swapped for httpx.MockTransport in tests
    transport: httpx.BaseTransport | None = None

    # =========================================================================
    # Configuration
    # =========================================================================

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _client(cls) -> httpx.Client:
        """HTTP client with auth header and the configured timeout."""
        timeout = getattr(settings, "PAYSTACK_API_TIMEOUT_SECONDS", 10)
        return httpx.Client(
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {settings.PAYSTACK_SECRET_KEY}",
                "Content-Type": "application/json",
            },
            transport=cls.transport,
        )

    @classmethod
    def _request(
        cls,
        method: str,
        path: str,
        log_context: dict[str, Any],
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Call the API and return the envelope's ``data``.

        Raises:
            GatewayAuthenticationError: No secret key, or key rejected
            GatewayTimeoutError: No response within the timeout
            GatewayUnavailableError: Network failure or 5xx
            GatewayRateLimitError: 429
            GatewayRequestError: Other 4xx, or ``status: false``
        """
        logger = cls.get_logger()

        if not settings.PAYSTACK_SECRET_KEY:
            logger.critical("Paystack secret key is not configured", extra=log_context)
            raise GatewayAuthenticationError("Payment gateway is not configured")

        start_time = time.time()
        logger.info("Starting Paystack operation", extra=log_context)

        try:
            with cls._client() as client:
                response = client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "Paystack request timed out",
                extra={**log_context, "duration_ms": duration_ms},
            )
            raise GatewayTimeoutError(
                "Payment gateway did not respond in time",
                details={"error": str(e)},
            ) from e
        except httpx.HTTPError as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "Connection error to Paystack",
                extra={**log_context, "duration_ms": duration_ms},
                exc_info=True,
            )
            raise GatewayUnavailableError(
                "Could not connect to payment gateway",
                details={"error": str(e)},
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        body = cls._parse_body(response)
        cls._raise_for_status(response, body, {**log_context, "duration_ms": duration_ms})

        logger.info(
            "Paystack operation completed",
            extra={**log_context, "duration_ms": duration_ms},
        )
        return body.get("data")

    @staticmethod
    def _parse_body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @classmethod
    def _raise_for_status(
        cls,
        response: httpx.Response,
        body: dict[str, Any],
        log_context: dict[str, Any],
    ) -> None:
        """
        Translate an HTTP response into a GatewayError, if it is one.

        Paystack answers validation failures with 400 and ``status: false``;
        a 200 with ``status: false`` is treated the same way.
        """
        logger = cls.get_logger()
        status_code = response.status_code
        message = body.get("message") or f"Paystack API error: {status_code}"
        log_context = {**log_context, "http_status": status_code}

        if status_code == 401:
            logger.critical("Paystack authentication failed - check secret key", extra=log_context)
            raise GatewayAuthenticationError(message, http_status=status_code)

        if status_code == 429:
            logger.warning("Rate limited by Paystack", extra=log_context)
            raise GatewayRateLimitError(
                "Payment gateway rate limit exceeded. Please retry.",
                http_status=status_code,
            )

        if status_code >= 500:
            logger.error("Paystack server error", extra=log_context)
            raise GatewayUnavailableError(message, http_status=status_code)

        if status_code >= 400 or body.get("status") is not True:
            logger.error(
                "Paystack rejected request",
                extra={**log_context, "gateway_message": message},
            )
            raise GatewayRequestError(message, http_status=status_code)

    # =========================================================================
    # Charges
    # =========================================================================

    @classmethod
    def initialize_charge(
        cls,
        amount_cents: int,
        email: str,
        reference: str,
        currency: str = "KES",
        metadata: dict[str, Any] | None = None,
        channels: list[str] | None = None,
        callback_url: str | None = None,
    ) -> ChargeInitResult:
        """
        Start a hosted checkout for a buyer.

        Args:
            amount_cents: Amount in minor units
            email: Buyer email (required by the gateway)
            reference: Our transaction reference
            metadata: Attached to the charge and echoed in webhooks
            channels: Allowed channels, e.g. ["card", "mobile_money"]

        Returns:
            ChargeInitResult with the checkout URL
        """
        payload: dict[str, Any] = {
            "amount": amount_cents,
            "email": email,
            "currency": currency,
            "reference": reference,
            "metadata": metadata or {},
        }
        callback_url = callback_url or getattr(settings, "PAYSTACK_CALLBACK_URL", "")
        if callback_url:
            payload["callback_url"] = callback_url
        if channels:
            payload["channels"] = channels

        data = cls._request(
            "POST",
            "/transaction/initialize",
            {"operation": "initialize_charge", "reference": reference, "amount_cents": amount_cents},
            json=payload,
        )
        return ChargeInitResult(
            checkout_url=data["authorization_url"],
            reference=data.get("reference", reference),
            access_code=data.get("access_code", ""),
            raw_response=data,
        )

    @classmethod
    def verify_charge(cls, reference: str) -> ChargeVerification:
        """Look up a charge's current status at the gateway."""
        data = cls._request(
            "GET",
            f"/transaction/verify/{reference}",
            {"operation": "verify_charge", "reference": reference},
        )
        return ChargeVerification(
            reference=data.get("reference", reference),
            status=data.get("status", ""),
            amount_cents=int(data.get("amount") or 0),
            currency=data.get("currency", ""),
            channel=data.get("channel") or "",
            gateway_id=str(data.get("id") or ""),
            paid_at=data.get("paid_at"),
            raw_response=data,
        )

    # =========================================================================
    # Transfers
    # =========================================================================

    @classmethod
    def create_transfer_recipient(
        cls,
        recipient_type: str,
        name: str,
        account_number: str,
        bank_code: str,
        currency: str = "KES",
    ) -> RecipientResult:
        """
        Register a payout destination.

        Args:
            recipient_type: "nuban" for bank accounts, "mobile_money" for M-Pesa
            name: Account holder name
            account_number: Bank account number or normalized phone number
            bank_code: Bank code ("MPESA" for M-Pesa)
        """
        data = cls._request(
            "POST",
            "/transferrecipient",
            {"operation": "create_transfer_recipient", "recipient_type": recipient_type},
            json={
                "type": recipient_type,
                "name": name,
                "account_number": account_number,
                "bank_code": bank_code,
                "currency": currency,
            },
        )
        details = data.get("details") or {}
        return RecipientResult(
            recipient_code=data["recipient_code"],
            name=data.get("name", name),
            account_number=details.get("account_number", account_number),
            bank_code=details.get("bank_code", bank_code),
            bank_name=details.get("bank_name") or "",
            raw_response=data,
        )

    @classmethod
    def initiate_transfer(
        cls,
        amount_cents: int,
        recipient_code: str,
        reason: str,
        reference: str,
        currency: str = "KES",
    ) -> TransferResult:
        """
        Send funds from the platform balance to a recipient.

        The final outcome arrives later as transfer.success, transfer.failed
        or transfer.reversed.

        Raises:
            GatewayTimeoutError: The transfer may or may not have been queued
        """
        data = cls._request(
            "POST",
            "/transfer",
            {
                "operation": "initiate_transfer",
                "reference": reference,
                "amount_cents": amount_cents,
                "recipient_code": recipient_code,
            },
            json={
                "source": "balance",
                "amount": amount_cents,
                "recipient": recipient_code,
                "reason": reason,
                "reference": reference,
                "currency": currency,
            },
        )
        return TransferResult(
            transfer_code=data.get("transfer_code", ""),
            reference=data.get("reference", reference),
            status=data.get("status", ""),
            amount_cents=int(data.get("amount") or amount_cents),
            raw_response=data,
        )

    @classmethod
    def list_banks(cls, country: str = "kenya") -> list[Bank]:
        data = cls._request(
            "GET",
            "/bank",
            {"operation": "list_banks", "country": country},
            params={"country": country},
        )
        return [
            Bank(
                name=bank.get("name", ""),
                code=bank.get("code", ""),
                type=bank.get("type", ""),
                currency=bank.get("currency", ""),
            )
            for bank in data or []
        ]

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def initiate_refund(
        cls,
        transaction_reference: str,
        amount_cents: int | None = None,
        reason: str = "",
    ) -> RefundResult:
        """
        Refund a charge, fully or partially.

        Args:
            transaction_reference: Reference of the original charge
            amount_cents: Partial amount, or None for the full charge
            reason: Merchant note stored with the refund
        """
        payload: dict[str, Any] = {"transaction": transaction_reference}
        if amount_cents is not None:
            payload["amount"] = amount_cents
        if reason:
            payload["merchant_note"] = reason

        data = cls._request(
            "POST",
            "/refund",
            {
                "operation": "initiate_refund",
                "reference": transaction_reference,
                "amount_cents": amount_cents,
            },
            json=payload,
        )
        refunded_txn = data.get("transaction") or {}
        return RefundResult(
            refund_reference=str(data.get("id") or data.get("refund_reference") or ""),
            status=data.get("status", ""),
            amount_cents=int(data.get("amount") or amount_cents or 0),
            transaction_reference=refunded_txn.get("reference", transaction_reference),
            raw_response=data,
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    @classmethod
    def verify_webhook_signature(cls, payload: bytes, signature: str | None) -> bool:
        """
        Check a webhook body against its x-paystack-signature header.

        The header is the hex HMAC-SHA512 of the raw body keyed with the
        secret key. Returns False when no secret is configured.
        """
        secret = settings.PAYSTACK_SECRET_KEY
        if not secret or not signature:
            return False
        expected = hmac.new(secret.encode(), payload, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def format_phone_number(phone: str) -> str:
        """
        Normalize a Kenyan phone number to 254XXXXXXXXX.

        Example:
            format_phone_number("0712 345 678")   # "254712345678"
            format_phone_number("+254712345678")  # "254712345678"
            format_phone_number("712345678")      # "254712345678"
        """
        digits = re.sub(r"\D", "", phone or "")
        if digits.startswith("0"):
            return "254" + digits[1:]
        if digits.startswith(("7", "1")) and len(digits) == 9:
            return "254" + digits
        return digits


# =============================================================================
# Adapter Selection
# =============================================================================

_gateway_adapter: Any = None


def get_gateway_adapter() -> Any:
    """Adapter used by the services (PaystackAdapter unless overridden)."""
    return _gateway_adapter or PaystackAdapter


def set_gateway_adapter(adapter: Any) -> None:
    """
    Override the adapter used by the services. Pass None to reset.

    Example:
        set_gateway_adapter(MagicMock(spec=PaystackAdapter))
    """
    global _gateway_adapter
    _gateway_adapter = adapter
