"""
Webhook event handlers for Paystack events.

This module provides a handler registry keyed by GatewayEventType and the
handlers that route each event into the escrow engine or the payout
orchestrator.

Every handler is safe to replay: the services it calls check hold,
payout and transaction status before mutating anything. References we do
not know about are acknowledged, not failed, because a failing handler
only makes the gateway redeliver an event that still will not match.

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler(GatewayEventType.CHARGE_SUCCESS)
    def handle_charge_success(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Callable

from core.services import ServiceResult
from payments.models import WebhookEvent
from payments.services import CheckoutService, PayoutService, RefundService
from payments.webhooks.events import GatewayEventType

logger = logging.getLogger(__name__)

# Failures that redelivery cannot fix. They are logged by the service and
# acknowledged here so the event is not retried.
ACKNOWLEDGED_FAILURES = frozenset(
    {
        "TRANSACTION_NOT_FOUND",
        "PAYOUT_NOT_FOUND",
        "AMOUNT_MISMATCH",
        "MANUAL_INTERVENTION_REQUIRED",
    }
)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event kinds to handler functions
WEBHOOK_HANDLERS: dict[GatewayEventType, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(*event_types: GatewayEventType) -> Callable:
    """
    Decorator to register a handler for one or more event kinds.

    Usage:
        @register_handler(GatewayEventType.TRANSFER_FAILED, GatewayEventType.TRANSFER_REVERSED)
        def handle_transfer_failed(webhook_event: WebhookEvent) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        for event_type in event_types:
            WEBHOOK_HANDLERS[event_type] = func
            logger.debug(f"Registered webhook handler for {event_type.value}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to the handler for its kind.

    Unknown event names and kinds without a handler are acknowledged with
    success so new gateway events never fail ingestion.
    """
    event_type = GatewayEventType.parse(webhook_event.event_type)
    handler = WEBHOOK_HANDLERS.get(event_type) if event_type else None

    if handler is None:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"event_key": webhook_event.event_key},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {event_type.value} to handler",
        extra={"event_key": webhook_event.event_key},
    )
    return _acknowledge_permanent_failure(webhook_event, handler(webhook_event))


def _acknowledge_permanent_failure(webhook_event: WebhookEvent, result: ServiceResult) -> ServiceResult:
    if result.success or result.error_code not in ACKNOWLEDGED_FAILURES:
        return result
    logger.warning(
        "Webhook acknowledged without changes",
        extra={
            "event_key": webhook_event.event_key,
            "event_type": webhook_event.event_type,
            "error_code": result.error_code,
            "error": result.error,
        },
    )
    return ServiceResult.success(None)


def _invalid_payload(webhook_event: WebhookEvent, field: str) -> ServiceResult:
    logger.error(
        f"{webhook_event.event_type}: payload has no {field}",
        extra={"event_key": webhook_event.event_key},
    )
    return ServiceResult.failure(
        f"Could not extract {field} from webhook",
        error_code="INVALID_WEBHOOK_PAYLOAD",
    )


# =============================================================================
# Charge Handlers
# =============================================================================


@register_handler(GatewayEventType.CHARGE_SUCCESS)
def handle_charge_success(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Buyer payment confirmed: complete the transaction and lock escrow.

    A redelivered charge.success finds the hold already created and
    changes nothing.
    """
    data = webhook_event.data
    reference = data.get("reference")
    if not reference:
        return _invalid_payload(webhook_event, "reference")

    amount = data.get("amount")
    if amount is not None:
        try:
            amount = int(amount)
        except (TypeError, ValueError):
            return _invalid_payload(webhook_event, "amount")
    return CheckoutService.apply_charge_success(
        reference,
        amount_cents=amount,
        channel=data.get("channel") or "",
    )


# =============================================================================
# Transfer Handlers (Payout lifecycle)
# =============================================================================


@register_handler(GatewayEventType.TRANSFER_SUCCESS)
def handle_transfer_success(webhook_event: WebhookEvent) -> ServiceResult:
    data = webhook_event.data
    reference = data.get("reference")
    if not reference:
        return _invalid_payload(webhook_event, "reference")
    return PayoutService.handle_transfer_success(
        reference,
        transfer_code=data.get("transfer_code"),
    )


@register_handler(GatewayEventType.TRANSFER_FAILED, GatewayEventType.TRANSFER_REVERSED)
def handle_transfer_failed(webhook_event: WebhookEvent) -> ServiceResult:
    """Failed and reversed transfers both restore the seller's available balance."""
    data = webhook_event.data
    reference = data.get("reference")
    if not reference:
        return _invalid_payload(webhook_event, "reference")

    reason = data.get("reason") or data.get("gateway_response") or webhook_event.event_type
    return PayoutService.handle_transfer_failed(reference, reason=str(reason))


# =============================================================================
# Refund Handlers
# =============================================================================


@register_handler(
    GatewayEventType.REFUND_PENDING,
    GatewayEventType.REFUND_PROCESSING,
    GatewayEventType.REFUND_NEEDS_ATTENTION,
    GatewayEventType.REFUND_FAILED,
    GatewayEventType.REFUND_PROCESSED,
)
def handle_refund_event(webhook_event: WebhookEvent) -> ServiceResult:
    return RefundService.apply_refund_event(webhook_event.event_type, webhook_event.data)
