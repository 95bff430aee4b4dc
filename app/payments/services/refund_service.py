"""
Refund service: the gateway side of refunds.

The escrow engine settles the ledger side of a refund (pending balance,
hold and transaction status) and creates the Refund row. This service then
asks the gateway to return the money and tracks the gateway's answer:

1. submit_refund: call initiate_refund outside any database transaction,
   store the gateway reference and move the row to PROCESSING, or to
   NEEDS_ATTENTION when the gateway call fails
2. apply_refund_event: refund.* webhooks update the status and log;
   only refund.processed finalizes the hold and transaction

A failed gateway call never undoes the ledger side. The row is left in
NEEDS_ATTENTION for an operator to reconcile.

Usage:
    from payments.services import RefundService

    result = RefundService.submit_refund(refund.id)
    if not result.success:
        logger.error(result.error)  # ledger is already corrected
"""

from __future__ import annotations

import uuid
from typing import Any

from django.db import transaction
from django.utils import timezone

from core.services import BaseService, ServiceResult
from payments.adapters import get_gateway_adapter
from payments.exceptions import GatewayError
from payments.models import EscrowHold, Refund, Transaction
from payments.state_machines import EscrowHoldStatus, RefundStatus, TransactionStatus

# refund.* webhook event -> Refund status
EVENT_STATUSES = {
    "refund.pending": RefundStatus.PENDING,
    "refund.processing": RefundStatus.PROCESSING,
    "refund.needs-attention": RefundStatus.NEEDS_ATTENTION,
    "refund.failed": RefundStatus.FAILED,
    "refund.processed": RefundStatus.PROCESSED,
}


class RefundService(BaseService):
    """Gateway-side refund lifecycle."""

    @classmethod
    def submit_refund(cls, refund_id: uuid.UUID) -> ServiceResult[Refund]:
        """
        Ask the gateway to return a refund's amount to the buyer.

        Safe to call again: a refund the gateway already accepted is not
        resubmitted.

        Returns:
            ServiceResult with the Refund; a failure (carrying the Refund as
            data) when the gateway rejected or did not answer the call
        """
        logger = cls.get_logger()
        refund = Refund.objects.select_related("transaction").filter(id=refund_id).first()
        if refund is None:
            return ServiceResult.failure(
                f"Refund {refund_id} not found",
                error_code="REFUND_NOT_FOUND",
            )

        if refund.refund_reference:
            logger.info(
                "Refund already accepted by gateway",
                extra={"refund_id": str(refund.id), "refund_reference": refund.refund_reference},
            )
            return ServiceResult.success(refund)

        adapter = get_gateway_adapter()
        try:
            gateway_result = adapter.initiate_refund(
                transaction_reference=refund.transaction.payment_reference,
                amount_cents=refund.amount_cents,
                reason=refund.reason,
            )
        except GatewayError as e:
            logger.error(
                "Gateway refund failed; ledger already corrected, manual follow-up needed",
                extra={
                    "refund_id": str(refund.id),
                    "transaction_id": str(refund.transaction_id),
                    "amount_cents": refund.amount_cents,
                    "error_code": e.error_code,
                    "error": e.message,
                },
            )
            with transaction.atomic():
                refund = Refund.objects.select_for_update().get(id=refund.id)
                if refund.status == RefundStatus.PENDING:
                    refund.status = RefundStatus.NEEDS_ATTENTION
                refund.append_log(
                    "gateway_failed",
                    {"error": e.message, "error_code": e.error_code, "retryable": e.is_retryable},
                )
                refund.save(update_fields=["status", "logs", "updated_at"])
            return ServiceResult.failure(e.message, error_code="GATEWAY_ERROR", data=refund)

        with transaction.atomic():
            refund = Refund.objects.select_for_update().get(id=refund.id)
            refund.refund_reference = gateway_result.refund_reference or None
            if refund.status == RefundStatus.PENDING:
                refund.status = (
                    RefundStatus.PROCESSED
                    if gateway_result.status == "processed"
                    else RefundStatus.PROCESSING
                )
                if refund.status == RefundStatus.PROCESSED:
                    refund.processed_at = timezone.now()
            refund.append_log(
                "gateway_accepted",
                {
                    "refund_reference": gateway_result.refund_reference,
                    "gateway_status": gateway_result.status,
                },
            )
            refund.save()

        logger.info(
            "Gateway accepted refund",
            extra={
                "refund_id": str(refund.id),
                "refund_reference": refund.refund_reference,
                "amount_cents": refund.amount_cents,
            },
        )
        return ServiceResult.success(refund)

    @classmethod
    def apply_refund_event(cls, event_type: str, data: dict[str, Any]) -> ServiceResult[Refund | None]:
        """
        Apply a refund.* webhook to the matching Refund.

        An event for a refund we have no record of is acknowledged without
        changes. refund.processed also finalizes a hold still in REFUNDING.
        """
        logger = cls.get_logger()
        status = EVENT_STATUSES.get(event_type)
        if status is None:
            return ServiceResult.failure(
                f"Not a refund event: {event_type}",
                error_code="VALIDATION_ERROR",
            )

        refund = cls._find_refund(data)
        if refund is None:
            logger.warning(
                "Refund webhook for unknown refund, ignoring",
                extra={
                    "event_type": event_type,
                    "transaction_reference": cls._transaction_reference(data),
                },
            )
            return ServiceResult.success(None)

        with transaction.atomic():
            refund = Refund.objects.select_for_update().get(id=refund.id)

            if refund.is_settled and status != RefundStatus.PROCESSED:
                logger.info(
                    "Refund already processed, ignoring late status",
                    extra={"refund_id": str(refund.id), "event_type": event_type},
                )
                return ServiceResult.success(refund)

            refund.status = status
            if status == RefundStatus.PROCESSED and refund.processed_at is None:
                refund.processed_at = timezone.now()
            if not refund.refund_reference and data.get("id"):
                refund.refund_reference = str(data["id"])
            refund.append_log(
                event_type,
                {
                    "gateway_status": data.get("status"),
                    "amount": data.get("amount"),
                },
            )
            refund.save()

            if status == RefundStatus.PROCESSED:
                cls._finalize_refunded(refund)

        log = logger.error if status in (RefundStatus.FAILED, RefundStatus.NEEDS_ATTENTION) else logger.info
        log(
            f"Refund moved to {status}",
            extra={"refund_id": str(refund.id), "event_type": event_type},
        )
        return ServiceResult.success(refund)

    @classmethod
    def _finalize_refunded(cls, refund: Refund) -> None:
        """Complete a hold (and a full refund's transaction) left in REFUNDING."""
        if refund.escrow_hold_id is None:
            return

        hold = EscrowHold.objects.select_for_update().get(id=refund.escrow_hold_id)
        if hold.status == EscrowHoldStatus.REFUNDING:
            hold.complete_refund()
            hold.save()

        if hold.parent_id is not None:
            return

        txn = Transaction.objects.select_for_update().get(id=refund.transaction_id)
        if txn.status in (TransactionStatus.COMPLETED, TransactionStatus.REFUNDING):
            txn.mark_refunded()
            txn.save()

    @staticmethod
    def _transaction_reference(data: dict[str, Any]) -> str | None:
        reference = data.get("transaction_reference")
        if not reference and isinstance(data.get("transaction"), dict):
            reference = data["transaction"].get("reference")
        return reference

    @classmethod
    def _find_refund(cls, data: dict[str, Any]) -> Refund | None:
        """By gateway refund id first, then the latest refund for the charge."""
        for key in ("id", "refund_reference"):
            if data.get(key):
                refund = Refund.objects.filter(refund_reference=str(data[key])).first()
                if refund is not None:
                    return refund

        reference = cls._transaction_reference(data)
        if not reference:
            return None
        return (
            Refund.objects.filter(transaction__payment_reference=reference)
            .order_by("-created_at")
            .first()
        )
