"""
Marketplace collaborator services.

LinkStatusService: payment link status, notified by the escrow engine
DeliveryService: dispatch proof and delivery confirmation stores

These hold no money. The escrow engine reads them (dispatch time,
confirmation) and notifies them (link paid / completed / cancelled).

Usage:
    from marketplace.services import DeliveryService

    result = DeliveryService.record_dispatch(
        transaction_id=txn.id,
        courier_name="G4S",
        tracking_number="G4S-123",
    )
"""

from __future__ import annotations

import uuid
from datetime import datetime

from django.db import transaction
from django.utils import timezone

from core.services import BaseService, ServiceResult
from marketplace.models import DeliveryConfirmation, LinkStatus, PaymentLink, ShippingProof
from payments.models import Transaction
from payments.state_machines import TransactionStatus


class LinkStatusService(BaseService):
    """
    Moves a payment link through its lifecycle.

    Each update is a conditional UPDATE on the allowed source states, so a
    late or repeated notification never moves a link backwards.
    """

    ALLOWED_SOURCES = {
        LinkStatus.PAID: [LinkStatus.ACTIVE],
        LinkStatus.DISPUTED: [LinkStatus.PAID],
        LinkStatus.COMPLETED: [LinkStatus.PAID, LinkStatus.DISPUTED],
        LinkStatus.CANCELLED: [LinkStatus.ACTIVE, LinkStatus.PAID, LinkStatus.DISPUTED],
    }

    @classmethod
    def _move(cls, link_id: uuid.UUID, target: str) -> bool:
        updated = PaymentLink.objects.filter(
            id=link_id,
            status__in=cls.ALLOWED_SOURCES[target],
        ).update(status=target, updated_at=timezone.now())

        if updated:
            cls.get_logger().info(
                f"Payment link moved to {target}",
                extra={"link_id": str(link_id), "link_status": target},
            )
        else:
            cls.get_logger().debug(
                f"Payment link not moved to {target}",
                extra={"link_id": str(link_id), "link_status": target},
            )
        return bool(updated)

    @classmethod
    def mark_paid(cls, link_id: uuid.UUID) -> bool:
        return cls._move(link_id, LinkStatus.PAID)

    @classmethod
    def mark_completed(cls, link_id: uuid.UUID) -> bool:
        return cls._move(link_id, LinkStatus.COMPLETED)

    @classmethod
    def mark_cancelled(cls, link_id: uuid.UUID) -> bool:
        return cls._move(link_id, LinkStatus.CANCELLED)

    @classmethod
    def mark_disputed(cls, link_id: uuid.UUID) -> bool:
        return cls._move(link_id, LinkStatus.DISPUTED)


class DeliveryService(BaseService):
    """Dispatch proof (starts the auto-release clock) and buyer confirmation."""

    @classmethod
    def record_dispatch(
        cls,
        transaction_id: uuid.UUID,
        courier_name: str,
        courier_contact: str = "",
        tracking_number: str = "",
    ) -> ServiceResult[ShippingProof]:
        """
        Store the seller's dispatch proof and issue a confirmation code.

        Recording dispatch twice returns the first proof unchanged, so the
        auto-release clock cannot be restarted.
        """
        logger = cls.get_logger()

        txn = Transaction.objects.filter(id=transaction_id).first()
        if txn is None:
            return ServiceResult.failure(
                f"Transaction {transaction_id} not found",
                error_code="TRANSACTION_NOT_FOUND",
            )
        if txn.status != TransactionStatus.COMPLETED:
            return ServiceResult.failure(
                f"Cannot record dispatch for a transaction in '{txn.status}' state",
                error_code="INVALID_STATE_TRANSITION",
            )

        with transaction.atomic():
            proof, created = ShippingProof.objects.get_or_create(
                transaction=txn,
                defaults={
                    "courier_name": courier_name,
                    "courier_contact": courier_contact,
                    "tracking_number": tracking_number,
                    "dispatched_at": timezone.now(),
                },
            )
            DeliveryConfirmation.objects.get_or_create(transaction=txn)

        if created:
            logger.info(
                "Dispatch recorded",
                extra={
                    "transaction_id": str(txn.id),
                    "courier_name": courier_name,
                    "dispatched_at": proof.dispatched_at.isoformat(),
                },
            )
        return ServiceResult.success(proof)

    @staticmethod
    def get_dispatched_at(transaction_id: uuid.UUID) -> datetime | None:
        return (
            ShippingProof.objects.filter(transaction_id=transaction_id)
            .values_list("dispatched_at", flat=True)
            .first()
        )

    @staticmethod
    def is_confirmed(transaction_id: uuid.UUID) -> bool:
        return DeliveryConfirmation.objects.filter(
            transaction_id=transaction_id,
            confirmed=True,
        ).exists()

    @staticmethod
    def find_by_code(confirmation_code: str) -> DeliveryConfirmation | None:
        code = (confirmation_code or "").strip().upper()
        if not code:
            return None
        return (
            DeliveryConfirmation.objects.select_related("transaction")
            .filter(confirmation_code=code)
            .first()
        )

    @classmethod
    def mark_confirmed(cls, transaction_id: uuid.UUID, auto: bool = False) -> DeliveryConfirmation:
        """
        Record that the item was delivered.

        Called inside the escrow engine's release transaction.
        """
        confirmation, _ = DeliveryConfirmation.objects.select_for_update().get_or_create(
            transaction_id=transaction_id,
        )
        if not confirmation.confirmed:
            confirmation.confirmed = True
            confirmation.confirmed_at = timezone.now()
            confirmation.auto_confirmed = auto
            confirmation.save(
                update_fields=["confirmed", "confirmed_at", "auto_confirmed", "updated_at"]
            )
            cls.get_logger().info(
                "Delivery confirmed",
                extra={"transaction_id": str(transaction_id), "auto_confirmed": auto},
            )
        return confirmation

    @classmethod
    def reject_delivery(
        cls,
        confirmation_code: str,
        reason: str,
    ) -> ServiceResult[DeliveryConfirmation]:
        """
        Record the buyer's rejection of a delivery.

        The dispute that blocks auto-release is opened by
        DisputeService.reject_delivery, which calls this first.
        """
        confirmation = cls.find_by_code(confirmation_code)
        if confirmation is None:
            return ServiceResult.failure(
                "Confirmation code not found",
                error_code="CONFIRMATION_NOT_FOUND",
            )
        if confirmation.confirmed:
            return ServiceResult.failure(
                "Delivery was already confirmed",
                error_code="DELIVERY_ALREADY_CONFIRMED",
            )

        confirmation.rejection_reason = reason
        confirmation.rejected_at = timezone.now()
        confirmation.save(update_fields=["rejection_reason", "rejected_at", "updated_at"])

        cls.get_logger().warning(
            "Delivery rejected by buyer",
            extra={"transaction_id": str(confirmation.transaction_id), "reason": reason},
        )
        return ServiceResult.success(confirmation)
