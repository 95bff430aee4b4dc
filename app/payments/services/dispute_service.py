"""
Dispute service: records disputes and applies their resolution.

A dispute with resolution NONE blocks auto-release. Resolving it records
the resolution first and then delegates to the escrow engine:

    refund_buyer    -> EscrowService.refund_buyer
    pay_seller      -> EscrowService.release_escrow
    partial_refund  -> EscrowService.split_hold

The delegated action runs exactly once per dispute. Once it has been
applied, resolving again with the same resolution returns the stored
outcome; a different resolution is rejected. A resolution that was
recorded but whose action failed can be re-run or corrected.

Usage:
    from payments.services import DisputeService

    result = DisputeService.resolve_dispute(
        dispute.id,
        DisputeResolution.PARTIAL_REFUND,
        partial_amount_cents=40000,
        resolved_by="ops@example.com",
    )
"""

from __future__ import annotations

import uuid

from django.db import IntegrityError, transaction
from django.utils import timezone

from core.services import BaseService, ServiceResult
from marketplace.services import DeliveryService, LinkStatusService
from payments.models import Dispute, EscrowHold, Transaction
from payments.services.escrow_service import DISPUTE_PAY_SELLER, EscrowService
from payments.services.outcomes import DisputeOutcome, EscrowOutcome
from payments.state_machines import (
    DisputeInitiator,
    DisputeResolution,
    EscrowHoldStatus,
    TransactionStatus,
)

RESOLUTIONS = (
    DisputeResolution.REFUND_BUYER,
    DisputeResolution.PAY_SELLER,
    DisputeResolution.PARTIAL_REFUND,
)


class DisputeService(BaseService):
    """Opening and resolving disputes."""

    @classmethod
    def open_dispute(
        cls,
        transaction_id: uuid.UUID,
        initiated_by: str,
        reason: str,
        description: str = "",
    ) -> ServiceResult[Dispute]:
        """
        Flag a paid transaction. At most one pending dispute per transaction.

        Returns:
            ServiceResult[Dispute]; failure codes TRANSACTION_NOT_FOUND,
            INVALID_STATE_TRANSITION, DISPUTE_ALREADY_OPEN
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
                f"Cannot dispute a transaction in '{txn.status}' state",
                error_code="INVALID_STATE_TRANSITION",
            )

        existing = Dispute.objects.filter(
            transaction_id=txn.id,
            resolution=DisputeResolution.NONE,
        ).first()
        if existing is not None:
            return ServiceResult.failure(
                "Transaction already has a pending dispute",
                error_code="DISPUTE_ALREADY_OPEN",
                data=existing,
            )

        try:
            with transaction.atomic():
                dispute = Dispute.objects.create(
                    transaction=txn,
                    initiated_by=initiated_by,
                    reason=reason,
                    description=description,
                )
        except IntegrityError:
            return ServiceResult.failure(
                "Transaction already has a pending dispute",
                error_code="DISPUTE_ALREADY_OPEN",
            )

        LinkStatusService.mark_disputed(txn.link_id)
        logger.warning(
            "Dispute opened",
            extra={
                "dispute_id": str(dispute.id),
                "transaction_id": str(txn.id),
                "initiated_by": initiated_by,
                "reason": reason,
            },
        )
        return ServiceResult.success(dispute)

    @classmethod
    def reject_delivery(cls, confirmation_code: str, reason: str) -> ServiceResult[Dispute]:
        """Buyer rejects a delivery: record it and open a buyer dispute."""
        rejection = DeliveryService.reject_delivery(confirmation_code, reason)
        if not rejection.success:
            return rejection
        return cls.open_dispute(
            transaction_id=rejection.data.transaction_id,
            initiated_by=DisputeInitiator.BUYER,
            reason="delivery_rejected",
            description=reason,
        )

    @classmethod
    def resolve_dispute(
        cls,
        dispute_id: uuid.UUID,
        resolution: str,
        partial_amount_cents: int | None = None,
        resolved_by: str = "",
        admin_notes: str = "",
    ) -> ServiceResult[DisputeOutcome]:
        """
        Record a resolution and apply it through the escrow engine.

        Returns:
            ServiceResult[DisputeOutcome]; failure codes DISPUTE_NOT_FOUND,
            DISPUTE_ALREADY_RESOLVED, INVALID_PARTIAL_AMOUNT, VALIDATION_ERROR
            and any failure of the delegated escrow operation
        """
        logger = cls.get_logger()

        if resolution not in RESOLUTIONS:
            return ServiceResult.failure(
                f"Unknown resolution: {resolution}",
                error_code="VALIDATION_ERROR",
                errors={"resolution": [f"Must be one of {', '.join(RESOLUTIONS)}."]},
            )

        with transaction.atomic():
            dispute = Dispute.objects.select_for_update().filter(id=dispute_id).first()
            if dispute is None:
                return ServiceResult.failure(
                    f"Dispute {dispute_id} not found",
                    error_code="DISPUTE_NOT_FOUND",
                )

            if dispute.resolution_applied:
                if dispute.resolution != resolution:
                    return ServiceResult.failure(
                        f"Dispute already resolved as {dispute.resolution}",
                        error_code="DISPUTE_ALREADY_RESOLVED",
                        data=DisputeOutcome(dispute.id, dispute.resolution, True, dispute.outcome),
                    )
                logger.info(
                    "Dispute already resolved, returning prior outcome",
                    extra={"dispute_id": str(dispute.id), "resolution": resolution},
                )
                return ServiceResult.success(
                    DisputeOutcome(dispute.id, dispute.resolution, True, dispute.outcome)
                )

            if resolution == DisputeResolution.PARTIAL_REFUND:
                if dispute.resolution == resolution and dispute.partial_refund_cents:
                    partial_amount_cents = dispute.partial_refund_cents
                invalid = cls._check_partial_amount(dispute.transaction_id, partial_amount_cents)
                if invalid is not None:
                    return invalid
            else:
                partial_amount_cents = None

            dispute.resolution = resolution
            dispute.partial_refund_cents = partial_amount_cents
            dispute.resolved_by = resolved_by or dispute.resolved_by
            dispute.admin_notes = admin_notes or dispute.admin_notes
            dispute.resolved_at = dispute.resolved_at or timezone.now()
            dispute.save()

        logger.info(
            "Dispute resolution recorded",
            extra={
                "dispute_id": str(dispute.id),
                "transaction_id": str(dispute.transaction_id),
                "resolution": resolution,
                "partial_amount_cents": partial_amount_cents,
            },
        )

        result = cls._apply(dispute, resolution, partial_amount_cents)
        if not result.success:
            logger.error(
                "Dispute resolution could not be applied",
                extra={
                    "dispute_id": str(dispute.id),
                    "resolution": resolution,
                    "error_code": result.error_code,
                },
            )
            return ServiceResult.failure(result.error, error_code=result.error_code)

        with transaction.atomic():
            dispute = Dispute.objects.select_for_update().get(id=dispute.id)
            dispute.resolution = resolution
            dispute.resolution_applied = True
            dispute.outcome = result.data.to_dict()
            dispute.save()

        logger.info(
            "Dispute resolved",
            extra={"dispute_id": str(dispute.id), "resolution": resolution},
        )
        return ServiceResult.success(
            DisputeOutcome(dispute.id, resolution, False, dispute.outcome)
        )

    @classmethod
    def _apply(
        cls,
        dispute: Dispute,
        resolution: str,
        partial_amount_cents: int | None,
    ) -> ServiceResult[EscrowOutcome]:
        """
        Run the escrow action for a resolution.

        A hold already in the state the resolution leads to (the action ran
        but the dispute was not marked applied) counts as applied.
        """
        reason = f"Dispute {dispute.id}: {dispute.reason}"
        hold = EscrowHold.objects.filter(
            transaction_id=dispute.transaction_id,
            parent__isnull=True,
        ).first()
        if hold is None:
            return ServiceResult.failure(
                "Disputed transaction has no escrow hold",
                error_code="HOLD_NOT_FOUND",
            )

        if resolution == DisputeResolution.REFUND_BUYER:
            if hold.status == EscrowHoldStatus.REFUNDED:
                return ServiceResult.success(
                    EscrowService.outcome_for("refunded", hold, created=False, message="Already refunded")
                )
            return EscrowService.refund_buyer(
                dispute.transaction_id,
                reason=reason,
                initiated_by=dispute.initiated_by,
            )

        if resolution == DisputeResolution.PAY_SELLER:
            if hold.status in (EscrowHoldStatus.RELEASED, EscrowHoldStatus.TRANSFER_FAILED):
                return ServiceResult.success(
                    EscrowService.outcome_for("released", hold, created=False, message="Already released")
                )
            return EscrowService.release_escrow(hold.id, reason=DISPUTE_PAY_SELLER)

        return EscrowService.split_hold(
            dispute.transaction_id,
            refund_amount_cents=partial_amount_cents,
            reason=reason,
            initiated_by=dispute.initiated_by,
        )

    @staticmethod
    def _check_partial_amount(
        transaction_id: uuid.UUID,
        partial_amount_cents: int | None,
    ) -> ServiceResult | None:
        hold = EscrowHold.objects.filter(
            transaction_id=transaction_id,
            parent__isnull=True,
        ).first()
        if hold is None or hold.status == EscrowHoldStatus.SPLIT:
            return None
        if partial_amount_cents is None or not 0 < partial_amount_cents < hold.amount_cents:
            return ServiceResult.failure(
                f"Partial refund must be greater than 0 and less than {hold.amount_cents} cents",
                error_code="INVALID_PARTIAL_AMOUNT",
            )
        return None
