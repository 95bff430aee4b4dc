"""
Escrow service: the state machine that moves buyer funds.

    lock_escrow       paid transaction -> HELD hold, pending += amount
    release_escrow    HELD -> RELEASED, pending -> available, then payout
    refund_buyer      HELD -> REFUNDING -> REFUNDED, pending -= amount, gateway refund
    split_hold        HELD -> SPLIT, refunded sub-hold + released sub-hold
    auto_release      dispatch older than the window, unconfirmed, undisputed
    confirm_delivery  buyer's confirmation code -> release

Every balance change goes through payments.ledger.LedgerService in the same
database transaction as the hold status change, so the two never disagree.
Gateway calls (refunds, payout transfers) happen after that transaction has
committed and never roll it back.

Concurrency:
    The hold row is locked (select_for_update) before its status is checked.
    A second caller waits, then sees the new status and fails cleanly with
    INVALID_STATE_TRANSITION / ALREADY_RELEASED / ALREADY_REFUNDED.

Usage:
    from payments.services import EscrowService

    result = EscrowService.release_escrow(hold.id, reason="buyer_confirmed")
    if result.success and result.data.payout_error_code == "PAYOUT_SETTINGS_MISSING":
        ...
"""

from __future__ import annotations

import uuid
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.services import BaseService, ServiceResult
from marketplace.services import DeliveryService, LinkStatusService
from payments.ledger import InsufficientBalance, LedgerReference, LedgerService, SellerNotFound
from payments.models import Dispute, EscrowHold, Payout, Refund, Transaction
from payments.services.outcomes import AutoReleaseOutcome, EscrowOutcome, SellerSummary
from payments.services.payout_service import PayoutService
from payments.services.refund_service import RefundService
from payments.state_machines import (
    DisputeInitiator,
    EscrowHoldStatus,
    PayoutStatus,
    TransactionStatus,
)

# Release reasons
BUYER_CONFIRMED = "buyer_confirmed"
AUTO_RELEASE = "auto_release"
DISPUTE_PAY_SELLER = "dispute_pay_seller"
DISPUTE_PARTIAL = "dispute_partial_refund"


class EscrowService(BaseService):
    """
    Escrow engine operations.

    Expected business conditions come back as ServiceResult failures with
    an error code. Database errors propagate to the caller (view, webhook
    task or scheduler), which retries the whole operation.
    """

    # =========================================================================
    # Lock
    # =========================================================================

    @classmethod
    def lock_escrow(cls, transaction_id: uuid.UUID) -> ServiceResult[EscrowOutcome]:
        """
        Hold a completed transaction's funds for its seller.

        Idempotent: if the transaction already has a hold, that hold is
        returned (created=False) and the balance is not touched again.
        """
        logger = cls.get_logger()

        with transaction.atomic():
            txn = Transaction.objects.select_for_update().filter(id=transaction_id).first()
            if txn is None:
                return ServiceResult.failure(
                    f"Transaction {transaction_id} not found",
                    error_code="TRANSACTION_NOT_FOUND",
                )

            existing = cls._root_hold(txn.id)
            if existing is not None:
                logger.info(
                    "Escrow already locked",
                    extra={"transaction_id": str(txn.id), "hold_id": str(existing.id)},
                )
                return ServiceResult.success(
                    cls.outcome_for("locked", existing, created=False, message="Escrow already locked")
                )

            if txn.status != TransactionStatus.COMPLETED:
                return ServiceResult.failure(
                    f"Cannot lock escrow for a transaction in '{txn.status}' state",
                    error_code="INVALID_STATE_TRANSITION",
                )

            try:
                with transaction.atomic():
                    hold = EscrowHold.objects.create(
                        transaction=txn,
                        seller_id=txn.seller_id,
                        amount_cents=txn.amount_cents,
                        currency=txn.currency,
                    )
            except IntegrityError:
                hold = cls._root_hold(txn.id)
                return ServiceResult.success(
                    cls.outcome_for("locked", hold, created=False, message="Escrow already locked")
                )

            LedgerService.credit_pending(
                seller_id=hold.seller_id,
                amount_cents=hold.amount_cents,
                idempotency_key=f"escrow_locked:{hold.id}",
                reference=LedgerReference("escrow_hold", hold.id),
            )
            LinkStatusService.mark_paid(txn.link_id)

        logger.info(
            "Escrow locked",
            extra={
                "transaction_id": str(txn.id),
                "hold_id": str(hold.id),
                "seller_id": str(hold.seller_id),
                "amount_cents": hold.amount_cents,
            },
        )
        return ServiceResult.success(cls.outcome_for("locked", hold, message="Escrow locked"))

    # =========================================================================
    # Release
    # =========================================================================

    @classmethod
    def release_escrow(
        cls,
        hold_id: uuid.UUID,
        reason: str = BUYER_CONFIRMED,
    ) -> ServiceResult[EscrowOutcome]:
        """
        Release a HELD hold to the seller and start the payout.

        The balance move and the status change commit together. The payout
        is started after commit; its failure (e.g. PAYOUT_SETTINGS_MISSING)
        is reported in the outcome and does not undo the release.
        """
        try:
            with transaction.atomic():
                hold = EscrowHold.objects.select_for_update().filter(id=hold_id).first()
                if hold is None:
                    return ServiceResult.failure(
                        f"Escrow hold {hold_id} not found",
                        error_code="HOLD_NOT_FOUND",
                    )
                rejected = cls._require_held(hold, "release")
                if rejected is not None:
                    return rejected
                cls._apply_release(hold, reason)
        except InsufficientBalance as e:
            return cls._ledger_mismatch(hold_id, e)

        return ServiceResult.success(cls._start_payout(hold, reason))

    @classmethod
    def _apply_release(cls, hold: EscrowHold, reason: str) -> None:
        """HELD -> RELEASED with the balance move. Caller holds the row lock."""
        hold.release(reason=reason)
        hold.save()
        LedgerService.move_pending_to_available(
            seller_id=hold.seller_id,
            amount_cents=hold.amount_cents,
            idempotency_key=f"escrow_released:{hold.id}",
            reference=LedgerReference("escrow_hold", hold.id),
        )
        if hold.parent_id is None:
            LinkStatusService.mark_completed(
                Transaction.objects.values_list("link_id", flat=True).get(id=hold.transaction_id)
            )

    @classmethod
    def _start_payout(cls, hold: EscrowHold, reason: str) -> EscrowOutcome:
        cls.get_logger().info(
            "Escrow released",
            extra={
                "hold_id": str(hold.id),
                "transaction_id": str(hold.transaction_id),
                "amount_cents": hold.amount_cents,
                "release_reason": reason,
            },
        )
        outcome = cls.outcome_for("released", hold, message="Escrow released")

        payout_result = PayoutService.initiate_auto_payout(hold.id)
        if payout_result.data is not None:
            outcome.payout_id = payout_result.data.payout_id
        if not payout_result.success:
            outcome.payout_error = payout_result.error
            outcome.payout_error_code = payout_result.error_code
        return outcome

    # =========================================================================
    # Refund
    # =========================================================================

    @classmethod
    def refund_buyer(
        cls,
        transaction_id: uuid.UUID,
        reason: str,
        initiated_by: str = DisputeInitiator.SYSTEM,
    ) -> ServiceResult[EscrowOutcome]:
        """
        Return a HELD hold's funds to the buyer.

        Phase 1 corrects the ledger and records the Refund; phase 2 asks the
        gateway; phase 3 finalizes hold and transaction whatever the gateway
        said. A hold left in REFUNDING by an interrupted call is resumed.

        Returns:
            ServiceResult[EscrowOutcome]; failure codes TRANSACTION_NOT_FOUND,
            HOLD_NOT_FOUND, ALREADY_RELEASED, ALREADY_REFUNDED,
            INVALID_STATE_TRANSITION
        """
        logger = cls.get_logger()

        # Phase 1
        try:
            with transaction.atomic():
                txn = Transaction.objects.select_for_update().filter(id=transaction_id).first()
                if txn is None:
                    return ServiceResult.failure(
                        f"Transaction {transaction_id} not found",
                        error_code="TRANSACTION_NOT_FOUND",
                    )

                hold = cls._root_hold(txn.id, for_update=True)
                if hold is None:
                    return ServiceResult.failure(
                        f"Transaction {transaction_id} has no escrow hold",
                        error_code="HOLD_NOT_FOUND",
                    )

                if hold.status == EscrowHoldStatus.REFUNDING:
                    refund = Refund.objects.filter(escrow_hold=hold).order_by("-created_at").first()
                    logger.info(
                        "Resuming interrupted refund",
                        extra={"hold_id": str(hold.id), "transaction_id": str(txn.id)},
                    )
                else:
                    rejected = cls._require_held(hold, "refund")
                    if rejected is not None:
                        return rejected

                    hold.begin_refund()
                    hold.save()
                    LedgerService.debit_pending(
                        seller_id=hold.seller_id,
                        amount_cents=hold.amount_cents,
                        idempotency_key=f"escrow_refunded:{hold.id}",
                        reference=LedgerReference("escrow_hold", hold.id),
                    )
                    txn.start_refund()
                    txn.save()
                    LinkStatusService.mark_cancelled(txn.link_id)
                    refund = None

                if refund is None:
                    refund = cls._create_refund(txn, hold, hold.amount_cents, reason, initiated_by)
        except InsufficientBalance as e:
            return cls._ledger_mismatch(transaction_id, e)

        # Phase 2
        gateway = RefundService.submit_refund(refund.id)

        # Phase 3
        with transaction.atomic():
            hold = EscrowHold.objects.select_for_update().get(id=hold.id)
            if hold.status == EscrowHoldStatus.REFUNDING:
                hold.complete_refund()
                hold.save()
            txn = Transaction.objects.select_for_update().get(id=transaction_id)
            if txn.status in (TransactionStatus.COMPLETED, TransactionStatus.REFUNDING):
                txn.mark_refunded()
                txn.save()

        refund = gateway.data or Refund.objects.get(id=refund.id)
        logger.info(
            "Buyer refunded",
            extra={
                "transaction_id": str(transaction_id),
                "hold_id": str(hold.id),
                "refund_id": str(refund.id),
                "amount_cents": hold.amount_cents,
                "gateway_ok": gateway.success,
            },
        )
        outcome = cls.outcome_for("refunded", hold, message="Buyer refunded")
        outcome.refund_id = refund.id
        outcome.refund_status = refund.status
        outcome.gateway_error = None if gateway.success else gateway.error
        return ServiceResult.success(outcome)

    @classmethod
    def split_hold(
        cls,
        transaction_id: uuid.UUID,
        refund_amount_cents: int,
        reason: str,
        initiated_by: str = DisputeInitiator.SYSTEM,
    ) -> ServiceResult[EscrowOutcome]:
        """
        Refund part of a HELD hold to the buyer and release the rest.

        The root hold becomes SPLIT and two sub-holds carry the amount: a
        released one (paid out to the seller) and a refunded one, so each
        portion has its own unambiguous status.

        Returns:
            ServiceResult[EscrowOutcome] with both portions; failure codes as
            refund_buyer plus INVALID_PARTIAL_AMOUNT
        """
        logger = cls.get_logger()

        # Phase 1
        try:
            with transaction.atomic():
                txn = Transaction.objects.select_for_update().filter(id=transaction_id).first()
                if txn is None:
                    return ServiceResult.failure(
                        f"Transaction {transaction_id} not found",
                        error_code="TRANSACTION_NOT_FOUND",
                    )
                root = cls._root_hold(txn.id, for_update=True)
                if root is None:
                    return ServiceResult.failure(
                        f"Transaction {transaction_id} has no escrow hold",
                        error_code="HOLD_NOT_FOUND",
                    )

                if root.status == EscrowHoldStatus.SPLIT:
                    release_part = root.sub_holds.exclude(
                        status__in=[EscrowHoldStatus.REFUNDING, EscrowHoldStatus.REFUNDED]
                    ).get()
                    refund_part = root.sub_holds.filter(
                        status__in=[EscrowHoldStatus.REFUNDING, EscrowHoldStatus.REFUNDED]
                    ).get()
                    refund = Refund.objects.filter(escrow_hold=refund_part).first()
                    if refund is None:
                        refund = cls._create_refund(
                            txn, refund_part, refund_part.amount_cents, reason, initiated_by
                        )
                    logger.info(
                        "Resuming interrupted split",
                        extra={"hold_id": str(root.id), "transaction_id": str(txn.id)},
                    )
                else:
                    rejected = cls._require_held(root, "split")
                    if rejected is not None:
                        return rejected
                    if not 0 < refund_amount_cents < root.amount_cents:
                        return ServiceResult.failure(
                            f"Partial refund must be between 0 and {root.amount_cents} cents",
                            error_code="INVALID_PARTIAL_AMOUNT",
                        )

                    root.split()
                    root.save()

                    release_part = EscrowHold.objects.create(
                        transaction=txn,
                        seller_id=root.seller_id,
                        parent=root,
                        amount_cents=root.amount_cents - refund_amount_cents,
                        currency=root.currency,
                    )
                    cls._apply_release(release_part, DISPUTE_PARTIAL)

                    refund_part = EscrowHold.objects.create(
                        transaction=txn,
                        seller_id=root.seller_id,
                        parent=root,
                        amount_cents=refund_amount_cents,
                        currency=root.currency,
                    )
                    refund_part.begin_refund()
                    refund_part.save()
                    LedgerService.debit_pending(
                        seller_id=refund_part.seller_id,
                        amount_cents=refund_part.amount_cents,
                        idempotency_key=f"escrow_refunded:{refund_part.id}",
                        reference=LedgerReference("escrow_hold", refund_part.id),
                    )
                    LinkStatusService.mark_completed(txn.link_id)
                    refund = cls._create_refund(
                        txn, refund_part, refund_amount_cents, reason, initiated_by
                    )
        except InsufficientBalance as e:
            return cls._ledger_mismatch(transaction_id, e)

        # Phase 2
        gateway = RefundService.submit_refund(refund.id)

        # Phase 3
        with transaction.atomic():
            refund_part = EscrowHold.objects.select_for_update().get(id=refund_part.id)
            if refund_part.status == EscrowHoldStatus.REFUNDING:
                refund_part.complete_refund()
                refund_part.save()

        logger.info(
            "Escrow split",
            extra={
                "transaction_id": str(transaction_id),
                "hold_id": str(root.id),
                "released_cents": release_part.amount_cents,
                "refunded_cents": refund_part.amount_cents,
            },
        )

        payout_outcome = cls._start_payout(release_part, DISPUTE_PARTIAL)
        refund = gateway.data or Refund.objects.get(id=refund.id)

        outcome = cls.outcome_for("split", root, message="Escrow split between buyer and seller")
        outcome.released_amount_cents = release_part.amount_cents
        outcome.refunded_amount_cents = refund_part.amount_cents
        outcome.sub_hold_ids = [release_part.id, refund_part.id]
        outcome.payout_id = payout_outcome.payout_id
        outcome.payout_error = payout_outcome.payout_error
        outcome.payout_error_code = payout_outcome.payout_error_code
        outcome.refund_id = refund.id
        outcome.refund_status = refund.status
        outcome.gateway_error = None if gateway.success else gateway.error
        return ServiceResult.success(outcome)

    @classmethod
    def _create_refund(
        cls,
        txn: Transaction,
        hold: EscrowHold,
        amount_cents: int,
        reason: str,
        initiated_by: str,
    ) -> Refund:
        refund = Refund(
            transaction=txn,
            escrow_hold=hold,
            amount_cents=amount_cents,
            currency=hold.currency,
            reason=reason,
            initiated_by=initiated_by,
        )
        refund.append_log(
            "initiated",
            {"amount_cents": amount_cents, "reason": reason, "initiated_by": initiated_by},
        )
        refund.save()
        return refund

    # =========================================================================
    # Delivery-driven release
    # =========================================================================

    @classmethod
    def auto_release(cls, transaction_id: uuid.UUID) -> ServiceResult[AutoReleaseOutcome]:
        """
        Release a transaction's hold once the dispatch window has passed.

        Ineligibility (no dispatch proof, window not elapsed, buyer already
        confirmed, dispute pending, hold not HELD) is a successful result
        with released=False.
        """
        logger = cls.get_logger()

        txn = Transaction.objects.filter(id=transaction_id).first()
        if txn is None:
            return ServiceResult.failure(
                f"Transaction {transaction_id} not found",
                error_code="TRANSACTION_NOT_FOUND",
            )

        def not_eligible(reason: str) -> ServiceResult[AutoReleaseOutcome]:
            logger.info(
                "Transaction not eligible for auto-release",
                extra={"transaction_id": str(transaction_id), "reason": reason},
            )
            return ServiceResult.success(
                AutoReleaseOutcome(transaction_id=transaction_id, released=False, reason=reason)
            )

        dispatched_at = DeliveryService.get_dispatched_at(txn.id)
        if dispatched_at is None:
            return not_eligible("no_dispatch_proof")

        window = timedelta(hours=settings.ESCROW_AUTO_RELEASE_HOURS)
        if timezone.now() - dispatched_at < window:
            return not_eligible("window_not_elapsed")

        if DeliveryService.is_confirmed(txn.id):
            return not_eligible("already_confirmed")

        if cls._has_pending_dispute(txn.id):
            return not_eligible("dispute_pending")

        try:
            with transaction.atomic():
                hold = cls._root_hold(txn.id, for_update=True)
                if hold is None or hold.status != EscrowHoldStatus.HELD:
                    return not_eligible("not_held")
                # Re-checked under the hold lock; a dispute opened meanwhile wins
                if cls._has_pending_dispute(txn.id):
                    return not_eligible("dispute_pending")
                DeliveryService.mark_confirmed(txn.id, auto=True)
                cls._apply_release(hold, AUTO_RELEASE)
        except InsufficientBalance as e:
            return cls._ledger_mismatch(transaction_id, e)

        escrow = cls._start_payout(hold, AUTO_RELEASE)
        return ServiceResult.success(
            AutoReleaseOutcome(
                transaction_id=transaction_id,
                released=True,
                reason=AUTO_RELEASE,
                escrow=escrow,
            )
        )

    @classmethod
    def confirm_delivery(cls, confirmation_code: str) -> ServiceResult[EscrowOutcome]:
        """
        Buyer confirms receipt with their confirmation code; releases the hold.

        Returns:
            ServiceResult[EscrowOutcome]; failure codes CONFIRMATION_NOT_FOUND,
            DISPUTE_PENDING, ALREADY_RELEASED, ALREADY_REFUNDED,
            INVALID_STATE_TRANSITION
        """
        confirmation = DeliveryService.find_by_code(confirmation_code)
        if confirmation is None:
            return ServiceResult.failure(
                "Confirmation code not found",
                error_code="CONFIRMATION_NOT_FOUND",
            )
        transaction_id = confirmation.transaction_id

        try:
            with transaction.atomic():
                hold = cls._root_hold(transaction_id, for_update=True)
                if hold is None:
                    return ServiceResult.failure(
                        "Transaction has no escrow hold",
                        error_code="HOLD_NOT_FOUND",
                    )
                rejected = cls._require_held(hold, "release")
                if rejected is not None:
                    return rejected
                if cls._has_pending_dispute(transaction_id):
                    return ServiceResult.failure(
                        "Transaction has a pending dispute",
                        error_code="DISPUTE_PENDING",
                    )
                DeliveryService.mark_confirmed(transaction_id, auto=False)
                cls._apply_release(hold, BUYER_CONFIRMED)
        except InsufficientBalance as e:
            return cls._ledger_mismatch(transaction_id, e)

        return ServiceResult.success(cls._start_payout(hold, BUYER_CONFIRMED))

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def get_stale_escrows(
        cls,
        hours: int | None = None,
        limit: int | None = None,
    ) -> list[uuid.UUID]:
        """
        Transactions due for auto-release, oldest dispatch first.

        HELD root hold, dispatch proof older than the window, no buyer
        confirmation and no dispute whose resolution is still unapplied.
        """
        hours = settings.ESCROW_AUTO_RELEASE_HOURS if hours is None else hours
        limit = limit or settings.ESCROW_AUTO_RELEASE_BATCH_SIZE
        cutoff = timezone.now() - timedelta(hours=hours)

        queryset = (
            Transaction.objects.filter(
                escrow_holds__parent__isnull=True,
                escrow_holds__status=EscrowHoldStatus.HELD,
                shipping_proof__dispatched_at__lte=cutoff,
            )
            .exclude(delivery_confirmation__confirmed=True)
            .exclude(disputes__resolution_applied=False)
            .order_by("shipping_proof__dispatched_at")
            .values_list("id", flat=True)
            .distinct()
        )
        return list(queryset[:limit])

    @classmethod
    def get_seller_summary(cls, seller_id: uuid.UUID) -> ServiceResult[SellerSummary]:
        try:
            balances = LedgerService.get_balances(seller_id)
        except SellerNotFound as e:
            return ServiceResult.from_exception(e)

        payout_counts = {
            status: Payout.objects.filter(seller_id=seller_id, status=status).count()
            for status in (PayoutStatus.PENDING, PayoutStatus.FAILED)
        }
        return ServiceResult.success(
            SellerSummary(
                seller_id=seller_id,
                pending_escrow_cents=balances.pending_escrow_cents,
                available_cents=balances.available_cents,
                total_paid_out_cents=balances.total_paid_out_cents,
                currency=settings.ESCROW_CURRENCY,
                held_count=EscrowHold.objects.filter(
                    seller_id=seller_id,
                    status=EscrowHoldStatus.HELD,
                ).count(),
                pending_payout_count=payout_counts[PayoutStatus.PENDING],
                failed_payout_count=payout_counts[PayoutStatus.FAILED],
            )
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _root_hold(transaction_id: uuid.UUID, for_update: bool = False) -> EscrowHold | None:
        queryset = EscrowHold.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(transaction_id=transaction_id, parent__isnull=True).first()

    @staticmethod
    def _has_pending_dispute(transaction_id: uuid.UUID) -> bool:
        # A recorded resolution keeps blocking until its escrow action has run
        return Dispute.objects.filter(
            transaction_id=transaction_id,
            resolution_applied=False,
        ).exists()

    @classmethod
    def _require_held(cls, hold: EscrowHold, action: str) -> ServiceResult | None:
        """Failure result for a hold that already left HELD, else None."""
        if hold.status == EscrowHoldStatus.HELD:
            return None

        error_code = "INVALID_STATE_TRANSITION"
        if action != "release":
            if hold.status in (EscrowHoldStatus.RELEASED, EscrowHoldStatus.TRANSFER_FAILED):
                error_code = "ALREADY_RELEASED"
            elif hold.status in (EscrowHoldStatus.REFUNDING, EscrowHoldStatus.REFUNDED):
                error_code = "ALREADY_REFUNDED"

        cls.get_logger().warning(
            f"Cannot {action} hold in '{hold.status}' state",
            extra={"hold_id": str(hold.id), "hold_status": hold.status, "error_code": error_code},
        )
        return ServiceResult.failure(
            f"Cannot {action} hold in '{hold.status}' state",
            error_code=error_code,
        )

    @classmethod
    def _ledger_mismatch(cls, ref_id: uuid.UUID, exc: InsufficientBalance) -> ServiceResult:
        """A hold's amount is not in the balance it should be in."""
        cls.get_logger().critical(
            "Seller balance does not cover escrow operation",
            extra={"ref_id": str(ref_id), **exc.details},
        )
        return ServiceResult.failure(exc.message, error_code="INSUFFICIENT_BALANCE")

    @staticmethod
    def outcome_for(
        action: str,
        hold: EscrowHold,
        created: bool = True,
        message: str = "",
    ) -> EscrowOutcome:
        return EscrowOutcome(
            action=action,
            transaction_id=hold.transaction_id,
            hold_id=hold.id,
            amount_cents=hold.amount_cents,
            message=message,
            created=created,
        )
