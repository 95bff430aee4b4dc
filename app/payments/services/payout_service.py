"""
Payout service: turns released escrow into outbound transfers.

Every payout attempt is a two-phase operation:
1. Phase 1 (one database transaction): create a PENDING Payout and reserve
   its amount out of the seller's available balance
2. Phase 2 (no transaction open): call the gateway's initiate_transfer
3. Phase 3: store the transfer code, or compensate on failure by marking
   the Payout FAILED, restoring the reserved balance and moving the hold
   to TRANSFER_FAILED

The final outcome arrives as a transfer.success / transfer.failed /
transfer.reversed webhook, handled by handle_transfer_success and
handle_transfer_failed.

Balance invariant per Payout row:
    reserved on create, restored on failure, re-reserved by the retry row,
    moved to total_paid_out on success.

Usage:
    from payments.services import PayoutService

    result = PayoutService.initiate_auto_payout(hold.id)
    if result.error_code == "PAYOUT_SETTINGS_MISSING":
        notify_seller_to_add_payout_details(hold.seller)
"""

from __future__ import annotations

import uuid

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.services import BaseService, ServiceResult
from marketplace.models import Seller
from payments.adapters import PaystackAdapter, ReferenceGenerator, get_gateway_adapter
from payments.exceptions import GatewayError
from payments.ledger import InsufficientBalance, LedgerReference, LedgerService
from payments.models import EscrowHold, Payout, PayoutSettings
from payments.services.outcomes import PayoutHistory, PayoutOutcome
from payments.state_machines import EscrowHoldStatus, PayoutAccountType, PayoutStatus

MPESA_BANK_CODE = "MPESA"


class PayoutService(BaseService):
    """
    Payout orchestration for released escrow holds.

    Expected business conditions (missing settings, exhausted retries) are
    returned as ServiceResult failures. Database errors propagate.
    """

    # =========================================================================
    # Initiation
    # =========================================================================

    @classmethod
    def initiate_auto_payout(cls, hold_id: uuid.UUID) -> ServiceResult[PayoutOutcome]:
        """
        Start the payout for a released hold.

        Idempotent: a PENDING or SUCCESS payout already on the hold is
        returned unchanged. A hold whose payout FAILED goes through
        retry_failed_payout instead.

        Returns:
            ServiceResult[PayoutOutcome]; failure codes PAYOUT_SETTINGS_MISSING,
            INSUFFICIENT_BALANCE, INVALID_STATE_TRANSITION, TRANSFER_FAILED
        """
        logger = cls.get_logger()

        hold = EscrowHold.objects.filter(id=hold_id).first()
        if hold is None:
            return ServiceResult.failure(
                f"Escrow hold {hold_id} not found",
                error_code="HOLD_NOT_FOUND",
            )

        existing = cls._active_payout(hold.id)
        if existing is not None:
            return ServiceResult.success(
                PayoutOutcome.from_payout(existing, created=False, message="Payout already initiated")
            )

        payout_settings = cls._verified_settings(hold.seller_id)
        if payout_settings is None:
            logger.warning(
                "Seller has no verified payout settings; funds stay in available balance",
                extra={
                    "seller_id": str(hold.seller_id),
                    "hold_id": str(hold.id),
                    "amount_cents": hold.amount_cents,
                },
            )
            return ServiceResult.failure(
                "Seller has no verified payout settings",
                error_code="PAYOUT_SETTINGS_MISSING",
            )

        # Phase 1: create and reserve
        try:
            with transaction.atomic():
                hold = EscrowHold.objects.select_for_update().get(id=hold_id)

                existing = cls._active_payout(hold.id)
                if existing is not None:
                    return ServiceResult.success(
                        PayoutOutcome.from_payout(
                            existing, created=False, message="Payout already initiated"
                        )
                    )

                if hold.status != EscrowHoldStatus.RELEASED:
                    return ServiceResult.failure(
                        f"Cannot pay out hold in '{hold.status}' state",
                        error_code="INVALID_STATE_TRANSITION",
                    )

                payout = Payout.objects.create(
                    seller_id=hold.seller_id,
                    escrow_hold=hold,
                    amount_cents=hold.amount_cents,
                    currency=hold.currency,
                    transfer_reference=ReferenceGenerator.payout(hold.id),
                    balance_reserved=True,
                )
                LedgerService.reserve_available(
                    seller_id=hold.seller_id,
                    amount_cents=payout.amount_cents,
                    idempotency_key=f"payout_reserved:{payout.id}",
                    reference=LedgerReference("payout", payout.id),
                )
                hold.transfer_reference = payout.transfer_reference
                hold.save()
        except InsufficientBalance as e:
            logger.critical(
                "Available balance does not cover released hold",
                extra={"hold_id": str(hold_id), "error": e.message, **e.details},
            )
            return ServiceResult.failure(e.message, error_code="INSUFFICIENT_BALANCE")

        logger.info(
            "Payout created and balance reserved",
            extra={
                "payout_id": str(payout.id),
                "hold_id": str(hold.id),
                "seller_id": str(hold.seller_id),
                "amount_cents": payout.amount_cents,
                "transfer_reference": payout.transfer_reference,
            },
        )

        # Phases 2 and 3
        return cls._submit_transfer(payout, payout_settings.recipient_code)

    @classmethod
    def retry_failed_payout(cls, payout_id: uuid.UUID) -> ServiceResult[PayoutOutcome]:
        """
        Retry a FAILED payout as a new Payout row.

        The new row gets a fresh reference (retry suffix) so the gateway
        treats it as a new transfer, reserves the amount again and moves the
        hold from TRANSFER_FAILED back to RELEASED.

        Returns:
            ServiceResult[PayoutOutcome] for the new row; failure codes
            PAYOUT_NOT_FOUND, PAYOUT_NOT_FAILED, PAYOUT_ALREADY_RETRIED,
            PAYOUT_RETRIES_EXHAUSTED, PAYOUT_SETTINGS_MISSING,
            INSUFFICIENT_BALANCE, TRANSFER_FAILED
        """
        logger = cls.get_logger()

        failed = Payout.objects.filter(id=payout_id).first()
        if failed is None:
            return ServiceResult.failure(
                f"Payout {payout_id} not found",
                error_code="PAYOUT_NOT_FOUND",
            )
        if failed.status != PayoutStatus.FAILED:
            return ServiceResult.failure(
                f"Only failed payouts can be retried, payout is '{failed.status}'",
                error_code="PAYOUT_NOT_FAILED",
            )
        if failed.has_successor:
            return ServiceResult.failure(
                "Payout was already retried",
                error_code="PAYOUT_ALREADY_RETRIED",
            )

        max_retries = settings.PAYOUT_MAX_RETRIES
        if failed.retry_count >= max_retries:
            logger.critical(
                "Payout retries exhausted, operator action required",
                extra={
                    "payout_id": str(failed.id),
                    "hold_id": str(failed.escrow_hold_id),
                    "retry_count": failed.retry_count,
                    "max_retries": max_retries,
                },
            )
            return ServiceResult.failure(
                f"Payout failed {failed.retry_count + 1} times; retries exhausted",
                error_code="PAYOUT_RETRIES_EXHAUSTED",
            )

        payout_settings = cls._verified_settings(failed.seller_id)
        if payout_settings is None:
            return ServiceResult.failure(
                "Seller has no verified payout settings",
                error_code="PAYOUT_SETTINGS_MISSING",
            )

        try:
            with transaction.atomic():
                failed = Payout.objects.select_for_update().get(id=payout_id)
                if failed.status != PayoutStatus.FAILED or failed.has_successor:
                    return ServiceResult.failure(
                        "Payout was already retried or completed",
                        error_code="PAYOUT_ALREADY_RETRIED",
                    )

                hold = EscrowHold.objects.select_for_update().get(id=failed.escrow_hold_id)
                if hold.status == EscrowHoldStatus.TRANSFER_FAILED:
                    hold.resume_transfer()
                elif hold.status != EscrowHoldStatus.RELEASED:
                    return ServiceResult.failure(
                        f"Cannot pay out hold in '{hold.status}' state",
                        error_code="INVALID_STATE_TRANSITION",
                    )

                retry_count = failed.retry_count + 1
                payout = Payout.objects.create(
                    seller_id=failed.seller_id,
                    escrow_hold=hold,
                    retry_of=failed,
                    amount_cents=failed.amount_cents,
                    currency=failed.currency,
                    transfer_reference=ReferenceGenerator.payout(hold.id, retry=retry_count),
                    retry_count=retry_count,
                    balance_reserved=True,
                )
                LedgerService.reserve_available(
                    seller_id=payout.seller_id,
                    amount_cents=payout.amount_cents,
                    idempotency_key=f"payout_reserved:{payout.id}",
                    reference=LedgerReference("payout", payout.id),
                )
                hold.transfer_reference = payout.transfer_reference
                hold.save()
        except IntegrityError:
            # retry_of is one-to-one: a concurrent retry got there first
            return ServiceResult.failure(
                "Payout was already retried",
                error_code="PAYOUT_ALREADY_RETRIED",
            )
        except InsufficientBalance as e:
            logger.critical(
                "Available balance does not cover payout retry",
                extra={"payout_id": str(payout_id), "error": e.message, **e.details},
            )
            return ServiceResult.failure(e.message, error_code="INSUFFICIENT_BALANCE")

        logger.info(
            "Payout retry created",
            extra={
                "payout_id": str(payout.id),
                "retry_of": str(failed.id),
                "retry_count": payout.retry_count,
                "transfer_reference": payout.transfer_reference,
            },
        )
        return cls._submit_transfer(payout, payout_settings.recipient_code)

    @classmethod
    def _submit_transfer(cls, payout: Payout, recipient_code: str) -> ServiceResult[PayoutOutcome]:
        """Phase 2 (gateway call) and phase 3 (record or compensate)."""
        logger = cls.get_logger()
        adapter = get_gateway_adapter()

        try:
            transfer = adapter.initiate_transfer(
                amount_cents=payout.amount_cents,
                recipient_code=recipient_code,
                reason=f"Escrow payout {payout.transfer_reference}",
                reference=payout.transfer_reference,
                currency=payout.currency,
            )
        except GatewayError as e:
            logger.error(
                "Transfer initiation failed, compensating",
                extra={
                    "payout_id": str(payout.id),
                    "transfer_reference": payout.transfer_reference,
                    "error_code": e.error_code,
                    "is_retryable": e.is_retryable,
                },
            )
            payout = cls._fail_payout(payout.id, e.message)
            return ServiceResult.failure(
                f"Transfer failed: {e.message}",
                error_code="TRANSFER_FAILED",
                data=PayoutOutcome.from_payout(payout, message=e.message),
            )

        with transaction.atomic():
            payout = Payout.objects.select_for_update().get(id=payout.id)
            if transfer.transfer_code and not payout.transfer_code:
                payout.transfer_code = transfer.transfer_code
                payout.save()

        logger.info(
            "Transfer submitted to gateway",
            extra={
                "payout_id": str(payout.id),
                "transfer_reference": payout.transfer_reference,
                "transfer_code": transfer.transfer_code,
                "gateway_status": transfer.status,
            },
        )
        return ServiceResult.success(
            PayoutOutcome.from_payout(payout, message="Transfer submitted")
        )

    @classmethod
    def _fail_payout(cls, payout_id: uuid.UUID, reason: str) -> Payout:
        """
        Compensate a PENDING payout: FAILED, balance restored, hold TRANSFER_FAILED.

        A payout that is no longer PENDING (a webhook got there first) is
        returned unchanged.
        """
        with transaction.atomic():
            payout = Payout.objects.select_for_update().get(id=payout_id)
            if payout.status != PayoutStatus.PENDING:
                return payout

            payout.mark_failed(reason=reason)
            if payout.balance_reserved:
                LedgerService.restore_available(
                    seller_id=payout.seller_id,
                    amount_cents=payout.amount_cents,
                    idempotency_key=f"payout_restored:{payout.id}",
                    reference=LedgerReference("payout", payout.id),
                )
                payout.balance_reserved = False
            payout.save()

            hold = EscrowHold.objects.select_for_update().get(id=payout.escrow_hold_id)
            if hold.status == EscrowHoldStatus.RELEASED:
                hold.mark_transfer_failed()
                hold.save()

        cls.get_logger().error(
            "Payout failed, balance restored",
            extra={
                "payout_id": str(payout.id),
                "hold_id": str(payout.escrow_hold_id),
                "amount_cents": payout.amount_cents,
                "reason": reason,
            },
        )
        return payout

    # =========================================================================
    # Webhook-driven completion
    # =========================================================================

    @classmethod
    def handle_transfer_success(
        cls,
        transfer_reference: str,
        transfer_code: str | None = None,
    ) -> ServiceResult[PayoutOutcome]:
        """
        Finalize a payout the gateway confirmed.

        A success for an attempt we already marked FAILED (we timed out, the
        gateway did not) is applied when nothing replaced it: the restored
        balance is reserved again and then paid out. If a retry row exists
        the seller may be paid twice, so it is left for an operator.
        """
        logger = cls.get_logger()

        payout = Payout.objects.filter(transfer_reference=transfer_reference).first()
        if payout is None:
            logger.warning(
                "transfer.success for unknown reference",
                extra={"transfer_reference": transfer_reference},
            )
            return ServiceResult.failure(
                f"No payout with reference {transfer_reference}",
                error_code="PAYOUT_NOT_FOUND",
            )

        with transaction.atomic():
            payout = Payout.objects.select_for_update().get(id=payout.id)

            if payout.status == PayoutStatus.SUCCESS:
                logger.info(
                    "Payout already successful",
                    extra={"payout_id": str(payout.id)},
                )
                return ServiceResult.success(
                    PayoutOutcome.from_payout(payout, created=False, message="Already paid out")
                )

            hold = EscrowHold.objects.select_for_update().get(id=payout.escrow_hold_id)

            if payout.status == PayoutStatus.FAILED:
                if payout.has_successor:
                    logger.critical(
                        "Gateway completed a payout that was already retried; possible double payout",
                        extra={
                            "payout_id": str(payout.id),
                            "hold_id": str(hold.id),
                            "transfer_reference": transfer_reference,
                            "amount_cents": payout.amount_cents,
                        },
                    )
                    return ServiceResult.failure(
                        "Late transfer success on a retried payout",
                        error_code="MANUAL_INTERVENTION_REQUIRED",
                        data=PayoutOutcome.from_payout(payout, created=False),
                    )
                try:
                    LedgerService.reserve_available(
                        seller_id=payout.seller_id,
                        amount_cents=payout.amount_cents,
                        idempotency_key=f"payout_reserved:{payout.id}:late_success",
                        reference=LedgerReference("payout", payout.id),
                    )
                except InsufficientBalance as e:
                    logger.critical(
                        "Late transfer success but restored balance is gone",
                        extra={"payout_id": str(payout.id), **e.details},
                    )
                    return ServiceResult.failure(
                        e.message,
                        error_code="MANUAL_INTERVENTION_REQUIRED",
                    )
                if hold.status == EscrowHoldStatus.TRANSFER_FAILED:
                    hold.resume_transfer()

            payout.mark_success(transfer_code=transfer_code)
            payout.balance_reserved = False
            LedgerService.record_paid_out(
                seller_id=payout.seller_id,
                amount_cents=payout.amount_cents,
                idempotency_key=f"payout_completed:{payout.id}",
                reference=LedgerReference("payout", payout.id),
            )
            payout.save()

            hold.paid_out_at = timezone.now()
            hold.transfer_reference = payout.transfer_reference
            hold.save()

        logger.info(
            "Payout completed",
            extra={
                "payout_id": str(payout.id),
                "hold_id": str(payout.escrow_hold_id),
                "seller_id": str(payout.seller_id),
                "amount_cents": payout.amount_cents,
            },
        )
        return ServiceResult.success(PayoutOutcome.from_payout(payout, created=False))

    @classmethod
    def handle_transfer_failed(
        cls,
        transfer_reference: str,
        reason: str = "",
    ) -> ServiceResult[PayoutOutcome]:
        """
        Compensate a payout the gateway failed or reversed.

        The payout is left FAILED for retry_failed_payout (manual or the
        scheduled retry worker).
        """
        logger = cls.get_logger()

        payout = Payout.objects.filter(transfer_reference=transfer_reference).first()
        if payout is None:
            logger.warning(
                "transfer failure for unknown reference",
                extra={"transfer_reference": transfer_reference},
            )
            return ServiceResult.failure(
                f"No payout with reference {transfer_reference}",
                error_code="PAYOUT_NOT_FOUND",
            )

        if payout.status == PayoutStatus.FAILED:
            return ServiceResult.success(
                PayoutOutcome.from_payout(payout, created=False, message="Already failed")
            )

        if payout.status == PayoutStatus.SUCCESS:
            logger.critical(
                "Transfer failed or reversed after it was confirmed",
                extra={
                    "payout_id": str(payout.id),
                    "transfer_reference": transfer_reference,
                    "reason": reason,
                },
            )
            return ServiceResult.failure(
                "Transfer reversed after success",
                error_code="MANUAL_INTERVENTION_REQUIRED",
                data=PayoutOutcome.from_payout(payout, created=False),
            )

        payout = cls._fail_payout(payout.id, reason or "Transfer failed at gateway")
        return ServiceResult.success(
            PayoutOutcome.from_payout(payout, created=False, message="Payout failed, balance restored")
        )

    # =========================================================================
    # Payout settings
    # =========================================================================

    @classmethod
    def save_payout_settings(
        cls,
        seller_id: uuid.UUID,
        account_type: str,
        account_name: str,
        account_number: str,
        bank_code: str = "",
        bank_name: str = "",
    ) -> ServiceResult[PayoutSettings]:
        """
        Register the seller's payout destination with the gateway.

        M-Pesa numbers are normalized to 254XXXXXXXXX and registered as
        mobile_money recipients with bank code MPESA; bank accounts as nuban.
        Released holds waiting for settings are paid out afterwards.
        """
        logger = cls.get_logger()
        adapter = get_gateway_adapter()

        if not Seller.objects.filter(id=seller_id).exists():
            return ServiceResult.failure(
                f"Seller {seller_id} not found",
                error_code="SELLER_NOT_FOUND",
            )

        if account_type == PayoutAccountType.MPESA:
            account_number = PaystackAdapter.format_phone_number(account_number)
            if len(account_number) != 12 or not account_number.startswith("254"):
                return ServiceResult.failure(
                    "Enter a valid Kenyan M-Pesa number",
                    error_code="VALIDATION_ERROR",
                    errors={"account_number": ["Invalid M-Pesa number"]},
                )
            recipient_type = "mobile_money"
            bank_code = MPESA_BANK_CODE
            bank_name = bank_name or "M-Pesa"
        elif account_type == PayoutAccountType.BANK:
            if not bank_code:
                return ServiceResult.failure(
                    "Bank code is required for bank payouts",
                    error_code="VALIDATION_ERROR",
                    errors={"bank_code": ["This field is required."]},
                )
            recipient_type = "nuban"
        else:
            return ServiceResult.failure(
                f"Unsupported account type: {account_type}",
                error_code="VALIDATION_ERROR",
                errors={"account_type": ["Must be bank or mpesa."]},
            )

        try:
            recipient = adapter.create_transfer_recipient(
                recipient_type=recipient_type,
                name=account_name,
                account_number=account_number,
                bank_code=bank_code,
            )
        except GatewayError as e:
            logger.error(
                "Could not register transfer recipient",
                extra={"seller_id": str(seller_id), "error_code": e.error_code},
            )
            return ServiceResult.failure(e.message, error_code="GATEWAY_ERROR")

        payout_settings, _ = PayoutSettings.objects.update_or_create(
            seller_id=seller_id,
            defaults={
                "account_type": account_type,
                "account_name": account_name,
                "account_number": account_number,
                "bank_code": bank_code,
                "bank_name": recipient.bank_name or bank_name,
                "recipient_code": recipient.recipient_code,
                "is_verified": True,
                "verified_at": timezone.now(),
            },
        )
        logger.info(
            "Payout settings saved",
            extra={
                "seller_id": str(seller_id),
                "account_type": account_type,
                "account": payout_settings.masked_account_number,
            },
        )

        cls._pay_out_waiting_holds(seller_id)
        return ServiceResult.success(payout_settings)

    @classmethod
    def _pay_out_waiting_holds(cls, seller_id: uuid.UUID) -> None:
        """Start payouts for released holds that never got one."""
        hold_ids = EscrowHold.objects.filter(
            seller_id=seller_id,
            status=EscrowHoldStatus.RELEASED,
            payouts__isnull=True,
        ).values_list("id", flat=True)
        for hold_id in hold_ids:
            cls.initiate_auto_payout(hold_id)

    @classmethod
    def list_banks(cls, country: str = "kenya") -> ServiceResult[list]:
        try:
            return ServiceResult.success(get_gateway_adapter().list_banks(country=country))
        except GatewayError as e:
            return ServiceResult.failure(e.message, error_code="GATEWAY_ERROR")

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def get_payout_history(
        cls,
        seller_id: uuid.UUID,
        page: int = 1,
        page_size: int | None = None,
    ) -> ServiceResult[PayoutHistory]:
        """Seller's payout attempts, newest first."""
        page_size = page_size or settings.PAYOUT_HISTORY_PAGE_SIZE
        page = max(page, 1)

        queryset = Payout.objects.filter(seller_id=seller_id).order_by("-created_at")
        offset = (page - 1) * page_size
        return ServiceResult.success(
            PayoutHistory(
                payouts=list(queryset[offset : offset + page_size]),
                page=page,
                page_size=page_size,
                total_count=queryset.count(),
            )
        )

    @staticmethod
    def _active_payout(hold_id: uuid.UUID) -> Payout | None:
        return Payout.objects.filter(
            escrow_hold_id=hold_id,
            status__in=[PayoutStatus.PENDING, PayoutStatus.SUCCESS],
        ).first()

    @staticmethod
    def _verified_settings(seller_id: uuid.UUID) -> PayoutSettings | None:
        return (
            PayoutSettings.objects.filter(seller_id=seller_id, is_verified=True)
            .exclude(recipient_code="")
            .first()
        )
