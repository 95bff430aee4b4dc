"""
Checkout service: buyer payments into escrow.

initiate_checkout creates a PENDING Transaction and a hosted checkout at the
gateway. The charge is confirmed either by the charge.success webhook or by
verify_checkout when the buyer returns from the gateway; both end in
apply_charge_success, which completes the transaction and locks escrow.

Usage:
    from payments.services import CheckoutService

    result = CheckoutService.initiate_checkout(
        short_code="aB3dE9",
        buyer_email="buyer@example.com",
        payment_method=PaymentMethod.MOBILE_MONEY,
        buyer_phone="0712345678",
    )
    redirect(result.data.checkout_url)
"""

from __future__ import annotations

from django.db import transaction

from core.services import BaseService, ServiceResult
from marketplace.models import LinkStatus, PaymentLink
from payments.adapters import PaystackAdapter, ReferenceGenerator, get_gateway_adapter
from payments.exceptions import GatewayError
from payments.models import EscrowHold, Transaction
from payments.services.escrow_service import EscrowService
from payments.services.outcomes import CheckoutSession, CheckoutStatus, EscrowOutcome
from payments.state_machines import PaymentMethod, TransactionStatus

# Gateway channels offered for each payment method
CHANNELS = {
    PaymentMethod.CARD: ["card"],
    PaymentMethod.MOBILE_MONEY: ["mobile_money"],
    PaymentMethod.BANK_TRANSFER: ["bank_transfer", "bank"],
}

# Gateway charge statuses after which the charge will never succeed
FAILED_CHARGE_STATUSES = ("failed", "abandoned", "reversed")


class CheckoutService(BaseService):
    """Buyer checkout and charge confirmation."""

    @classmethod
    def initiate_checkout(
        cls,
        short_code: str,
        buyer_email: str,
        payment_method: str = PaymentMethod.CARD,
        buyer_phone: str = "",
    ) -> ServiceResult[CheckoutSession]:
        """
        Start paying for a link.

        Returns:
            ServiceResult[CheckoutSession]; failure codes LINK_NOT_AVAILABLE,
            VALIDATION_ERROR, GATEWAY_ERROR
        """
        logger = cls.get_logger()

        link = PaymentLink.objects.filter(
            short_code=short_code,
            status=LinkStatus.ACTIVE,
            seller__is_active=True,
        ).first()
        if link is None:
            return ServiceResult.failure(
                "Payment link is not available",
                error_code="LINK_NOT_AVAILABLE",
            )

        if payment_method == PaymentMethod.MOBILE_MONEY:
            buyer_phone = PaystackAdapter.format_phone_number(buyer_phone)
            if len(buyer_phone) != 12:
                return ServiceResult.failure(
                    "A valid M-Pesa phone number is required",
                    error_code="VALIDATION_ERROR",
                    errors={"buyer_phone": ["Enter a valid Kenyan phone number."]},
                )

        txn = Transaction.objects.create(
            link=link,
            seller_id=link.seller_id,
            buyer_email=buyer_email,
            buyer_phone=buyer_phone,
            amount_cents=link.price_cents,
            currency=link.currency,
            payment_method=payment_method,
            payment_reference=ReferenceGenerator.charge(),
        )

        try:
            charge = get_gateway_adapter().initialize_charge(
                amount_cents=txn.amount_cents,
                email=buyer_email,
                reference=txn.payment_reference,
                currency=txn.currency,
                metadata={
                    "transaction_id": str(txn.id),
                    "link_id": str(link.id),
                    "short_code": link.short_code,
                },
                channels=CHANNELS.get(payment_method),
            )
        except GatewayError as e:
            with transaction.atomic():
                txn = Transaction.objects.select_for_update().get(id=txn.id)
                txn.mark_failed()
                txn.save()
            logger.error(
                "Checkout initialization failed",
                extra={"transaction_id": str(txn.id), "error_code": e.error_code},
            )
            return ServiceResult.failure(e.message, error_code="GATEWAY_ERROR")

        logger.info(
            "Checkout started",
            extra={
                "transaction_id": str(txn.id),
                "reference": txn.payment_reference,
                "amount_cents": txn.amount_cents,
                "payment_method": payment_method,
            },
        )
        return ServiceResult.success(
            CheckoutSession(
                transaction_id=txn.id,
                reference=txn.payment_reference,
                checkout_url=charge.checkout_url,
                amount_cents=txn.amount_cents,
                currency=txn.currency,
            )
        )

    @classmethod
    def verify_checkout(cls, reference: str) -> ServiceResult[CheckoutStatus]:
        """
        Payment callback: ask the gateway how the charge went and apply it.

        Safe to call any number of times, and in any order relative to the
        charge.success webhook.
        """
        txn = Transaction.objects.filter(payment_reference=reference).first()
        if txn is None:
            return ServiceResult.failure(
                f"No transaction with reference {reference}",
                error_code="TRANSACTION_NOT_FOUND",
            )

        if txn.status == TransactionStatus.PENDING:
            try:
                verification = get_gateway_adapter().verify_charge(reference)
            except GatewayError as e:
                return ServiceResult.failure(e.message, error_code="GATEWAY_ERROR")

            if verification.is_successful:
                applied = cls.apply_charge_success(
                    reference,
                    amount_cents=verification.amount_cents,
                    channel=verification.channel,
                )
                if not applied.success:
                    return ServiceResult.failure(applied.error, error_code=applied.error_code)
            elif verification.status in FAILED_CHARGE_STATUSES:
                with transaction.atomic():
                    locked = Transaction.objects.select_for_update().get(id=txn.id)
                    if locked.status == TransactionStatus.PENDING:
                        locked.mark_failed()
                        locked.save()
        elif txn.status == TransactionStatus.COMPLETED:
            # Escrow lock may have been interrupted after the charge completed
            EscrowService.lock_escrow(txn.id)

        txn = Transaction.objects.get(id=txn.id)
        hold_id = (
            EscrowHold.objects.filter(transaction_id=txn.id, parent__isnull=True)
            .values_list("id", flat=True)
            .first()
        )
        return ServiceResult.success(
            CheckoutStatus(
                transaction_id=txn.id,
                reference=txn.payment_reference,
                status=txn.status,
                hold_id=hold_id,
                paid_at=txn.paid_at,
            )
        )

    @classmethod
    def apply_charge_success(
        cls,
        reference: str,
        amount_cents: int | None = None,
        channel: str = "",
    ) -> ServiceResult[EscrowOutcome]:
        """
        Complete a transaction the gateway charged and lock its escrow.

        Replays are harmless: an already completed transaction goes straight
        to lock_escrow, which returns the existing hold.

        Returns:
            ServiceResult[EscrowOutcome]; failure codes TRANSACTION_NOT_FOUND
            (acknowledged by the webhook), AMOUNT_MISMATCH,
            MANUAL_INTERVENTION_REQUIRED
        """
        logger = cls.get_logger()

        txn = Transaction.objects.filter(payment_reference=reference).first()
        if txn is None:
            logger.warning(
                "Charge success for unknown reference",
                extra={"reference": reference},
            )
            return ServiceResult.failure(
                f"No transaction with reference {reference}",
                error_code="TRANSACTION_NOT_FOUND",
            )

        if amount_cents is not None and amount_cents != txn.amount_cents:
            logger.error(
                "Charged amount does not match transaction",
                extra={
                    "transaction_id": str(txn.id),
                    "expected_cents": txn.amount_cents,
                    "charged_cents": amount_cents,
                },
            )
            return ServiceResult.failure(
                f"Charged {amount_cents} but transaction is {txn.amount_cents}",
                error_code="AMOUNT_MISMATCH",
            )

        with transaction.atomic():
            txn = Transaction.objects.select_for_update().get(id=txn.id)
            if txn.status == TransactionStatus.PENDING:
                txn.mark_completed(channel=channel)
                txn.save()
                logger.info(
                    "Transaction completed",
                    extra={"transaction_id": str(txn.id), "channel": channel},
                )
            elif txn.status == TransactionStatus.FAILED:
                logger.critical(
                    "Charge succeeded for a transaction marked failed",
                    extra={"transaction_id": str(txn.id), "reference": reference},
                )
                return ServiceResult.failure(
                    "Charge succeeded after the transaction was marked failed",
                    error_code="MANUAL_INTERVENTION_REQUIRED",
                )

        return EscrowService.lock_escrow(txn.id)
