"""
Tests for CheckoutService.

Covers checkout initiation, the buyer's return (verify_checkout) and the
charge-success path shared with the webhook.
"""

import pytest

from marketplace.models import LinkStatus, PaymentLink
from payments.adapters import ChargeVerification
from payments.exceptions import GatewayUnavailableError
from payments.models import EscrowHold, Transaction
from payments.services import CheckoutService
from payments.state_machines import EscrowHoldStatus, PaymentMethod, TransactionStatus
from payments.tests.factories import TransactionFactory


@pytest.mark.django_db
class TestInitiateCheckout:
    def test_creates_pending_transaction(self, link, gateway):
        result = CheckoutService.initiate_checkout(link.short_code, "buyer@example.com")

        assert result.success
        session = result.data
        assert session.amount_cents == 100000
        assert session.currency == "KES"
        assert session.reference.startswith("esc_")
        assert session.checkout_url == f"https://checkout.gateway.test/{session.reference}"

        txn = Transaction.objects.get(id=session.transaction_id)
        assert txn.status == TransactionStatus.PENDING
        assert txn.seller_id == link.seller_id
        assert txn.payment_reference == session.reference

        kwargs = gateway.initialize_charge.call_args.kwargs
        assert kwargs["amount_cents"] == 100000
        assert kwargs["channels"] == ["card"]
        assert kwargs["metadata"]["short_code"] == link.short_code

    def test_mobile_money_normalizes_phone(self, link, gateway):
        result = CheckoutService.initiate_checkout(
            link.short_code,
            "buyer@example.com",
            payment_method=PaymentMethod.MOBILE_MONEY,
            buyer_phone="+254 712 345 678",
        )

        assert result.success
        assert Transaction.objects.get(id=result.data.transaction_id).buyer_phone == "254712345678"
        assert gateway.initialize_charge.call_args.kwargs["channels"] == ["mobile_money"]

    def test_mobile_money_requires_valid_phone(self, link, gateway):
        result = CheckoutService.initiate_checkout(
            link.short_code,
            "buyer@example.com",
            payment_method=PaymentMethod.MOBILE_MONEY,
            buyer_phone="123",
        )

        assert result.error_code == "VALIDATION_ERROR"
        assert "buyer_phone" in result.errors
        assert not Transaction.objects.exists()

    @pytest.mark.parametrize("status", [LinkStatus.PAID, LinkStatus.CANCELLED])
    def test_link_must_be_active(self, link, status):
        PaymentLink.objects.filter(id=link.id).update(status=status)

        result = CheckoutService.initiate_checkout(link.short_code, "buyer@example.com")

        assert result.error_code == "LINK_NOT_AVAILABLE"

    def test_unknown_link(self, db):
        result = CheckoutService.initiate_checkout("nope", "buyer@example.com")

        assert result.error_code == "LINK_NOT_AVAILABLE"

    def test_gateway_failure_marks_transaction_failed(self, link, gateway):
        gateway.initialize_charge.side_effect = GatewayUnavailableError("Gateway down")

        result = CheckoutService.initiate_checkout(link.short_code, "buyer@example.com")

        assert result.error_code == "GATEWAY_ERROR"
        assert Transaction.objects.get().status == TransactionStatus.FAILED


@pytest.mark.django_db
class TestApplyChargeSuccess:
    def test_completes_and_locks_escrow(self, pending_transaction):
        result = CheckoutService.apply_charge_success(
            pending_transaction.payment_reference,
            amount_cents=100000,
            channel="mobile_money",
        )

        assert result.success
        assert result.data.action == "locked"
        txn = Transaction.objects.get(id=pending_transaction.id)
        assert txn.status == TransactionStatus.COMPLETED
        assert txn.gateway_channel == "mobile_money"
        assert txn.paid_at is not None
        assert EscrowHold.objects.get(transaction=txn).status == EscrowHoldStatus.HELD

    def test_replay_returns_existing_hold(self, pending_transaction):
        first = CheckoutService.apply_charge_success(pending_transaction.payment_reference, 100000)

        second = CheckoutService.apply_charge_success(pending_transaction.payment_reference, 100000)

        assert second.success
        assert second.data.created is False
        assert second.data.hold_id == first.data.hold_id

    def test_amount_mismatch(self, pending_transaction):
        result = CheckoutService.apply_charge_success(pending_transaction.payment_reference, 50000)

        assert result.error_code == "AMOUNT_MISMATCH"
        assert Transaction.objects.get(id=pending_transaction.id).status == TransactionStatus.PENDING
        assert not EscrowHold.objects.exists()

    def test_success_after_failure_needs_operator(self, link):
        txn = TransactionFactory(link=link, status=TransactionStatus.FAILED)

        result = CheckoutService.apply_charge_success(txn.payment_reference, 100000)

        assert result.error_code == "MANUAL_INTERVENTION_REQUIRED"
        assert not EscrowHold.objects.exists()

    def test_unknown_reference(self, db):
        result = CheckoutService.apply_charge_success("esc_missing", 100000)

        assert result.error_code == "TRANSACTION_NOT_FOUND"


@pytest.mark.django_db
class TestVerifyCheckout:
    def test_successful_charge_is_applied(self, pending_transaction, gateway):
        result = CheckoutService.verify_checkout(pending_transaction.payment_reference)

        assert result.success
        assert result.data.status == TransactionStatus.COMPLETED
        assert result.data.hold_id is not None
        gateway.verify_charge.assert_called_once_with(pending_transaction.payment_reference)

    def test_failed_charge_marks_transaction_failed(self, pending_transaction, gateway):
        gateway.verify_charge.side_effect = lambda reference: ChargeVerification(
            reference=reference,
            status="abandoned",
            amount_cents=0,
            currency="KES",
        )

        result = CheckoutService.verify_checkout(pending_transaction.payment_reference)

        assert result.data.status == TransactionStatus.FAILED
        assert result.data.hold_id is None

    def test_charge_still_in_progress(self, pending_transaction, gateway):
        gateway.verify_charge.side_effect = lambda reference: ChargeVerification(
            reference=reference,
            status="ongoing",
            amount_cents=0,
            currency="KES",
        )

        result = CheckoutService.verify_checkout(pending_transaction.payment_reference)

        assert result.data.status == TransactionStatus.PENDING

    def test_completed_transaction_is_not_reverified(self, held_escrow, gateway):
        reference = held_escrow.transaction.payment_reference

        result = CheckoutService.verify_checkout(reference)

        assert result.data.hold_id == held_escrow.id
        gateway.verify_charge.assert_not_called()

    def test_completed_transaction_without_hold_is_locked(self, paid_transaction):
        result = CheckoutService.verify_checkout(paid_transaction.payment_reference)

        assert result.data.hold_id is not None

    def test_gateway_unavailable(self, pending_transaction, gateway):
        gateway.verify_charge.side_effect = GatewayUnavailableError("Gateway down")

        result = CheckoutService.verify_checkout(pending_transaction.payment_reference)

        assert result.error_code == "GATEWAY_ERROR"
