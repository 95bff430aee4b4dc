"""
Tests for webhook dispatch and the per-event handlers.

Events are built with WebhookEventFactory and dispatched directly; the
HTTP layer is covered in test_views.py.
"""

import pytest

from marketplace.models import Seller
from payments.models import EscrowHold, Payout, Refund, Transaction
from payments.services import EscrowService
from payments.state_machines import PayoutStatus, RefundStatus, TransactionStatus
from payments.tests.factories import WebhookEventFactory
from payments.webhooks.handlers import WEBHOOK_HANDLERS, dispatch_webhook
from payments.webhooks.events import GatewayEventType


def event(event_type: str, data: dict):
    return WebhookEventFactory(
        event_type=event_type,
        payload={"event": event_type, "data": data},
    )


@pytest.mark.django_db
class TestDispatch:
    def test_every_event_kind_has_a_handler(self):
        assert set(WEBHOOK_HANDLERS) == set(GatewayEventType)

    def test_unknown_event_is_acknowledged(self):
        result = dispatch_webhook(event("subscription.create", {"id": 1}))

        assert result.success
        assert result.data is None

    def test_missing_reference_is_invalid(self):
        result = dispatch_webhook(event("charge.success", {"id": 1, "amount": 100000}))

        assert result.error_code == "INVALID_WEBHOOK_PAYLOAD"

    def test_unknown_reference_is_acknowledged(self):
        result = dispatch_webhook(event("charge.success", {"reference": "esc_nobody", "amount": 100}))

        assert result.success


@pytest.mark.django_db
class TestChargeSuccess:
    def test_locks_escrow(self, pending_transaction):
        result = dispatch_webhook(
            event(
                "charge.success",
                {
                    "id": 4099260516,
                    "reference": pending_transaction.payment_reference,
                    "amount": 100000,
                    "channel": "card",
                },
            )
        )

        assert result.success
        assert Transaction.objects.get(id=pending_transaction.id).status == TransactionStatus.COMPLETED
        assert EscrowHold.objects.filter(transaction=pending_transaction).count() == 1
        assert Seller.objects.get(id=pending_transaction.seller_id).pending_escrow_balance_cents == 100000

    def test_amount_mismatch_is_acknowledged_without_changes(self, pending_transaction):
        result = dispatch_webhook(
            event(
                "charge.success",
                {"reference": pending_transaction.payment_reference, "amount": 1},
            )
        )

        assert result.success
        assert Transaction.objects.get(id=pending_transaction.id).status == TransactionStatus.PENDING
        assert not EscrowHold.objects.exists()

    @pytest.mark.parametrize("amount", ["1,000.00", {"value": 100000}])
    def test_unparseable_amount_is_invalid(self, pending_transaction, amount):
        result = dispatch_webhook(
            event(
                "charge.success",
                {"reference": pending_transaction.payment_reference, "amount": amount},
            )
        )

        assert result.error_code == "INVALID_WEBHOOK_PAYLOAD"
        assert result.error == "Could not extract amount from webhook"
        assert Transaction.objects.get(id=pending_transaction.id).status == TransactionStatus.PENDING
        assert not EscrowHold.objects.exists()


@pytest.mark.django_db
class TestTransferEvents:
    @pytest.fixture
    def payout(self, held_escrow, payout_settings) -> Payout:
        result = EscrowService.release_escrow(held_escrow.id)
        return Payout.objects.get(id=result.data.payout_id)

    def test_transfer_success(self, payout):
        result = dispatch_webhook(
            event(
                "transfer.success",
                {"id": 1, "reference": payout.transfer_reference, "transfer_code": "TRF_done"},
            )
        )

        assert result.success
        assert Payout.objects.get(id=payout.id).status == PayoutStatus.SUCCESS
        assert Seller.objects.get(id=payout.seller_id).total_paid_out_cents == 100000

    @pytest.mark.parametrize("event_type", ["transfer.failed", "transfer.reversed"])
    def test_transfer_failure_restores_balance(self, payout, event_type):
        result = dispatch_webhook(
            event(event_type, {"id": 2, "reference": payout.transfer_reference, "reason": "Account closed"})
        )

        assert result.success
        stored = Payout.objects.get(id=payout.id)
        assert stored.status == PayoutStatus.FAILED
        assert stored.failure_reason == "Account closed"
        assert Seller.objects.get(id=payout.seller_id).available_balance_cents == 100000

    def test_unknown_transfer_is_acknowledged(self):
        result = dispatch_webhook(event("transfer.success", {"reference": "payout_unknown"}))

        assert result.success


@pytest.mark.django_db
class TestRefundEvents:
    def test_refund_processed(self, held_escrow):
        outcome = EscrowService.refund_buyer(held_escrow.transaction_id, reason="Cancelled").data
        refund = Refund.objects.get(id=outcome.refund_id)

        result = dispatch_webhook(
            event("refund.processed", {"id": int(refund.refund_reference), "status": "processed"})
        )

        assert result.success
        assert Refund.objects.get(id=refund.id).status == RefundStatus.PROCESSED
