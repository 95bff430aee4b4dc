"""
Tests for RefundService: gateway submission and refund.* webhooks.
"""

import uuid

import pytest

from payments.adapters import RefundResult
from payments.models import EscrowHold, Refund, Transaction
from payments.services import EscrowService, RefundService
from payments.state_machines import EscrowHoldStatus, RefundStatus, TransactionStatus
from payments.tests.factories import TransactionFactory


@pytest.fixture
def refunded(held_escrow) -> Refund:
    """Refund the gateway accepted and is still processing."""
    result = EscrowService.refund_buyer(held_escrow.transaction_id, reason="Out of stock")
    return Refund.objects.get(id=result.data.refund_id)


@pytest.fixture
def interrupted_refund(link) -> Refund:
    """Refund whose hold and transaction were left in REFUNDING."""
    txn = TransactionFactory(link=link, status=TransactionStatus.REFUNDING)
    hold = EscrowHold.objects.create(
        transaction=txn,
        seller_id=txn.seller_id,
        amount_cents=txn.amount_cents,
        status=EscrowHoldStatus.REFUNDING,
    )
    return Refund.objects.create(
        transaction=txn,
        escrow_hold=hold,
        amount_cents=txn.amount_cents,
        reason="Cancelled",
        status=RefundStatus.PROCESSING,
        refund_reference="7001",
    )


@pytest.mark.django_db
class TestSubmitRefund:
    def test_accepted_refund_is_not_resubmitted(self, refunded, gateway):
        result = RefundService.submit_refund(refunded.id)

        assert result.success
        assert result.data.refund_reference == refunded.refund_reference
        assert gateway.initiate_refund.call_count == 1

    def test_processed_immediately(self, held_escrow, gateway):
        gateway.initiate_refund.side_effect = lambda **kw: RefundResult(
            refund_reference="8001",
            status="processed",
            amount_cents=kw["amount_cents"],
            transaction_reference=kw["transaction_reference"],
        )

        result = EscrowService.refund_buyer(held_escrow.transaction_id, reason="Out of stock")

        refund = Refund.objects.get(id=result.data.refund_id)
        assert refund.status == RefundStatus.PROCESSED
        assert refund.processed_at is not None

    def test_unknown_refund(self, db):
        assert RefundService.submit_refund(uuid.uuid4()).error_code == "REFUND_NOT_FOUND"


@pytest.mark.django_db
class TestApplyRefundEvent:
    def test_processed_by_refund_id(self, refunded):
        result = RefundService.apply_refund_event(
            "refund.processed",
            {"id": int(refunded.refund_reference), "status": "processed", "amount": 100000},
        )

        assert result.success
        refund = Refund.objects.get(id=refunded.id)
        assert refund.status == RefundStatus.PROCESSED
        assert refund.processed_at is not None
        assert refund.logs[-1]["event"] == "refund.processed"

    def test_lookup_by_transaction_reference(self, refunded):
        reference = refunded.transaction.payment_reference

        RefundService.apply_refund_event(
            "refund.failed",
            {"transaction": {"reference": reference}, "status": "failed"},
        )

        assert Refund.objects.get(id=refunded.id).status == RefundStatus.FAILED

    def test_processed_finalizes_interrupted_refund(self, interrupted_refund):
        RefundService.apply_refund_event("refund.processed", {"id": 7001})

        assert EscrowHold.objects.get(id=interrupted_refund.escrow_hold_id).status == EscrowHoldStatus.REFUNDED
        txn = Transaction.objects.get(id=interrupted_refund.transaction_id)
        assert txn.status == TransactionStatus.REFUNDED

    def test_late_status_after_processed_is_ignored(self, refunded):
        RefundService.apply_refund_event("refund.processed", {"id": refunded.refund_reference})

        RefundService.apply_refund_event("refund.pending", {"id": refunded.refund_reference})

        assert Refund.objects.get(id=refunded.id).status == RefundStatus.PROCESSED

    def test_unknown_refund_is_acknowledged(self, db):
        result = RefundService.apply_refund_event("refund.processed", {"id": 123456})

        assert result.success
        assert result.data is None

    def test_not_a_refund_event(self, refunded):
        result = RefundService.apply_refund_event("transfer.success", {"id": refunded.refund_reference})

        assert result.error_code == "VALIDATION_ERROR"
