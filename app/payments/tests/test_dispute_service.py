"""
Tests for DisputeService.

Tests cover:
- Opening disputes and the one-pending-dispute rule
- Buyer delivery rejection
- Each resolution delegating to the escrow engine exactly once
- Replays, conflicting resolutions and re-running unapplied resolutions
"""

import uuid

import pytest

from marketplace.models import DeliveryConfirmation, LinkStatus, PaymentLink, Seller
from payments.models import Dispute, EscrowHold, Refund
from payments.services import DisputeService
from payments.state_machines import DisputeInitiator, DisputeResolution, EscrowHoldStatus


@pytest.fixture
def dispute(held_escrow) -> Dispute:
    result = DisputeService.open_dispute(
        held_escrow.transaction_id,
        initiated_by=DisputeInitiator.BUYER,
        reason="Item not as described",
    )
    return result.data


def root_hold(dispute) -> EscrowHold:
    return EscrowHold.objects.get(transaction_id=dispute.transaction_id, parent__isnull=True)


# =============================================================================
# Opening
# =============================================================================


@pytest.mark.django_db
class TestOpenDispute:
    def test_open_marks_link_disputed(self, held_escrow):
        result = DisputeService.open_dispute(
            held_escrow.transaction_id,
            initiated_by=DisputeInitiator.BUYER,
            reason="Wrong size",
            description="Ordered M, received S",
        )

        assert result.success
        assert result.data.is_open
        assert result.data.description == "Ordered M, received S"
        link_id = held_escrow.transaction.link_id
        assert PaymentLink.objects.get(id=link_id).status == LinkStatus.DISPUTED

    def test_second_open_dispute_is_rejected(self, dispute):
        result = DisputeService.open_dispute(
            dispute.transaction_id,
            initiated_by=DisputeInitiator.SELLER,
            reason="Buyer unreachable",
        )

        assert result.error_code == "DISPUTE_ALREADY_OPEN"
        assert result.data.id == dispute.id
        assert Dispute.objects.count() == 1

    def test_new_dispute_after_resolution(self, dispute):
        DisputeService.resolve_dispute(dispute.id, DisputeResolution.PAY_SELLER)

        result = DisputeService.open_dispute(
            dispute.transaction_id,
            initiated_by=DisputeInitiator.BUYER,
            reason="Stopped working",
        )

        assert result.success
        assert Dispute.objects.filter(transaction_id=dispute.transaction_id).count() == 2

    def test_unpaid_transaction(self, pending_transaction):
        result = DisputeService.open_dispute(
            pending_transaction.id,
            initiated_by=DisputeInitiator.BUYER,
            reason="Never paid",
        )

        assert result.error_code == "INVALID_STATE_TRANSITION"

    def test_unknown_transaction(self, db):
        result = DisputeService.open_dispute(uuid.uuid4(), DisputeInitiator.BUYER, "Missing")

        assert result.error_code == "TRANSACTION_NOT_FOUND"


@pytest.mark.django_db
class TestRejectDelivery:
    def test_rejection_opens_buyer_dispute(self, dispatched_escrow):
        code = DeliveryConfirmation.objects.get(
            transaction_id=dispatched_escrow.transaction_id
        ).confirmation_code

        result = DisputeService.reject_delivery(code, "Box was empty")

        assert result.success
        assert result.data.initiated_by == DisputeInitiator.BUYER
        assert result.data.reason == "delivery_rejected"
        assert result.data.description == "Box was empty"
        confirmation = DeliveryConfirmation.objects.get(transaction_id=dispatched_escrow.transaction_id)
        assert confirmation.rejection_reason == "Box was empty"
        assert confirmation.rejected_at is not None

    def test_unknown_code(self, db):
        assert DisputeService.reject_delivery("ZZZZ0000", "No").error_code == "CONFIRMATION_NOT_FOUND"


# =============================================================================
# Resolution
# =============================================================================


@pytest.mark.django_db
class TestResolveDispute:
    def test_refund_buyer(self, dispute, gateway):
        result = DisputeService.resolve_dispute(
            dispute.id,
            DisputeResolution.REFUND_BUYER,
            resolved_by="ops@example.com",
            admin_notes="Photos confirm damage",
        )

        assert result.success
        assert result.data.already_resolved is False
        assert result.data.escrow["action"] == "refunded"
        assert root_hold(dispute).status == EscrowHoldStatus.REFUNDED
        gateway.initiate_refund.assert_called_once()

        stored = Dispute.objects.get(id=dispute.id)
        assert stored.resolution_applied is True
        assert stored.resolved_by == "ops@example.com"
        assert stored.resolved_at is not None
        assert stored.outcome == result.data.escrow
        assert Refund.objects.get().initiated_by == DisputeInitiator.BUYER

    def test_pay_seller(self, dispute, payout_settings):
        result = DisputeService.resolve_dispute(dispute.id, DisputeResolution.PAY_SELLER)

        assert result.success
        hold = root_hold(dispute)
        assert hold.status == EscrowHoldStatus.RELEASED
        assert hold.release_reason == "dispute_pay_seller"
        assert result.data.escrow["payout_id"] is not None

    def test_partial_refund(self, dispute, payout_settings):
        result = DisputeService.resolve_dispute(
            dispute.id,
            DisputeResolution.PARTIAL_REFUND,
            partial_amount_cents=40000,
        )

        assert result.success
        assert result.data.escrow["refunded_amount_cents"] == 40000
        assert result.data.escrow["released_amount_cents"] == 60000
        assert root_hold(dispute).status == EscrowHoldStatus.SPLIT
        assert Dispute.objects.get(id=dispute.id).partial_refund_cents == 40000

    @pytest.mark.parametrize("amount", [None, 0, 100000])
    def test_partial_refund_amount_is_validated(self, dispute, amount):
        result = DisputeService.resolve_dispute(
            dispute.id,
            DisputeResolution.PARTIAL_REFUND,
            partial_amount_cents=amount,
        )

        assert result.error_code == "INVALID_PARTIAL_AMOUNT"
        assert Dispute.objects.get(id=dispute.id).is_open
        assert root_hold(dispute).status == EscrowHoldStatus.HELD

    def test_replay_returns_stored_outcome(self, dispute, gateway):
        first = DisputeService.resolve_dispute(dispute.id, DisputeResolution.REFUND_BUYER)

        second = DisputeService.resolve_dispute(dispute.id, DisputeResolution.REFUND_BUYER)

        assert second.success
        assert second.data.already_resolved is True
        assert second.data.escrow == first.data.escrow
        assert gateway.initiate_refund.call_count == 1

    def test_conflicting_resolution_is_rejected(self, dispute):
        DisputeService.resolve_dispute(dispute.id, DisputeResolution.REFUND_BUYER)

        result = DisputeService.resolve_dispute(dispute.id, DisputeResolution.PAY_SELLER)

        assert result.error_code == "DISPUTE_ALREADY_RESOLVED"
        assert root_hold(dispute).status == EscrowHoldStatus.REFUNDED

    def test_failed_application_can_be_rerun(self, dispute):
        """A resolution whose escrow action failed stays unapplied."""
        Seller.objects.filter(id=root_hold(dispute).seller_id).update(pending_escrow_balance_cents=0)

        failed = DisputeService.resolve_dispute(dispute.id, DisputeResolution.PAY_SELLER)

        assert failed.error_code == "INSUFFICIENT_BALANCE"
        stored = Dispute.objects.get(id=dispute.id)
        assert stored.resolution == DisputeResolution.PAY_SELLER
        assert stored.resolution_applied is False

        Seller.objects.filter(id=root_hold(dispute).seller_id).update(pending_escrow_balance_cents=100000)
        retried = DisputeService.resolve_dispute(dispute.id, DisputeResolution.PAY_SELLER)

        assert retried.success
        assert retried.data.already_resolved is False
        assert root_hold(dispute).status == EscrowHoldStatus.RELEASED

    def test_unknown_resolution(self, dispute):
        result = DisputeService.resolve_dispute(dispute.id, "split_the_difference")

        assert result.error_code == "VALIDATION_ERROR"
        assert "resolution" in result.errors

    def test_unknown_dispute(self, db):
        result = DisputeService.resolve_dispute(uuid.uuid4(), DisputeResolution.PAY_SELLER)

        assert result.error_code == "DISPUTE_NOT_FOUND"
