"""
Tests for EscrowService.

Tests cover:
- lock_escrow: idempotent hold creation and pending balance credit
- release_escrow: pending -> available, payout start, no double release
- refund_buyer: ledger correction before the gateway, gateway failures
- split_hold: conservation of the held amount across sub-holds
- auto_release: dispatch window, confirmation and dispute rules
- confirm_delivery: buyer confirmation codes
- Queries: stale escrows and seller summary

Balances are read from fresh Seller rows; FSM-protected models are
re-fetched with objects.get() rather than refresh_from_db().
"""

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone
from freezegun import freeze_time

from marketplace.models import DeliveryConfirmation, LinkStatus, PaymentLink, Seller
from marketplace.services import DeliveryService
from payments.exceptions import GatewayUnavailableError
from payments.ledger import BalanceEntry, LedgerService
from payments.models import Dispute, EscrowHold, Payout, Refund, Transaction
from payments.services import DisputeService, EscrowService
from payments.state_machines import (
    DisputeInitiator,
    DisputeResolution,
    EscrowHoldStatus,
    PayoutStatus,
    RefundStatus,
    TransactionStatus,
)
from payments.tests.factories import TransactionFactory


def get_hold(hold_id) -> EscrowHold:
    return EscrowHold.objects.get(id=hold_id)


def get_seller(seller_id) -> Seller:
    return Seller.objects.get(id=seller_id)


def link_status(link_id) -> str:
    return PaymentLink.objects.get(id=link_id).status


# =============================================================================
# Lock
# =============================================================================


@pytest.mark.django_db
class TestLockEscrow:
    def test_creates_held_hold_and_credits_pending(self, paid_transaction):
        result = EscrowService.lock_escrow(paid_transaction.id)

        assert result.success
        assert result.data.action == "locked"
        assert result.data.created is True
        hold = get_hold(result.data.hold_id)
        assert hold.status == EscrowHoldStatus.HELD
        assert hold.amount_cents == 100000
        assert hold.parent_id is None
        assert get_seller(paid_transaction.seller_id).pending_escrow_balance_cents == 100000
        assert link_status(paid_transaction.link_id) == LinkStatus.PAID

    def test_second_lock_returns_existing_hold(self, paid_transaction):
        first = EscrowService.lock_escrow(paid_transaction.id)
        second = EscrowService.lock_escrow(paid_transaction.id)

        assert second.success
        assert second.data.created is False
        assert second.data.hold_id == first.data.hold_id
        assert EscrowHold.objects.filter(transaction=paid_transaction).count() == 1
        assert get_seller(paid_transaction.seller_id).pending_escrow_balance_cents == 100000
        assert BalanceEntry.objects.filter(seller_id=paid_transaction.seller_id).count() == 1

    def test_pending_transaction_cannot_be_locked(self, pending_transaction):
        result = EscrowService.lock_escrow(pending_transaction.id)

        assert not result.success
        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert not EscrowHold.objects.exists()

    def test_unknown_transaction(self, db):
        result = EscrowService.lock_escrow(uuid.uuid4())

        assert result.error_code == "TRANSACTION_NOT_FOUND"


# =============================================================================
# Release
# =============================================================================


@pytest.mark.django_db
class TestReleaseEscrow:
    def test_release_moves_funds_and_starts_payout(self, held_escrow, payout_settings, gateway):
        result = EscrowService.release_escrow(held_escrow.id)

        assert result.success
        assert result.data.action == "released"
        assert result.data.payout_error_code is None

        hold = get_hold(held_escrow.id)
        assert hold.status == EscrowHoldStatus.RELEASED
        assert hold.release_reason == "buyer_confirmed"
        assert hold.released_at is not None

        payout = Payout.objects.get(id=result.data.payout_id)
        assert payout.status == PayoutStatus.PENDING
        assert payout.amount_cents == 100000
        assert payout.transfer_reference == f"payout_{held_escrow.id.hex}"

        # Released into available, then reserved by the payout
        seller = get_seller(held_escrow.seller_id)
        assert seller.pending_escrow_balance_cents == 0
        assert seller.available_balance_cents == 0
        assert seller.total_paid_out_cents == 0

        gateway.initiate_transfer.assert_called_once()
        kwargs = gateway.initiate_transfer.call_args.kwargs
        assert kwargs["amount_cents"] == 100000
        assert kwargs["recipient_code"] == payout_settings.recipient_code
        assert kwargs["reference"] == payout.transfer_reference
        assert link_status(held_escrow.transaction.link_id) == LinkStatus.COMPLETED

    def test_release_without_payout_settings_keeps_funds_available(self, held_escrow, gateway):
        result = EscrowService.release_escrow(held_escrow.id)

        assert result.success
        assert result.data.payout_id is None
        assert result.data.payout_error_code == "PAYOUT_SETTINGS_MISSING"
        assert get_hold(held_escrow.id).status == EscrowHoldStatus.RELEASED
        assert get_seller(held_escrow.seller_id).available_balance_cents == 100000
        gateway.initiate_transfer.assert_not_called()

    def test_second_release_is_rejected(self, held_escrow, payout_settings):
        EscrowService.release_escrow(held_escrow.id)

        result = EscrowService.release_escrow(held_escrow.id)

        assert not result.success
        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert Payout.objects.filter(escrow_hold=held_escrow).count() == 1
        seller = get_seller(held_escrow.seller_id)
        assert seller.pending_escrow_balance_cents == 0
        assert seller.available_balance_cents == 0

    def test_release_after_refund_is_rejected(self, held_escrow):
        EscrowService.refund_buyer(held_escrow.transaction_id, reason="Out of stock")

        result = EscrowService.release_escrow(held_escrow.id)

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert get_seller(held_escrow.seller_id).available_balance_cents == 0

    def test_unknown_hold(self, db):
        result = EscrowService.release_escrow(uuid.uuid4())

        assert result.error_code == "HOLD_NOT_FOUND"

    def test_ledger_drift_is_reported_not_raised(self, held_escrow):
        Seller.objects.filter(id=held_escrow.seller_id).update(pending_escrow_balance_cents=0)

        result = EscrowService.release_escrow(held_escrow.id)

        assert not result.success
        assert result.error_code == "INSUFFICIENT_BALANCE"
        assert get_hold(held_escrow.id).status == EscrowHoldStatus.HELD


# =============================================================================
# Refund
# =============================================================================


@pytest.mark.django_db
class TestRefundBuyer:
    def test_refund_clears_pending_and_calls_gateway(self, held_escrow, gateway):
        txn = held_escrow.transaction

        result = EscrowService.refund_buyer(
            txn.id,
            reason="Item unavailable",
            initiated_by=DisputeInitiator.SELLER,
        )

        assert result.success
        assert result.data.action == "refunded"
        assert result.data.gateway_error is None
        assert get_hold(held_escrow.id).status == EscrowHoldStatus.REFUNDED
        assert Transaction.objects.get(id=txn.id).status == TransactionStatus.REFUNDED
        assert link_status(txn.link_id) == LinkStatus.CANCELLED

        seller = get_seller(held_escrow.seller_id)
        assert seller.pending_escrow_balance_cents == 0
        assert seller.available_balance_cents == 0

        refund = Refund.objects.get(id=result.data.refund_id)
        assert refund.amount_cents == 100000
        assert refund.status == RefundStatus.PROCESSING
        assert refund.refund_reference
        assert refund.initiated_by == DisputeInitiator.SELLER
        assert [log["event"] for log in refund.logs] == ["initiated", "gateway_accepted"]

        gateway.initiate_refund.assert_called_once_with(
            transaction_reference=txn.payment_reference,
            amount_cents=100000,
            reason="Item unavailable",
        )

    def test_gateway_failure_keeps_ledger_correction(self, held_escrow, gateway):
        gateway.initiate_refund.side_effect = GatewayUnavailableError("Gateway down")

        result = EscrowService.refund_buyer(held_escrow.transaction_id, reason="Damaged")

        assert result.success
        assert result.data.gateway_error == "Gateway down"
        assert result.data.refund_status == RefundStatus.NEEDS_ATTENTION
        assert get_hold(held_escrow.id).status == EscrowHoldStatus.REFUNDED
        assert get_seller(held_escrow.seller_id).pending_escrow_balance_cents == 0

        refund = Refund.objects.get(id=result.data.refund_id)
        assert refund.refund_reference is None
        assert refund.logs[-1]["event"] == "gateway_failed"

    def test_second_refund_is_rejected(self, held_escrow, gateway):
        EscrowService.refund_buyer(held_escrow.transaction_id, reason="Damaged")

        result = EscrowService.refund_buyer(held_escrow.transaction_id, reason="Damaged")

        assert result.error_code == "ALREADY_REFUNDED"
        assert gateway.initiate_refund.call_count == 1
        assert Refund.objects.count() == 1

    def test_refund_after_release_is_rejected(self, held_escrow):
        EscrowService.release_escrow(held_escrow.id)

        result = EscrowService.refund_buyer(held_escrow.transaction_id, reason="Too late")

        assert result.error_code == "ALREADY_RELEASED"
        assert get_seller(held_escrow.seller_id).available_balance_cents == 100000

    def test_transaction_without_hold(self, paid_transaction):
        result = EscrowService.refund_buyer(paid_transaction.id, reason="No hold")

        assert result.error_code == "HOLD_NOT_FOUND"


# =============================================================================
# Split
# =============================================================================


@pytest.mark.django_db
class TestSplitHold:
    def test_split_conserves_held_amount(self, held_escrow, payout_settings, gateway):
        result = EscrowService.split_hold(
            held_escrow.transaction_id,
            refund_amount_cents=40000,
            reason="Partial damage",
        )

        assert result.success
        outcome = result.data
        assert outcome.action == "split"
        assert outcome.refunded_amount_cents == 40000
        assert outcome.released_amount_cents == 60000

        root = get_hold(held_escrow.id)
        assert root.status == EscrowHoldStatus.SPLIT
        released, refunded = (get_hold(hold_id) for hold_id in outcome.sub_hold_ids)
        assert released.status == EscrowHoldStatus.RELEASED
        assert released.release_reason == "dispute_partial_refund"
        assert refunded.status == EscrowHoldStatus.REFUNDED
        assert released.parent_id == refunded.parent_id == root.id
        assert released.amount_cents + refunded.amount_cents == root.amount_cents

        # Nothing left pending; the released part is reserved by its payout
        seller = get_seller(held_escrow.seller_id)
        assert seller.pending_escrow_balance_cents == 0
        assert seller.available_balance_cents == 0
        payout = Payout.objects.get(id=outcome.payout_id)
        assert payout.escrow_hold_id == released.id
        assert payout.amount_cents == 60000

        assert gateway.initiate_refund.call_args.kwargs["amount_cents"] == 40000
        assert Refund.objects.get(id=outcome.refund_id).escrow_hold_id == refunded.id
        assert link_status(held_escrow.transaction.link_id) == LinkStatus.COMPLETED

    @pytest.mark.parametrize("amount", [0, 100000, 150000])
    def test_rejects_amount_outside_hold(self, held_escrow, amount):
        result = EscrowService.split_hold(
            held_escrow.transaction_id,
            refund_amount_cents=amount,
            reason="Bad amount",
        )

        assert result.error_code == "INVALID_PARTIAL_AMOUNT"
        assert get_hold(held_escrow.id).status == EscrowHoldStatus.HELD
        assert EscrowHold.objects.filter(parent=held_escrow).count() == 0
        assert get_seller(held_escrow.seller_id).pending_escrow_balance_cents == 100000

    def test_split_of_released_hold_is_rejected(self, held_escrow):
        EscrowService.release_escrow(held_escrow.id)

        result = EscrowService.split_hold(
            held_escrow.transaction_id,
            refund_amount_cents=1000,
            reason="Too late",
        )

        assert result.error_code == "ALREADY_RELEASED"


# =============================================================================
# Auto-release
# =============================================================================


@pytest.mark.django_db
class TestAutoRelease:
    DISPATCHED_AT = "2026-03-02 10:00:00"

    def _dispatch(self, hold):
        with freeze_time(self.DISPATCHED_AT):
            DeliveryService.record_dispatch(hold.transaction_id, courier_name="G4S")

    def test_not_released_before_window(self, held_escrow):
        self._dispatch(held_escrow)

        with freeze_time("2026-03-03 09:00:00"):  # 23 hours
            result = EscrowService.auto_release(held_escrow.transaction_id)

        assert result.success
        assert result.data.released is False
        assert result.data.reason == "window_not_elapsed"
        assert get_hold(held_escrow.id).status == EscrowHoldStatus.HELD

    def test_released_after_window(self, held_escrow, payout_settings):
        self._dispatch(held_escrow)

        with freeze_time("2026-03-03 11:00:00"):  # 25 hours
            result = EscrowService.auto_release(held_escrow.transaction_id)

        assert result.success
        assert result.data.released is True
        assert result.data.reason == "auto_release"
        assert result.data.escrow.payout_id is not None

        hold = get_hold(held_escrow.id)
        assert hold.status == EscrowHoldStatus.RELEASED
        assert hold.release_reason == "auto_release"
        confirmation = DeliveryConfirmation.objects.get(transaction_id=held_escrow.transaction_id)
        assert confirmation.confirmed is True
        assert confirmation.auto_confirmed is True

    def test_pending_dispute_blocks_release(self, held_escrow):
        self._dispatch(held_escrow)
        DisputeService.open_dispute(
            held_escrow.transaction_id,
            initiated_by=DisputeInitiator.BUYER,
            reason="Wrong colour",
        )

        with freeze_time("2026-03-05 10:00:00"):
            result = EscrowService.auto_release(held_escrow.transaction_id)

        assert result.data.released is False
        assert result.data.reason == "dispute_pending"
        assert get_hold(held_escrow.id).status == EscrowHoldStatus.HELD

    def test_recorded_but_unapplied_resolution_blocks_release(self, held_escrow, payout_settings):
        self._dispatch(held_escrow)
        Dispute.objects.create(
            transaction_id=held_escrow.transaction_id,
            initiated_by=DisputeInitiator.BUYER,
            reason="Wrong colour",
            resolution=DisputeResolution.REFUND_BUYER,
            resolution_applied=False,
        )

        with freeze_time("2026-03-05 10:00:00"):
            assert EscrowService.get_stale_escrows() == []
            result = EscrowService.auto_release(held_escrow.transaction_id)

        assert result.data.released is False
        assert result.data.reason == "dispute_pending"
        assert get_hold(held_escrow.id).status == EscrowHoldStatus.HELD
        assert Payout.objects.count() == 0

        refund = EscrowService.refund_buyer(held_escrow.transaction_id, reason="Dispute resolved")
        assert refund.success

    def test_applied_resolution_no_longer_blocks(self, held_escrow, payout_settings):
        self._dispatch(held_escrow)
        Dispute.objects.create(
            transaction_id=held_escrow.transaction_id,
            initiated_by=DisputeInitiator.SELLER,
            reason="Buyer unreachable",
            resolution=DisputeResolution.PAY_SELLER,
            resolution_applied=True,
        )

        with freeze_time("2026-03-05 10:00:00"):
            assert EscrowService.get_stale_escrows() == [held_escrow.transaction_id]
            result = EscrowService.auto_release(held_escrow.transaction_id)

        assert result.data.released is True

    def test_without_dispatch_proof(self, held_escrow):
        result = EscrowService.auto_release(held_escrow.transaction_id)

        assert result.data.released is False
        assert result.data.reason == "no_dispatch_proof"

    def test_buyer_already_confirmed(self, held_escrow):
        self._dispatch(held_escrow)
        code = DeliveryConfirmation.objects.get(transaction_id=held_escrow.transaction_id).confirmation_code
        EscrowService.confirm_delivery(code)

        with freeze_time("2026-03-04 10:00:00"):
            result = EscrowService.auto_release(held_escrow.transaction_id)

        assert result.data.released is False
        assert result.data.reason == "already_confirmed"
        assert Payout.objects.count() == 0

    def test_refunded_hold_is_not_released(self, held_escrow):
        self._dispatch(held_escrow)
        EscrowService.refund_buyer(held_escrow.transaction_id, reason="Cancelled")

        with freeze_time("2026-03-04 10:00:00"):
            result = EscrowService.auto_release(held_escrow.transaction_id)

        assert result.data.released is False
        assert result.data.reason == "not_held"
        assert get_hold(held_escrow.id).status == EscrowHoldStatus.REFUNDED


# =============================================================================
# Confirm Delivery
# =============================================================================


@pytest.mark.django_db
class TestConfirmDelivery:
    def _code(self, hold) -> str:
        return DeliveryConfirmation.objects.get(transaction_id=hold.transaction_id).confirmation_code

    def test_confirmation_releases_hold(self, dispatched_escrow, payout_settings):
        result = EscrowService.confirm_delivery(self._code(dispatched_escrow).lower())

        assert result.success
        assert result.data.action == "released"
        assert get_hold(dispatched_escrow.id).release_reason == "buyer_confirmed"
        confirmation = DeliveryConfirmation.objects.get(transaction_id=dispatched_escrow.transaction_id)
        assert confirmation.confirmed is True
        assert confirmation.auto_confirmed is False

    def test_unknown_code(self, db):
        result = EscrowService.confirm_delivery("NOPE1234")

        assert result.error_code == "CONFIRMATION_NOT_FOUND"

    def test_dispute_pending(self, dispatched_escrow):
        DisputeService.open_dispute(
            dispatched_escrow.transaction_id,
            initiated_by=DisputeInitiator.SELLER,
            reason="Buyer unreachable",
        )

        result = EscrowService.confirm_delivery(self._code(dispatched_escrow))

        assert result.error_code == "DISPUTE_PENDING"
        assert get_hold(dispatched_escrow.id).status == EscrowHoldStatus.HELD

    def test_unapplied_resolution_still_blocks_confirmation(self, dispatched_escrow):
        Dispute.objects.create(
            transaction_id=dispatched_escrow.transaction_id,
            initiated_by=DisputeInitiator.BUYER,
            reason="Strap is torn",
            resolution=DisputeResolution.PARTIAL_REFUND,
            partial_refund_cents=30000,
        )

        result = EscrowService.confirm_delivery(self._code(dispatched_escrow))

        assert result.error_code == "DISPUTE_PENDING"
        assert get_hold(dispatched_escrow.id).status == EscrowHoldStatus.HELD

    def test_second_confirmation_is_rejected(self, dispatched_escrow):
        code = self._code(dispatched_escrow)
        EscrowService.confirm_delivery(code)

        result = EscrowService.confirm_delivery(code)

        assert result.error_code == "INVALID_STATE_TRANSITION"


# =============================================================================
# Queries
# =============================================================================


@pytest.mark.django_db
class TestQueries:
    def test_get_stale_escrows(self, link):
        stale = TransactionFactory(link=link, status=TransactionStatus.COMPLETED)
        fresh = TransactionFactory(link=link, status=TransactionStatus.COMPLETED)
        disputed = TransactionFactory(link=link, status=TransactionStatus.COMPLETED)
        for txn in (stale, fresh, disputed):
            EscrowService.lock_escrow(txn.id)

        with freeze_time(timezone.now() - timedelta(hours=30)):
            DeliveryService.record_dispatch(stale.id, courier_name="G4S")
            DeliveryService.record_dispatch(disputed.id, courier_name="G4S")
        DeliveryService.record_dispatch(fresh.id, courier_name="G4S")
        Dispute.objects.create(
            transaction=disputed,
            initiated_by=DisputeInitiator.BUYER,
            reason="Not received",
        )

        assert EscrowService.get_stale_escrows(hours=24) == [stale.id]

    def test_seller_summary(self, held_escrow):
        result = EscrowService.get_seller_summary(held_escrow.seller_id)

        assert result.success
        summary = result.data
        assert summary.pending_escrow_cents == 100000
        assert summary.held_count == 1
        assert summary.currency == "KES"
        assert summary.to_dict()["seller_id"] == str(held_escrow.seller_id)

    def test_seller_summary_unknown_seller(self, db):
        result = EscrowService.get_seller_summary(uuid.uuid4())

        assert result.error_code == "SELLER_NOT_FOUND"

    def test_balances_match_journal_after_mixed_operations(self, link, payout_settings):
        released = TransactionFactory(link=link, status=TransactionStatus.COMPLETED)
        refunded = TransactionFactory(link=link, status=TransactionStatus.COMPLETED)
        held = TransactionFactory(link=link, status=TransactionStatus.COMPLETED)
        holds = {txn.id: EscrowService.lock_escrow(txn.id).data.hold_id for txn in (released, refunded, held)}

        EscrowService.release_escrow(holds[released.id])
        EscrowService.refund_buyer(refunded.id, reason="Cancelled")

        seller = get_seller(link.seller_id)
        assert seller.pending_escrow_balance_cents == 100000
        assert LedgerService.verify_balances(link.seller_id) == {}
