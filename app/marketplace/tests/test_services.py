"""
Tests for the marketplace collaborator services.

Tests cover:
- LinkStatusService only moving links forward from allowed states
- DeliveryService dispatch proof, confirmation codes and rejection
"""

import uuid
from datetime import UTC, datetime

import pytest
from freezegun import freeze_time

from marketplace.models import DeliveryConfirmation, LinkStatus, PaymentLink, ShippingProof
from marketplace.services import DeliveryService, LinkStatusService
from marketplace.tests.factories import PaymentLinkFactory
from payments.state_machines import TransactionStatus
from payments.tests.factories import TransactionFactory


def status_of(link) -> str:
    return PaymentLink.objects.get(id=link.id).status


@pytest.fixture
def paid_transaction(db):
    return TransactionFactory(status=TransactionStatus.COMPLETED)


# =============================================================================
# LinkStatusService
# =============================================================================


@pytest.mark.django_db
class TestLinkStatusService:
    def test_active_link_becomes_paid(self):
        link = PaymentLinkFactory()

        assert LinkStatusService.mark_paid(link.id) is True
        assert status_of(link) == LinkStatus.PAID

    def test_paid_link_completes(self):
        link = PaymentLinkFactory(status=LinkStatus.PAID)

        assert LinkStatusService.mark_completed(link.id) is True
        assert status_of(link) == LinkStatus.COMPLETED

    def test_disputed_link_can_be_cancelled(self):
        link = PaymentLinkFactory(status=LinkStatus.DISPUTED)

        assert LinkStatusService.mark_cancelled(link.id) is True
        assert status_of(link) == LinkStatus.CANCELLED

    def test_completed_link_never_moves_back(self):
        link = PaymentLinkFactory(status=LinkStatus.COMPLETED)

        assert LinkStatusService.mark_paid(link.id) is False
        assert LinkStatusService.mark_disputed(link.id) is False
        assert LinkStatusService.mark_cancelled(link.id) is False
        assert status_of(link) == LinkStatus.COMPLETED

    def test_active_link_cannot_complete(self):
        link = PaymentLinkFactory()

        assert LinkStatusService.mark_completed(link.id) is False
        assert status_of(link) == LinkStatus.ACTIVE

    def test_unknown_link(self):
        assert LinkStatusService.mark_paid(uuid.uuid4()) is False


# =============================================================================
# DeliveryService
# =============================================================================


@pytest.mark.django_db
class TestRecordDispatch:
    def test_records_proof_and_issues_code(self, paid_transaction):
        with freeze_time("2026-03-02 10:00:00"):
            result = DeliveryService.record_dispatch(
                paid_transaction.id,
                courier_name="G4S",
                courier_contact="0700000000",
                tracking_number="G4S-77",
            )

        assert result.success
        assert result.data.tracking_number == "G4S-77"
        assert DeliveryService.get_dispatched_at(paid_transaction.id) == datetime(2026, 3, 2, 10, 0, tzinfo=UTC)
        code = DeliveryConfirmation.objects.get(transaction=paid_transaction).confirmation_code
        assert len(code) == 8
        assert code == code.upper()

    def test_second_dispatch_keeps_first_clock(self, paid_transaction):
        with freeze_time("2026-03-02 10:00:00"):
            DeliveryService.record_dispatch(paid_transaction.id, courier_name="G4S")
        with freeze_time("2026-03-04 10:00:00"):
            result = DeliveryService.record_dispatch(paid_transaction.id, courier_name="Sendy")

        assert result.success
        assert result.data.courier_name == "G4S"
        assert ShippingProof.objects.count() == 1
        assert DeliveryConfirmation.objects.count() == 1

    def test_unpaid_transaction(self, db):
        txn = TransactionFactory()

        result = DeliveryService.record_dispatch(txn.id, courier_name="G4S")

        assert not result.success
        assert result.error_code == "INVALID_STATE_TRANSITION"

    def test_unknown_transaction(self, db):
        result = DeliveryService.record_dispatch(uuid.uuid4(), courier_name="G4S")

        assert result.error_code == "TRANSACTION_NOT_FOUND"

    def test_not_dispatched(self, paid_transaction):
        assert DeliveryService.get_dispatched_at(paid_transaction.id) is None


@pytest.mark.django_db
class TestConfirmation:
    @pytest.fixture
    def confirmation(self, paid_transaction):
        DeliveryService.record_dispatch(paid_transaction.id, courier_name="G4S")
        return DeliveryConfirmation.objects.get(transaction=paid_transaction)

    def test_find_by_code_is_case_insensitive(self, confirmation):
        found = DeliveryService.find_by_code(f"  {confirmation.confirmation_code.lower()} ")

        assert found == confirmation

    def test_find_by_blank_code(self, confirmation):
        assert DeliveryService.find_by_code("") is None

    def test_mark_confirmed_once(self, confirmation):
        first = DeliveryService.mark_confirmed(confirmation.transaction_id, auto=True)
        confirmed_at = first.confirmed_at

        second = DeliveryService.mark_confirmed(confirmation.transaction_id)

        assert DeliveryService.is_confirmed(confirmation.transaction_id)
        assert second.auto_confirmed is True
        assert second.confirmed_at == confirmed_at

    def test_reject_records_reason(self, confirmation):
        result = DeliveryService.reject_delivery(confirmation.confirmation_code, "Wrong size")

        assert result.success
        stored = DeliveryConfirmation.objects.get(id=confirmation.id)
        assert stored.rejection_reason == "Wrong size"
        assert stored.rejected_at is not None
        assert not stored.confirmed

    def test_reject_after_confirmation(self, confirmation):
        DeliveryService.mark_confirmed(confirmation.transaction_id)

        result = DeliveryService.reject_delivery(confirmation.confirmation_code, "Changed my mind")

        assert result.error_code == "DELIVERY_ALREADY_CONFIRMED"

    def test_reject_unknown_code(self, db):
        result = DeliveryService.reject_delivery("FFFFFFFF", "Wrong size")

        assert result.error_code == "CONFIRMATION_NOT_FOUND"
