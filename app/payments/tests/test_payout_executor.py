"""
Tests for the payout retry worker.
"""

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from payments.exceptions import GatewayTimeoutError, GatewayUnavailableError
from payments.models import Payout
from payments.services import EscrowService
from payments.state_machines import PayoutStatus
from payments.workers.payout_executor import retry_failed_payouts, retry_single_payout


@pytest.fixture
def failed_payout(held_escrow, payout_settings, gateway) -> Payout:
    """Payout that failed 45 minutes ago, past the retry delay."""
    default = gateway.initiate_transfer.side_effect
    gateway.initiate_transfer.side_effect = GatewayTimeoutError("Payment gateway did not respond in time")
    payout_id = EscrowService.release_escrow(held_escrow.id).data.payout_id
    gateway.initiate_transfer.side_effect = default

    Payout.objects.filter(id=payout_id).update(failed_at=timezone.now() - timedelta(minutes=45))
    return Payout.objects.get(id=payout_id)


@pytest.mark.django_db
class TestRetrySinglePayout:
    def test_retries_failed_payout(self, failed_payout, no_distributed_lock):
        result = retry_single_payout(str(failed_payout.id))

        assert result["status"] == "retried"
        retry = Payout.objects.get(id=result["new_payout_id"])
        assert retry.retry_of_id == failed_payout.id
        assert retry.status == PayoutStatus.PENDING
        no_distributed_lock.payout_executor.assert_called_once_with(
            f"payout:retry:{failed_payout.id}",
            ttl=120,
            timeout=5.0,
        )

    def test_already_retried_is_skipped(self, failed_payout, no_distributed_lock):
        retry_single_payout(str(failed_payout.id))

        result = retry_single_payout(str(failed_payout.id))

        assert result["status"] == "skipped"
        assert result["error_code"] == "PAYOUT_ALREADY_RETRIED"

    def test_retry_attempt_fails_at_gateway(self, failed_payout, gateway, no_distributed_lock):
        gateway.initiate_transfer.side_effect = GatewayUnavailableError("Gateway down")

        result = retry_single_payout(str(failed_payout.id))

        assert result["status"] == "failed"
        assert result["error_code"] == "TRANSFER_FAILED"
        assert Payout.objects.get(id=result["new_payout_id"]).status == PayoutStatus.FAILED

    def test_unknown_payout(self, db, no_distributed_lock):
        assert retry_single_payout(str(uuid.uuid4()))["status"] == "not_found"


@pytest.mark.django_db
class TestRetryFailedPayouts:
    def test_queues_eligible_payouts(self, failed_payout, no_distributed_lock):
        result = retry_failed_payouts()

        assert result == {"queued_count": 1, "exhausted_count": 0}
        assert Payout.objects.filter(retry_of=failed_payout).exists()

    def test_recent_failure_waits(self, failed_payout, no_distributed_lock):
        Payout.objects.filter(id=failed_payout.id).update(failed_at=timezone.now())

        assert retry_failed_payouts() == {"queued_count": 0, "exhausted_count": 0}

    def test_exhausted_payouts_are_left_for_operator(self, failed_payout, no_distributed_lock):
        Payout.objects.filter(id=failed_payout.id).update(retry_count=3)

        result = retry_failed_payouts()

        assert result == {"queued_count": 0, "exhausted_count": 1}
        assert Payout.objects.count() == 1

    def test_retried_payouts_are_not_rescanned(self, failed_payout, no_distributed_lock):
        retry_failed_payouts()

        assert retry_failed_payouts() == {"queued_count": 0, "exhausted_count": 0}
