"""
Payout executor worker for retrying failed seller payouts.

Tasks:
- retry_failed_payouts: Periodic task that scans for retryable failed payouts
- retry_single_payout: Retries one failed payout with distributed locking

A payout is retryable when it is FAILED, has not been retried yet, failed
at least PAYOUT_RETRY_DELAY_MINUTES ago, and has fewer than
PAYOUT_MAX_RETRIES retries behind it. Payouts past the limit are logged at
critical level and left for an operator.

Usage:
    # Typically called via celery-beat schedule
    from payments.workers import retry_failed_payouts

    retry_failed_payouts.delay()

    # Retry a specific payout
    retry_single_payout.delay(str(payout.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from payments.exceptions import LockAcquisitionError
from payments.locks import DistributedLock
from payments.models import Payout
from payments.state_machines import PayoutStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum payouts to process per batch (prevents memory issues)
BATCH_SIZE = 100

# Lock TTL for one retry, gateway transfer included (seconds)
PAYOUT_LOCK_TTL = 120

# Lock timeout for blocking acquisition (seconds)
PAYOUT_LOCK_TIMEOUT = 5.0


# =============================================================================
# Periodic Task: Retry Failed Payouts
# =============================================================================


@shared_task(bind=True)
def retry_failed_payouts(self) -> dict:
    """
    Scan for failed payouts and queue retries for eligible ones.

    Returns:
        Dict with:
        - queued_count: Number of payouts queued for retry
        - exhausted_count: Number of payouts past the retry limit
    """
    logger.info("Starting failed payout retry scan")

    cutoff = timezone.now() - timedelta(minutes=settings.PAYOUT_RETRY_DELAY_MINUTES)
    failed_payouts = (
        Payout.objects.filter(
            status=PayoutStatus.FAILED,
            failed_at__lte=cutoff,
            retried_by__isnull=True,
        )
        .order_by("failed_at")[:BATCH_SIZE]
    )

    queued_count = 0
    exhausted_count = 0

    for payout in failed_payouts:
        if payout.retry_count >= settings.PAYOUT_MAX_RETRIES:
            logger.critical(
                "Payout exceeded max retries, operator action required",
                extra={
                    "payout_id": str(payout.id),
                    "hold_id": str(payout.escrow_hold_id),
                    "seller_id": str(payout.seller_id),
                    "amount_cents": payout.amount_cents,
                    "retry_count": payout.retry_count,
                },
            )
            exhausted_count += 1
            continue

        try:
            retry_single_payout.delay(str(payout.id))
            queued_count += 1
            logger.info(
                "Queued failed payout for retry",
                extra={"payout_id": str(payout.id), "retry_count": payout.retry_count},
            )
        except Exception as e:
            logger.error(
                f"Failed to queue payout for retry: {e}",
                extra={"payout_id": str(payout.id)},
            )

    logger.info(
        f"Failed payout scan complete: queued {queued_count} retries",
        extra={"queued_count": queued_count, "exhausted_count": exhausted_count},
    )
    return {"queued_count": queued_count, "exhausted_count": exhausted_count}


# =============================================================================
# Individual Retry Task
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(LockAcquisitionError,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def retry_single_payout(self, payout_id: str) -> dict:
    """
    Retry one failed payout.

    Returns:
        Dict with:
        - status: One of "retried", "skipped", "failed", "not_found"
        - payout_id: The failed payout
        - new_payout_id: The retry row, when one was created
        - error_code: Error code if not retried

    Raises:
        LockAcquisitionError: Re-raised to trigger Celery retry
    """
    from payments.services import PayoutService

    try:
        payout_uuid = UUID(str(payout_id))
    except ValueError:
        logger.error(f"Invalid payout_id format: {payout_id}")
        return {"status": "not_found", "payout_id": str(payout_id)}

    with DistributedLock(
        f"payout:retry:{payout_uuid}",
        ttl=PAYOUT_LOCK_TTL,
        timeout=PAYOUT_LOCK_TIMEOUT,
    ):
        result = PayoutService.retry_failed_payout(payout_uuid)

    if result.success:
        return {
            "status": "retried",
            "payout_id": str(payout_uuid),
            "new_payout_id": str(result.data.payout_id),
        }

    if result.error_code == "PAYOUT_NOT_FOUND":
        return {"status": "not_found", "payout_id": str(payout_uuid)}

    if result.error_code in ("PAYOUT_NOT_FAILED", "PAYOUT_ALREADY_RETRIED"):
        logger.info(
            "Payout no longer needs a retry",
            extra={"payout_id": str(payout_uuid), "error_code": result.error_code},
        )
        return {
            "status": "skipped",
            "payout_id": str(payout_uuid),
            "error_code": result.error_code,
        }

    # The retry row itself failed at the gateway; the next scan picks it up
    logger.error(
        f"Payout retry failed: {result.error}",
        extra={"payout_id": str(payout_uuid), "error_code": result.error_code},
    )
    new_payout = result.data.payout_id if result.data is not None else None
    return {
        "status": "failed",
        "payout_id": str(payout_uuid),
        "new_payout_id": str(new_payout) if new_payout else None,
        "error_code": result.error_code,
    }
