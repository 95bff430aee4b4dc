"""
Auto-release worker for escrows whose buyer never responded.

Tasks:
- process_stale_escrows: Periodic task that finds stale escrows and queues checks
- auto_release_transaction: Runs the auto-release check for one transaction
  under a distributed lock

The eligibility rules (dispatch proof age, buyer confirmation, pending
dispute) live in EscrowService.auto_release and are evaluated again inside
the task, so a transaction queued twice or changed after the scan is
handled correctly.

Usage:
    # Typically called via celery-beat schedule
    from payments.workers import process_stale_escrows

    process_stale_escrows.delay()

    # Check a specific transaction
    auto_release_transaction.delay(str(transaction_id))
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task
from django.conf import settings

from payments.exceptions import LockAcquisitionError
from payments.locks import DistributedLock

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Lock TTL for one auto-release check, gateway transfer included (seconds)
AUTO_RELEASE_LOCK_TTL = 120

# Lock timeout for blocking acquisition (seconds)
AUTO_RELEASE_LOCK_TIMEOUT = 5.0


# =============================================================================
# Periodic Task: Scan for Stale Escrows
# =============================================================================


@shared_task(bind=True)
def process_stale_escrows(self) -> dict:
    """
    Queue an auto-release check for every stale escrow.

    Returns:
        Dict with queued_count
    """
    from payments.services import EscrowService

    logger.info("Starting stale escrow scan")

    transaction_ids = EscrowService.get_stale_escrows(
        hours=settings.ESCROW_AUTO_RELEASE_HOURS,
        limit=settings.ESCROW_AUTO_RELEASE_BATCH_SIZE,
    )

    queued_count = 0
    for transaction_id in transaction_ids:
        try:
            auto_release_transaction.delay(str(transaction_id))
            queued_count += 1
        except Exception as e:
            logger.error(
                f"Failed to queue auto-release: {e}",
                extra={"transaction_id": str(transaction_id)},
            )

    logger.info(
        f"Stale escrow scan complete: queued {queued_count} transactions",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


# =============================================================================
# Individual Auto-Release Task
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(LockAcquisitionError,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def auto_release_transaction(self, transaction_id: str) -> dict:
    """
    Auto-release one transaction's escrow if it is still eligible.

    Returns:
        Dict with:
        - status: One of "released", "not_eligible", "failed", "not_found"
        - transaction_id
        - reason / error_code where applicable

    Raises:
        LockAcquisitionError: Re-raised to trigger Celery retry
    """
    from payments.services import EscrowService

    try:
        transaction_uuid = UUID(str(transaction_id))
    except ValueError:
        logger.error(f"Invalid transaction_id format: {transaction_id}")
        return {"status": "not_found", "transaction_id": str(transaction_id)}

    with DistributedLock(
        f"escrow:auto_release:{transaction_uuid}",
        ttl=AUTO_RELEASE_LOCK_TTL,
        timeout=AUTO_RELEASE_LOCK_TIMEOUT,
    ):
        result = EscrowService.auto_release(transaction_uuid)

    if not result.success:
        if result.error_code == "TRANSACTION_NOT_FOUND":
            return {"status": "not_found", "transaction_id": str(transaction_uuid)}
        logger.error(
            f"Auto-release failed: {result.error}",
            extra={"transaction_id": str(transaction_uuid), "error_code": result.error_code},
        )
        return {
            "status": "failed",
            "transaction_id": str(transaction_uuid),
            "error_code": result.error_code,
        }

    outcome = result.data
    if not outcome.released:
        logger.info(
            "Escrow not eligible for auto-release",
            extra={"transaction_id": str(transaction_uuid), "reason": outcome.reason},
        )
        return {
            "status": "not_eligible",
            "transaction_id": str(transaction_uuid),
            "reason": outcome.reason,
        }

    return {
        "status": "released",
        "transaction_id": str(transaction_uuid),
        "hold_id": str(outcome.escrow.hold_id),
        "payout_id": str(outcome.escrow.payout_id) if outcome.escrow.payout_id else None,
    }
