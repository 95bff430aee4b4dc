"""
Workers for async payment processing.

This module contains Celery tasks for scheduled escrow operations:
- AutoRelease: Releases escrows whose dispatch proof is older than the window
- PayoutExecutor: Retries failed payouts to sellers

Usage:
    from payments.workers import (
        auto_release_transaction,
        process_stale_escrows,
        retry_failed_payouts,
        retry_single_payout,
    )

    # Trigger manual processing
    process_stale_escrows.delay()
    retry_single_payout.delay(str(payout_id))
"""

from payments.workers.auto_release import (
    auto_release_transaction,
    process_stale_escrows,
)
from payments.workers.payout_executor import (
    retry_failed_payouts,
    retry_single_payout,
)

__all__ = [
    # Auto Release
    "auto_release_transaction",
    "process_stale_escrows",
    # Payout Executor
    "retry_failed_payouts",
    "retry_single_payout",
]
