"""
Payment services for the escrow marketplace.

This module provides:
- EscrowService: lock, release, refund, split and auto-release of escrow holds
- PayoutService: transfers of released funds to sellers, retries, payout settings
- DisputeService: opening disputes and applying their resolution
- RefundService: gateway side of refunds and refund.* webhooks
- CheckoutService: buyer checkout and charge confirmation

Usage:
    from payments.services import EscrowService

    result = EscrowService.lock_escrow(transaction.id)
    if result.success:
        hold_id = result.data.hold_id
"""

from payments.services.checkout_service import CheckoutService
from payments.services.dispute_service import DisputeService
from payments.services.escrow_service import EscrowService
from payments.services.outcomes import (
    AutoReleaseOutcome,
    CheckoutSession,
    CheckoutStatus,
    DisputeOutcome,
    EscrowOutcome,
    PayoutHistory,
    PayoutOutcome,
    SellerSummary,
)
from payments.services.payout_service import PayoutService
from payments.services.refund_service import RefundService

__all__ = [
    "AutoReleaseOutcome",
    "CheckoutService",
    "CheckoutSession",
    "CheckoutStatus",
    "DisputeOutcome",
    "DisputeService",
    "EscrowOutcome",
    "EscrowService",
    "PayoutHistory",
    "PayoutOutcome",
    "PayoutService",
    "RefundService",
    "SellerSummary",
]
