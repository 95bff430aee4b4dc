"""
State enums for payment models.

Django TextChoices used by the django-fsm state fields and admin filters.

State Machines Overview:

Transaction:
    pending → completed → refunding → refunded
    pending → failed

EscrowHold:
    held → released                      (buyer confirmation, auto-release, pay_seller)
    held → refunding → refunded          (refund_buyer)
    held → split                         (partial_refund, replaced by two sub-holds)
    released → transfer_failed → released (payout failed, then retried)

Payout:
    pending → success
    pending → failed
    failed → success                     (late transfer.success after a failure)

Refund:
    pending → processing → processed
    pending/processing → needs_attention / failed
"""

from django.db import models


class TransactionStatus(models.TextChoices):
    """
    States for a buyer payment attempt.

    Terminal states: REFUNDED, FAILED. COMPLETED is terminal once the escrow
    hold for the transaction is released.
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    REFUNDING = "refunding", "Refunding"
    REFUNDED = "refunded", "Refunded"
    FAILED = "failed", "Failed"


class EscrowHoldStatus(models.TextChoices):
    """
    States for an escrow hold.

    A hold never re-enters HELD once it leaves it.

    Terminal states: REFUNDED, SPLIT. RELEASED is terminal for the escrow
    state machine; payout bookkeeping may still move it through
    TRANSFER_FAILED and back.
    """

    HELD = "held", "Held"
    RELEASED = "released", "Released"
    REFUNDING = "refunding", "Refunding"
    REFUNDED = "refunded", "Refunded"
    TRANSFER_FAILED = "transfer_failed", "Transfer Failed"
    SPLIT = "split", "Split"


class PayoutStatus(models.TextChoices):
    """
    States for one payout attempt.

    A retry creates a new Payout row linked through retry_of, so FAILED
    rows stay as audit history.
    """

    PENDING = "pending", "Pending"
    SUCCESS = "success", "Success"
    FAILED = "failed", "Failed"


class RefundStatus(models.TextChoices):
    """
    Gateway-side state of a refund.

    PROCESSED is terminal. NEEDS_ATTENTION and FAILED mean the gateway
    could not complete the refund and an operator must reconcile it.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    NEEDS_ATTENTION = "needs_attention", "Needs Attention"
    FAILED = "failed", "Failed"
    PROCESSED = "processed", "Processed"


class DisputeResolution(models.TextChoices):
    """Outcome chosen for a dispute. NONE means still open."""

    NONE = "none", "Pending"
    REFUND_BUYER = "refund_buyer", "Refund Buyer"
    PAY_SELLER = "pay_seller", "Pay Seller"
    PARTIAL_REFUND = "partial_refund", "Partial Refund"


class DisputeInitiator(models.TextChoices):
    BUYER = "buyer", "Buyer"
    SELLER = "seller", "Seller"
    SYSTEM = "system", "System"


class PaymentMethod(models.TextChoices):
    CARD = "card", "Card"
    MOBILE_MONEY = "mobile_money", "Mobile Money"
    BANK_TRANSFER = "bank_transfer", "Bank Transfer"


class PayoutAccountType(models.TextChoices):
    """Destination type for seller payouts."""

    BANK = "bank", "Bank Account"
    MPESA = "mpesa", "M-Pesa"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (retried by the scheduler)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "DisputeInitiator",
    "DisputeResolution",
    "EscrowHoldStatus",
    "PaymentMethod",
    "PayoutAccountType",
    "PayoutStatus",
    "RefundStatus",
    "TransactionStatus",
    "WebhookEventStatus",
]
