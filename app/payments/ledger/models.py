"""
Ledger journal for seller balances.

Seller balance counters live on marketplace.Seller. Every change to them is
recorded here as one BalanceEntry carrying the signed delta applied to each
counter, so the counters can be rebuilt from the journal and audited.

Usage:
    from payments.ledger.models import BalanceEntry, EntryType

    BalanceEntry.objects.filter(seller=seller, entry_type=EntryType.ESCROW_LOCKED)
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin


class EntryType(models.TextChoices):
    """
    Kinds of balance mutation.

    Values:
        ESCROW_LOCKED: pending += amount (buyer paid into escrow)
        ESCROW_REFUNDED: pending -= amount (held funds returned to buyer)
        ESCROW_RELEASED: pending -= amount, available += amount
        PAYOUT_RESERVED: available -= amount (payout initiated)
        PAYOUT_RESTORED: available += amount (payout failed, compensation)
        PAYOUT_COMPLETED: paid_out += amount (gateway confirmed transfer)
    """

    ESCROW_LOCKED = "escrow_locked", "Escrow Locked"
    ESCROW_REFUNDED = "escrow_refunded", "Escrow Refunded"
    ESCROW_RELEASED = "escrow_released", "Escrow Released"
    PAYOUT_RESERVED = "payout_reserved", "Payout Reserved"
    PAYOUT_RESTORED = "payout_restored", "Payout Restored"
    PAYOUT_COMPLETED = "payout_completed", "Payout Completed"


class BalanceEntry(UUIDPrimaryKeyMixin, models.Model):
    """
    One applied balance mutation. Immutable once created.

    Fields:
        seller: Seller whose counters changed
        entry_type: Category of the mutation
        amount_cents: Absolute amount moved (always positive)
        pending_delta_cents / available_delta_cents / paid_out_delta_cents:
            Signed change applied to each counter
        idempotency_key: Unique key; replaying it is a no-op
        reference_type / reference_id: Business record that caused it
    """

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    seller = models.ForeignKey(
        "marketplace.Seller",
        on_delete=models.PROTECT,
        related_name="balance_entries",
    )
    entry_type = models.CharField(max_length=30, choices=EntryType.choices)
    amount_cents = models.PositiveBigIntegerField()

    pending_delta_cents = models.BigIntegerField(default=0)
    available_delta_cents = models.BigIntegerField(default=0)
    paid_out_delta_cents = models.BigIntegerField(default=0)

    idempotency_key = models.CharField(max_length=255, unique=True)
    reference_type = models.CharField(max_length=50, blank=True)
    reference_id = models.UUIDField(null=True, blank=True, db_index=True)
    description = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ["created_at"]
        verbose_name_plural = "Balance entries"
        indexes = [
            models.Index(fields=["seller", "created_at"], name="entry_seller_created_idx"),
            models.Index(fields=["reference_type", "reference_id"], name="entry_reference_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="balance_entry_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_entry_type_display()} {self.amount_cents} ({self.idempotency_key})"
