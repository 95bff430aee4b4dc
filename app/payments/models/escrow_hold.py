"""
EscrowHold model: buyer funds held against a transaction.

One root hold per completed transaction. A partial refund turns the root
hold into SPLIT and replaces it with two sub-holds (parent set): one
refunded portion and one released portion, so every hold has a single
unambiguous status for its whole amount.

Usage:
    from payments.models import EscrowHold

    hold = EscrowHold.objects.select_for_update().get(id=hold_id)
    hold.release(reason="buyer_confirmed")
    hold.save()
"""

from __future__ import annotations

from django.db import models
from django.db.models import F
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import EscrowHoldStatus


class EscrowHold(UUIDPrimaryKeyMixin, BaseModel):
    """
    Funds held in escrow for one transaction (or one portion of it).

    State Flow:
        HELD → RELEASED
        HELD → REFUNDING → REFUNDED
        HELD → SPLIT
        RELEASED → TRANSFER_FAILED → RELEASED (payout retry)

    Fields:
        transaction: Transaction the funds were paid under
        seller: Seller the funds are held for
        parent: Root hold this sub-hold was split from (null for root holds)
        amount_cents: Held amount in minor units
        transfer_reference: Reference of the latest payout transfer
        release_reason: Why the hold was released (buyer_confirmed, auto_release, ...)
        paid_out_at: Set when the gateway confirms the payout transfer
    """

    transaction = models.ForeignKey(
        "payments.Transaction",
        on_delete=models.PROTECT,
        related_name="escrow_holds",
    )
    seller = models.ForeignKey(
        "marketplace.Seller",
        on_delete=models.PROTECT,
        related_name="escrow_holds",
    )
    parent = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="sub_holds",
    )

    amount_cents = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="KES")

    status = FSMField(
        default=EscrowHoldStatus.HELD,
        choices=EscrowHoldStatus.choices,
        db_index=True,
        protected=True,
    )

    transfer_reference = models.CharField(max_length=100, null=True, blank=True)
    release_reason = models.CharField(max_length=50, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    paid_out_at = models.DateTimeField(null=True, blank=True)

    version = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["seller", "status"], name="hold_seller_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="escrow_hold_amount_positive",
            ),
            models.UniqueConstraint(
                fields=["transaction"],
                condition=models.Q(parent__isnull=True),
                name="escrow_hold_one_root_per_transaction",
            ),
        ]

    def __str__(self) -> str:
        return f"EscrowHold({self.id}, {self.status}, {self.amount_cents} {self.currency})"

    def save(self, *args, **kwargs):
        """Save with version auto-increment for optimistic locking."""
        is_update = self.pk and not self._state.adding
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=status, source=EscrowHoldStatus.HELD, target=EscrowHoldStatus.RELEASED)
    def release(self, reason: str = ""):
        """Funds belong to the seller from here on."""
        self.released_at = timezone.now()
        self.release_reason = reason

    @transition(field=status, source=EscrowHoldStatus.HELD, target=EscrowHoldStatus.REFUNDING)
    def begin_refund(self):
        pass

    @transition(field=status, source=EscrowHoldStatus.REFUNDING, target=EscrowHoldStatus.REFUNDED)
    def complete_refund(self):
        self.refunded_at = timezone.now()

    @transition(field=status, source=EscrowHoldStatus.HELD, target=EscrowHoldStatus.SPLIT)
    def split(self):
        """Amount is now carried by two sub-holds."""

    @transition(field=status, source=EscrowHoldStatus.RELEASED, target=EscrowHoldStatus.TRANSFER_FAILED)
    def mark_transfer_failed(self):
        pass

    @transition(field=status, source=EscrowHoldStatus.TRANSFER_FAILED, target=EscrowHoldStatus.RELEASED)
    def resume_transfer(self):
        """A payout retry is in flight again."""

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_held(self) -> bool:
        return self.status == EscrowHoldStatus.HELD

    @property
    def is_released(self) -> bool:
        return self.status in (EscrowHoldStatus.RELEASED, EscrowHoldStatus.TRANSFER_FAILED)
