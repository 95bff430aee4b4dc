"""
Transaction model: one buyer payment attempt against one payment link.

Created when checkout starts, completed by the gateway's charge.success
webhook (or the checkout verify callback), and moved to refunded by the
escrow engine.

Usage:
    from payments.models import Transaction

    txn = Transaction.objects.get(payment_reference="esc_...")
    txn.mark_completed(channel="mobile_money")
    txn.save()
"""

from __future__ import annotations

from django.db import models
from django.db.models import F
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import PaymentMethod, TransactionStatus


class Transaction(UUIDPrimaryKeyMixin, BaseModel):
    """
    A buyer's payment into escrow.

    State Flow:
        PENDING → COMPLETED → REFUNDING → REFUNDED
        PENDING → FAILED

    Fields:
        link: PaymentLink being paid for
        seller: Seller who will receive the funds (denormalized from link)
        amount_cents: Charged amount in minor units
        payment_reference: Unique reference shared with the gateway
        gateway_channel: Channel reported by the gateway (card, mobile_money)
        paid_at: When the gateway confirmed the charge
        version: Optimistic locking version
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    link = models.ForeignKey(
        "marketplace.PaymentLink",
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    seller = models.ForeignKey(
        "marketplace.Seller",
        on_delete=models.PROTECT,
        related_name="transactions",
    )

    # ==========================================================================
    # Buyer
    # ==========================================================================

    buyer_email = models.EmailField()
    buyer_phone = models.CharField(max_length=20, blank=True)

    # ==========================================================================
    # Amount & Payment
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Charged amount in minor units",
    )
    currency = models.CharField(max_length=3, default="KES")
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.CARD,
    )
    payment_reference = models.CharField(
        max_length=100,
        unique=True,
        help_text="Gateway transaction reference",
    )
    gateway_channel = models.CharField(max_length=50, blank=True)

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=TransactionStatus.PENDING,
        choices=TransactionStatus.choices,
        db_index=True,
        protected=True,
    )
    paid_at = models.DateTimeField(null=True, blank=True)
    version = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["seller", "status"], name="txn_seller_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="transaction_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Transaction({self.payment_reference}, {self.status})"

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

    @transition(field=status, source=TransactionStatus.PENDING, target=TransactionStatus.COMPLETED)
    def mark_completed(self, channel: str | None = None):
        """Gateway confirmed the charge."""
        self.paid_at = timezone.now()
        if channel:
            self.gateway_channel = channel

    @transition(field=status, source=TransactionStatus.PENDING, target=TransactionStatus.FAILED)
    def mark_failed(self):
        pass

    @transition(field=status, source=TransactionStatus.COMPLETED, target=TransactionStatus.REFUNDING)
    def start_refund(self):
        pass

    @transition(
        field=status,
        source=[TransactionStatus.COMPLETED, TransactionStatus.REFUNDING],
        target=TransactionStatus.REFUNDED,
    )
    def mark_refunded(self):
        pass

    @property
    def is_paid(self) -> bool:
        return self.status != TransactionStatus.PENDING and self.status != TransactionStatus.FAILED
