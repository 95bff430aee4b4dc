"""
Marketplace models.

Seller balances are embedded on the Seller row. They are never assigned in
application code: every change goes through payments.ledger.LedgerService,
which applies conditional F() updates under a row lock and journals them.

Usage:
    from marketplace.models import PaymentLink, Seller

    seller = Seller.objects.create(business_name="Duka", email="duka@example.com")
    link = PaymentLink.objects.create(
        seller=seller,
        item_name="Leather bag",
        price_cents=250000,  # 2,500.00 KES
    )
"""

from __future__ import annotations

import secrets

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


def generate_short_code() -> str:
    """Random URL-safe code for public payment links."""
    return secrets.token_urlsafe(6)


def generate_confirmation_code() -> str:
    """Code the buyer quotes to confirm delivery."""
    return secrets.token_hex(4).upper()


class LinkStatus(models.TextChoices):
    """
    Lifecycle of a payment link as seen by the seller.

    ACTIVE → PAID (escrow locked) → COMPLETED (escrow released)
    PAID → CANCELLED (buyer refunded)
    PAID → DISPUTED (dispute opened)
    """

    ACTIVE = "active", "Active"
    PAID = "paid", "Paid"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    DISPUTED = "disputed", "Disputed"


class Seller(UUIDPrimaryKeyMixin, BaseModel):
    """
    A merchant selling through payment links.

    Balance fields (minor units):
        pending_escrow_balance_cents: sum of this seller's holds in HELD
        available_balance_cents: released funds not yet reserved by a payout
        total_paid_out_cents: funds confirmed transferred by the gateway
    """

    business_name = models.CharField(max_length=255)
    email = models.EmailField(unique=True)
    phone_number = models.CharField(max_length=20, blank=True)
    is_active = models.BooleanField(default=True)

    # ==========================================================================
    # Balances (owned by payments.ledger)
    # ==========================================================================

    pending_escrow_balance_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Funds held in escrow for this seller",
    )
    available_balance_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Released funds available for payout",
    )
    total_paid_out_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Funds transferred to the seller's account",
    )

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(pending_escrow_balance_cents__gte=0),
                name="seller_pending_escrow_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(available_balance_cents__gte=0),
                name="seller_available_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(total_paid_out_cents__gte=0),
                name="seller_paid_out_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return self.business_name


class PaymentLink(UUIDPrimaryKeyMixin, BaseModel):
    """A shareable checkout link for one item."""

    seller = models.ForeignKey(
        Seller,
        on_delete=models.PROTECT,
        related_name="payment_links",
    )
    short_code = models.CharField(
        max_length=16,
        unique=True,
        default=generate_short_code,
    )
    item_name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    price_cents = models.PositiveBigIntegerField(
        help_text="Item price in minor units",
    )
    currency = models.CharField(max_length=3, default="KES")
    status = models.CharField(
        max_length=20,
        choices=LinkStatus.choices,
        default=LinkStatus.ACTIVE,
        db_index=True,
    )

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price_cents__gt=0),
                name="payment_link_price_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.item_name} ({self.short_code})"


class ShippingProof(UUIDPrimaryKeyMixin, BaseModel):
    """
    Seller's proof that the item was handed to a courier.

    dispatched_at starts the auto-release clock.
    """

    transaction = models.OneToOneField(
        "payments.Transaction",
        on_delete=models.CASCADE,
        related_name="shipping_proof",
    )
    courier_name = models.CharField(max_length=255)
    courier_contact = models.CharField(max_length=50, blank=True)
    tracking_number = models.CharField(max_length=100, blank=True)
    dispatched_at = models.DateTimeField(db_index=True)

    def __str__(self) -> str:
        return f"ShippingProof({self.transaction_id}, {self.courier_name})"


class DeliveryConfirmation(UUIDPrimaryKeyMixin, BaseModel):
    """
    Buyer-side delivery outcome for a transaction.

    confirmed is set either by the buyer (confirmation code) or by the
    auto-release worker (auto_confirmed=True).
    """

    transaction = models.OneToOneField(
        "payments.Transaction",
        on_delete=models.CASCADE,
        related_name="delivery_confirmation",
    )
    confirmation_code = models.CharField(
        max_length=16,
        unique=True,
        default=generate_confirmation_code,
    )
    confirmed = models.BooleanField(default=False)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    auto_confirmed = models.BooleanField(default=False)
    rejection_reason = models.TextField(blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)

    def __str__(self) -> str:
        state = "confirmed" if self.confirmed else "awaiting"
        return f"DeliveryConfirmation({self.transaction_id}, {state})"
