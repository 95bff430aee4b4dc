"""
Payout models: seller payout destinations and payout attempts.

A Payout is one attempt to transfer a released hold's amount to the
seller's bank account or M-Pesa wallet. Retries create new rows linked to
the attempt they replace (retry_of), so failed attempts stay as history.

Balance invariant:
    reserved on create      available_balance -= amount  (balance_reserved=True)
    restored on failure     available_balance += amount  (balance_reserved=False)
    re-reserved on retry    the new row reserves again
    paid out on success     total_paid_out += amount

Usage:
    from payments.models import Payout

    payout = Payout.objects.get(transfer_reference="payout_...")
    payout.mark_success(transfer_code="TRF_...")
    payout.save()
"""

from __future__ import annotations

from django.db import models
from django.db.models import F
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import PayoutAccountType, PayoutStatus


class PayoutSettings(UUIDPrimaryKeyMixin, BaseModel):
    """
    Where a seller's payouts go.

    recipient_code is issued by the gateway when the account is registered
    as a transfer recipient. Payouts are only initiated when is_verified.
    """

    seller = models.OneToOneField(
        "marketplace.Seller",
        on_delete=models.CASCADE,
        related_name="payout_settings",
    )
    account_type = models.CharField(
        max_length=10,
        choices=PayoutAccountType.choices,
    )
    account_name = models.CharField(max_length=255)
    account_number = models.CharField(
        max_length=50,
        help_text="Bank account number or M-Pesa phone number",
    )
    bank_code = models.CharField(max_length=20, blank=True)
    bank_name = models.CharField(max_length=255, blank=True)
    recipient_code = models.CharField(max_length=100, blank=True)
    is_verified = models.BooleanField(default=False)
    verified_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "Payout Settings"
        verbose_name_plural = "Payout Settings"

    def __str__(self) -> str:
        return f"PayoutSettings({self.seller_id}, {self.account_type})"

    @property
    def masked_account_number(self) -> str:
        return f"****{self.account_number[-4:]}"


class Payout(UUIDPrimaryKeyMixin, BaseModel):
    """
    One outbound transfer attempt for a released escrow hold.

    State Flow:
        PENDING → SUCCESS   (transfer.success webhook)
        PENDING → FAILED    (gateway rejected the call, or transfer.failed/reversed)
        FAILED → SUCCESS    (late transfer.success for an attempt marked failed)

    Fields:
        escrow_hold: Released hold being paid out
        transfer_reference: Our reference, deduplicated by the gateway
        transfer_code: Gateway's transfer code
        retry_count: 0 for the first attempt, n for the n-th retry
        retry_of: Attempt this row retries
        balance_reserved: Whether amount_cents is currently held out of
            the seller's available balance for this attempt
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    seller = models.ForeignKey(
        "marketplace.Seller",
        on_delete=models.PROTECT,
        related_name="payouts",
    )
    escrow_hold = models.ForeignKey(
        "payments.EscrowHold",
        on_delete=models.PROTECT,
        related_name="payouts",
    )
    retry_of = models.OneToOneField(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="retried_by",
        help_text="Failed attempt this payout retries",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="KES")

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PayoutStatus.PENDING,
        choices=PayoutStatus.choices,
        db_index=True,
        protected=True,
    )
    balance_reserved = models.BooleanField(default=False)

    # ==========================================================================
    # Gateway
    # ==========================================================================

    transfer_reference = models.CharField(max_length=100, unique=True)
    transfer_code = models.CharField(max_length=100, null=True, blank=True)
    retry_count = models.PositiveSmallIntegerField(default=0)

    # ==========================================================================
    # Outcome
    # ==========================================================================

    failure_reason = models.TextField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    version = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["seller", "status"], name="payout_seller_status_idx"),
            models.Index(fields=["status", "failed_at"], name="payout_status_failed_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="payout_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency}"
        return f"Payout({self.id}, {self.status}, {amount_display})"

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

    @transition(
        field=status,
        source=[PayoutStatus.PENDING, PayoutStatus.FAILED],
        target=PayoutStatus.SUCCESS,
    )
    def mark_success(self, transfer_code: str | None = None):
        """
        Gateway confirmed the transfer.

        FAILED is an allowed source because a transfer.success can arrive
        after we gave up on the attempt (timeout on our side).
        """
        self.completed_at = timezone.now()
        self.failure_reason = None
        if transfer_code:
            self.transfer_code = transfer_code

    @transition(field=status, source=PayoutStatus.PENDING, target=PayoutStatus.FAILED)
    def mark_failed(self, reason: str | None = None):
        self.failed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_pending(self) -> bool:
        return self.status == PayoutStatus.PENDING

    @property
    def has_successor(self) -> bool:
        return Payout.objects.filter(retry_of_id=self.id).exists()
