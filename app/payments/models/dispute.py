"""
Dispute model: a buyer, seller or system flag on a transaction.

While a dispute's resolution is NONE it blocks auto-release. Resolving it
records the resolution first and then applies the matching escrow action
exactly once; resolution_applied and outcome make re-resolution a no-op.
"""

from __future__ import annotations

from django.db import models
from django.db.models import F

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import DisputeInitiator, DisputeResolution


class Dispute(UUIDPrimaryKeyMixin, BaseModel):
    """
    Fields:
        transaction: Disputed transaction
        initiated_by: buyer, seller or system
        reason / description: What went wrong
        resolution: NONE while open, then the chosen outcome
        partial_refund_cents: Buyer's share for PARTIAL_REFUND
        resolution_applied: Escrow action for the resolution has completed
        outcome: Snapshot of the applied action, returned on re-resolution
    """

    transaction = models.ForeignKey(
        "payments.Transaction",
        on_delete=models.PROTECT,
        related_name="disputes",
    )
    initiated_by = models.CharField(max_length=10, choices=DisputeInitiator.choices)
    reason = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    resolution = models.CharField(
        max_length=20,
        choices=DisputeResolution.choices,
        default=DisputeResolution.NONE,
        db_index=True,
    )
    partial_refund_cents = models.PositiveBigIntegerField(null=True, blank=True)
    resolution_applied = models.BooleanField(default=False)
    outcome = models.JSONField(default=dict, blank=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    resolved_by = models.CharField(max_length=255, blank=True)
    admin_notes = models.TextField(blank=True)

    version = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["transaction"],
                condition=models.Q(resolution="none"),
                name="dispute_one_open_per_transaction",
            ),
        ]

    def __str__(self) -> str:
        return f"Dispute({self.id}, {self.resolution})"

    def save(self, *args, **kwargs):
        """Save with version auto-increment for optimistic locking."""
        is_update = self.pk and not self._state.adding
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    @property
    def is_open(self) -> bool:
        return self.resolution == DisputeResolution.NONE
