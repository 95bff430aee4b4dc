"""
Refund model: money returned to a buyer through the gateway.

One row per refund request. The ledger side of a refund (pending balance
decrement, hold and transaction status) is settled by the escrow engine
before and regardless of the gateway call; this row tracks the gateway
side and keeps an append-only log of lifecycle events for audit.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import DisputeInitiator, RefundStatus


class Refund(UUIDPrimaryKeyMixin, BaseModel):
    """
    Fields:
        transaction: Transaction being refunded
        escrow_hold: Hold (or refund sub-hold) whose amount is returned
        amount_cents: Refunded amount in minor units
        refund_reference: Gateway refund id, once the gateway accepted it
        status: Gateway-side status, updated by refund.* webhooks
        logs: Append-only list of {"event", "data", "timestamp"} entries
    """

    transaction = models.ForeignKey(
        "payments.Transaction",
        on_delete=models.PROTECT,
        related_name="refunds",
    )
    escrow_hold = models.ForeignKey(
        "payments.EscrowHold",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="refunds",
    )

    amount_cents = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="KES")
    reason = models.TextField(blank=True)
    initiated_by = models.CharField(
        max_length=10,
        choices=DisputeInitiator.choices,
        default=DisputeInitiator.SYSTEM,
    )

    status = models.CharField(
        max_length=20,
        choices=RefundStatus.choices,
        default=RefundStatus.PENDING,
        db_index=True,
    )
    refund_reference = models.CharField(max_length=100, null=True, blank=True, db_index=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    logs = models.JSONField(default=list, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="refund_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Refund({self.id}, {self.status}, {self.amount_cents})"

    def append_log(self, event: str, data: dict | None = None) -> None:
        """
        Record a lifecycle event.

        Note: Does not save - caller must save after calling.
        """
        self.logs = [
            *self.logs,
            {
                "event": event,
                "data": data or {},
                "timestamp": timezone.now().isoformat(),
            },
        ]

    @property
    def is_settled(self) -> bool:
        return self.status == RefundStatus.PROCESSED
