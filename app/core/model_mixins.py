"""
Reusable abstract model mixins.

Mixins:
    UUIDPrimaryKeyMixin: UUID primary key instead of an auto-increment integer
"""

from __future__ import annotations

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use a UUID as primary key.

    Ids of money-carrying records (transactions, holds, payouts) end up in
    gateway references and URLs, so they must not be guessable or reveal
    record counts.

    Usage:
        class Payout(UUIDPrimaryKeyMixin, BaseModel):
            amount_cents = models.PositiveBigIntegerField()
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True
