"""
Data types for ledger operations.

Types:
    SellerBalances: Snapshot of a seller's three balance counters
    LedgerReference: Business record a mutation is attributed to
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class SellerBalances:
    """
    Snapshot of a seller's balances in minor units.

    Example:
        balances = LedgerService.get_balances(seller.id)
        balances.pending_escrow_cents  # 100000 == 1,000.00 KES
    """

    pending_escrow_cents: int = 0
    available_cents: int = 0
    total_paid_out_cents: int = 0
    currency: str = "KES"

    @property
    def total_cents(self) -> int:
        return self.pending_escrow_cents + self.available_cents + self.total_paid_out_cents

    def to_dict(self) -> dict:
        return {**asdict(self), "total_cents": self.total_cents}


@dataclass(frozen=True)
class LedgerReference:
    """Record that caused a mutation, e.g. LedgerReference("escrow_hold", hold.id)."""

    type: str
    id: uuid.UUID
