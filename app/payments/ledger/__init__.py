"""
Seller balance ledger.

The Seller row carries three counters (pending escrow, available, paid
out). This package is their only writer: every change is an atomic,
idempotent, journaled mutation.

Usage:
    from payments.ledger import LedgerService

    LedgerService.move_pending_to_available(
        seller_id, amount_cents, idempotency_key=f"escrow_released:{hold.id}"
    )
"""

from .exceptions import InsufficientBalance, LedgerError, SellerNotFound
from .models import BalanceEntry, EntryType
from .services import LedgerService
from .types import LedgerReference, SellerBalances

__all__ = [
    # Models
    "BalanceEntry",
    "EntryType",
    # Service
    "LedgerService",
    # Types
    "LedgerReference",
    "SellerBalances",
    # Exceptions
    "InsufficientBalance",
    "LedgerError",
    "SellerNotFound",
]
