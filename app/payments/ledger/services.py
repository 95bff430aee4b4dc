"""
Ledger service: the only writer of seller balance counters.

Each public operation is one atomic mutation:

1. Lock the seller row (SELECT ... FOR UPDATE) so mutations for one
   seller serialize while different sellers never contend
2. Check the idempotency key; a replay returns the original entry
3. Apply the deltas as a conditional UPDATE with F() expressions,
   guarded so no counter can go below zero
4. Journal the mutation as a BalanceEntry

Usage:
    from payments.ledger.services import LedgerService
    from payments.ledger.types import LedgerReference

    LedgerService.credit_pending(
        seller_id=hold.seller_id,
        amount_cents=hold.amount_cents,
        idempotency_key=f"escrow_locked:{hold.id}",
        reference=LedgerReference("escrow_hold", hold.id),
    )
"""

from __future__ import annotations

import logging
import uuid

from django.db import models, transaction
from django.db.models import F, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from marketplace.models import Seller

from .exceptions import InsufficientBalance, LedgerError, SellerNotFound
from .models import BalanceEntry, EntryType
from .types import LedgerReference, SellerBalances

logger = logging.getLogger(__name__)

PENDING = "pending_escrow_balance_cents"
AVAILABLE = "available_balance_cents"
PAID_OUT = "total_paid_out_cents"


class LedgerService:
    """
    Atomic operations on seller balances.

    All methods are static - no instance state is maintained. Callers never
    assign balance fields themselves.
    """

    @staticmethod
    def credit_pending(
        seller_id: uuid.UUID,
        amount_cents: int,
        idempotency_key: str,
        reference: LedgerReference | None = None,
    ) -> BalanceEntry:
        """Buyer funds locked in escrow: pending += amount."""
        return LedgerService._apply(
            seller_id,
            EntryType.ESCROW_LOCKED,
            amount_cents,
            {PENDING: amount_cents},
            idempotency_key,
            reference,
        )

    @staticmethod
    def debit_pending(
        seller_id: uuid.UUID,
        amount_cents: int,
        idempotency_key: str,
        reference: LedgerReference | None = None,
    ) -> BalanceEntry:
        """Held funds returned to the buyer: pending -= amount."""
        return LedgerService._apply(
            seller_id,
            EntryType.ESCROW_REFUNDED,
            amount_cents,
            {PENDING: -amount_cents},
            idempotency_key,
            reference,
        )

    @staticmethod
    def move_pending_to_available(
        seller_id: uuid.UUID,
        amount_cents: int,
        idempotency_key: str,
        reference: LedgerReference | None = None,
    ) -> BalanceEntry:
        """Escrow released: pending -= amount, available += amount."""
        return LedgerService._apply(
            seller_id,
            EntryType.ESCROW_RELEASED,
            amount_cents,
            {PENDING: -amount_cents, AVAILABLE: amount_cents},
            idempotency_key,
            reference,
        )

    @staticmethod
    def reserve_available(
        seller_id: uuid.UUID,
        amount_cents: int,
        idempotency_key: str,
        reference: LedgerReference | None = None,
    ) -> BalanceEntry:
        """Payout initiated: available -= amount before the transfer call."""
        return LedgerService._apply(
            seller_id,
            EntryType.PAYOUT_RESERVED,
            amount_cents,
            {AVAILABLE: -amount_cents},
            idempotency_key,
            reference,
        )

    @staticmethod
    def restore_available(
        seller_id: uuid.UUID,
        amount_cents: int,
        idempotency_key: str,
        reference: LedgerReference | None = None,
    ) -> BalanceEntry:
        """Payout failed: give the reserved amount back, available += amount."""
        return LedgerService._apply(
            seller_id,
            EntryType.PAYOUT_RESTORED,
            amount_cents,
            {AVAILABLE: amount_cents},
            idempotency_key,
            reference,
        )

    @staticmethod
    def record_paid_out(
        seller_id: uuid.UUID,
        amount_cents: int,
        idempotency_key: str,
        reference: LedgerReference | None = None,
    ) -> BalanceEntry:
        """Transfer confirmed: paid_out += amount (available was reserved already)."""
        return LedgerService._apply(
            seller_id,
            EntryType.PAYOUT_COMPLETED,
            amount_cents,
            {PAID_OUT: amount_cents},
            idempotency_key,
            reference,
        )

    @staticmethod
    def _apply(
        seller_id: uuid.UUID,
        entry_type: str,
        amount_cents: int,
        deltas: dict[str, int],
        idempotency_key: str,
        reference: LedgerReference | None,
    ) -> BalanceEntry:
        """
        Apply signed deltas to a seller's counters and journal them.

        Raises:
            LedgerError: If the amount is not positive
            SellerNotFound: If the seller does not exist
            InsufficientBalance: If a decrement exceeds the counter
        """
        if amount_cents <= 0:
            raise LedgerError(
                f"Ledger amounts must be positive, got {amount_cents}",
                error_code="INVALID_AMOUNT",
                details={"amount_cents": amount_cents},
            )

        with transaction.atomic():
            seller = Seller.objects.select_for_update().filter(id=seller_id).first()
            if seller is None:
                raise SellerNotFound(
                    f"Seller {seller_id} not found",
                    details={"seller_id": str(seller_id)},
                )

            # Checked under the seller lock, so a concurrent replay waits
            # for the first mutation and then sees its entry
            existing = BalanceEntry.objects.filter(idempotency_key=idempotency_key).first()
            if existing is not None:
                logger.info(
                    "Ledger mutation already applied",
                    extra={
                        "seller_id": str(seller_id),
                        "idempotency_key": idempotency_key,
                        "entry_type": entry_type,
                    },
                )
                return existing

            guard = Q(id=seller_id)
            updates = {"updated_at": timezone.now()}
            for field, delta in deltas.items():
                if delta < 0:
                    guard &= Q(**{f"{field}__gte": -delta})
                updates[field] = F(field) + delta

            if Seller.objects.filter(guard).update(**updates) == 0:
                short_field = next(
                    field
                    for field, delta in deltas.items()
                    if delta < 0 and getattr(seller, field) < -delta
                )
                raise InsufficientBalance(
                    seller_id=seller_id,
                    balance=short_field,
                    required=-deltas[short_field],
                    available=getattr(seller, short_field),
                )

            entry = BalanceEntry.objects.create(
                seller_id=seller_id,
                entry_type=entry_type,
                amount_cents=amount_cents,
                pending_delta_cents=deltas.get(PENDING, 0),
                available_delta_cents=deltas.get(AVAILABLE, 0),
                paid_out_delta_cents=deltas.get(PAID_OUT, 0),
                idempotency_key=idempotency_key,
                reference_type=reference.type if reference else "",
                reference_id=reference.id if reference else None,
            )

        logger.info(
            f"Ledger {entry_type}: {amount_cents} for seller {seller_id}",
            extra={
                "seller_id": str(seller_id),
                "entry_type": entry_type,
                "amount_cents": amount_cents,
                "idempotency_key": idempotency_key,
            },
        )
        return entry

    @staticmethod
    def get_balances(seller_id: uuid.UUID) -> SellerBalances:
        """
        Current counters for a seller.

        Raises:
            SellerNotFound: If the seller does not exist
        """
        seller = Seller.objects.filter(id=seller_id).first()
        if seller is None:
            raise SellerNotFound(
                f"Seller {seller_id} not found",
                details={"seller_id": str(seller_id)},
            )
        return SellerBalances(
            pending_escrow_cents=seller.pending_escrow_balance_cents,
            available_cents=seller.available_balance_cents,
            total_paid_out_cents=seller.total_paid_out_cents,
        )

    @staticmethod
    def recompute_balances(seller_id: uuid.UUID) -> SellerBalances:
        """Rebuild a seller's counters from the journal."""
        totals = BalanceEntry.objects.filter(seller_id=seller_id).aggregate(
            pending=Coalesce(
                Sum("pending_delta_cents"), Value(0), output_field=models.BigIntegerField()
            ),
            available=Coalesce(
                Sum("available_delta_cents"), Value(0), output_field=models.BigIntegerField()
            ),
            paid_out=Coalesce(
                Sum("paid_out_delta_cents"), Value(0), output_field=models.BigIntegerField()
            ),
        )
        return SellerBalances(
            pending_escrow_cents=totals["pending"],
            available_cents=totals["available"],
            total_paid_out_cents=totals["paid_out"],
        )

    @staticmethod
    def verify_balances(seller_id: uuid.UUID) -> dict[str, dict[str, int]]:
        """
        Compare stored counters with the journal.

        Returns:
            Mismatched counters as {name: {"stored": x, "journal": y}};
            empty when the seller is consistent
        """
        stored = LedgerService.get_balances(seller_id)
        journal = LedgerService.recompute_balances(seller_id)
        mismatches = {}
        for name in ("pending_escrow_cents", "available_cents", "total_paid_out_cents"):
            if getattr(stored, name) != getattr(journal, name):
                mismatches[name] = {
                    "stored": getattr(stored, name),
                    "journal": getattr(journal, name),
                }
        if mismatches:
            logger.critical(
                f"Seller {seller_id} balances disagree with ledger journal",
                extra={"seller_id": str(seller_id), "mismatches": mismatches},
            )
        return mismatches

    @staticmethod
    def get_entries_for_seller(
        seller_id: uuid.UUID,
        limit: int = 100,
        offset: int = 0,
    ) -> list[BalanceEntry]:
        """Journal entries for a seller, newest first."""
        return list(
            BalanceEntry.objects.filter(seller_id=seller_id).order_by("-created_at")[
                offset : offset + limit
            ]
        )

    @staticmethod
    def get_entries_by_reference(
        reference_type: str,
        reference_id: uuid.UUID,
    ) -> list[BalanceEntry]:
        """All journal entries caused by one business record, oldest first."""
        return list(
            BalanceEntry.objects.filter(
                reference_type=reference_type,
                reference_id=reference_id,
            ).order_by("created_at")
        )
