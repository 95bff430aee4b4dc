"""
Ledger-specific exceptions.

Exception Hierarchy:
    LedgerError (base)
    ├── SellerNotFound - Balance owner does not exist
    └── InsufficientBalance - A decrement would take a counter below zero
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    import uuid
    from typing import Any


class LedgerError(BaseApplicationError):
    """Base exception for all ledger operations."""

    default_error_code: str = "LEDGER_ERROR"


class SellerNotFound(LedgerError):
    default_error_code: str = "SELLER_NOT_FOUND"
    status_code: int = 404


class InsufficientBalance(LedgerError):
    """
    Raised when a counter cannot cover a decrement.

    Attributes:
        seller_id: Seller whose counter was short
        balance: Counter name, e.g. "available_balance_cents"
        required: Amount the operation needed
        available: Amount the counter held
    """

    default_error_code: str = "INSUFFICIENT_BALANCE"
    status_code: int = 409

    def __init__(
        self,
        seller_id: uuid.UUID,
        balance: str,
        required: int,
        available: int,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.seller_id = seller_id
        self.balance = balance
        self.required = required
        self.available = available

        full_details = {
            "seller_id": str(seller_id),
            "balance": balance,
            "required_cents": required,
            "available_cents": available,
        }
        if details:
            full_details.update(details)

        super().__init__(
            message=(
                f"Seller {seller_id} has insufficient {balance}: "
                f"required {required} cents, available {available} cents"
            ),
            error_code=error_code,
            details=full_details,
        )
