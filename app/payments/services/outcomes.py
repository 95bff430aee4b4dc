"""
Result types returned by the payment services.

Services wrap these in core.services.ServiceResult. EscrowOutcome.to_dict()
is also what a Dispute stores as its outcome snapshot, so re-resolving a
dispute can return the original result.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime

    from payments.models import Payout


def _str_or_none(value: uuid.UUID | None) -> str | None:
    return str(value) if value is not None else None


@dataclass
class EscrowOutcome:
    """
    What an escrow engine operation did.

    Attributes:
        action: locked, released, refunded or split
        transaction_id: Transaction the hold belongs to
        hold_id: Hold acted on (the root hold for a split)
        amount_cents: Amount moved by the operation
        message: Human-readable summary
        created: For lock_escrow, False when the hold already existed
        payout_id / payout_error / payout_error_code: Payout triggered by a release
        refund_id / refund_status / gateway_error: Refund recorded by a refund
        released_amount_cents / refunded_amount_cents: Portions of a split
    """

    action: str
    transaction_id: uuid.UUID
    hold_id: uuid.UUID
    amount_cents: int
    message: str = ""
    created: bool = True
    payout_id: uuid.UUID | None = None
    payout_error: str | None = None
    payout_error_code: str | None = None
    refund_id: uuid.UUID | None = None
    refund_status: str | None = None
    gateway_error: str | None = None
    released_amount_cents: int | None = None
    refunded_amount_cents: int | None = None
    sub_hold_ids: list[uuid.UUID] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "transaction_id": str(self.transaction_id),
            "hold_id": str(self.hold_id),
            "amount_cents": self.amount_cents,
            "message": self.message,
            "created": self.created,
            "payout_id": _str_or_none(self.payout_id),
            "payout_error": self.payout_error,
            "payout_error_code": self.payout_error_code,
            "refund_id": _str_or_none(self.refund_id),
            "refund_status": self.refund_status,
            "gateway_error": self.gateway_error,
            "released_amount_cents": self.released_amount_cents,
            "refunded_amount_cents": self.refunded_amount_cents,
            "sub_hold_ids": [str(hold_id) for hold_id in self.sub_hold_ids],
        }


@dataclass
class AutoReleaseOutcome:
    """
    Result of an auto-release eligibility check.

    Ineligibility is a routine outcome, so it is returned as a successful
    ServiceResult with released=False and the reason.
    """

    transaction_id: uuid.UUID
    released: bool
    reason: str
    escrow: EscrowOutcome | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": str(self.transaction_id),
            "released": self.released,
            "reason": self.reason,
            "escrow": self.escrow.to_dict() if self.escrow else None,
        }


@dataclass
class PayoutOutcome:
    """What a payout operation did to one Payout row."""

    payout_id: uuid.UUID
    hold_id: uuid.UUID
    seller_id: uuid.UUID
    amount_cents: int
    status: str
    transfer_reference: str
    transfer_code: str | None = None
    retry_count: int = 0
    created: bool = True
    message: str = ""

    @classmethod
    def from_payout(cls, payout: Payout, created: bool = True, message: str = "") -> PayoutOutcome:
        return cls(
            payout_id=payout.id,
            hold_id=payout.escrow_hold_id,
            seller_id=payout.seller_id,
            amount_cents=payout.amount_cents,
            status=payout.status,
            transfer_reference=payout.transfer_reference,
            transfer_code=payout.transfer_code,
            retry_count=payout.retry_count,
            created=created,
            message=message,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "payout_id": str(self.payout_id),
            "hold_id": str(self.hold_id),
            "seller_id": str(self.seller_id),
            "amount_cents": self.amount_cents,
            "status": self.status,
            "transfer_reference": self.transfer_reference,
            "transfer_code": self.transfer_code,
            "retry_count": self.retry_count,
            "created": self.created,
            "message": self.message,
        }


@dataclass
class PayoutHistory:
    payouts: list[Payout]
    page: int
    page_size: int
    total_count: int

    @property
    def has_next(self) -> bool:
        return self.page * self.page_size < self.total_count


@dataclass
class DisputeOutcome:
    """
    Result of resolve_dispute.

    already_resolved is True when the call was a replay and ``escrow`` is
    the snapshot stored when the resolution was first applied.
    """

    dispute_id: uuid.UUID
    resolution: str
    already_resolved: bool
    escrow: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "dispute_id": str(self.dispute_id),
            "resolution": self.resolution,
            "already_resolved": self.already_resolved,
            "escrow": self.escrow,
        }


@dataclass
class SellerSummary:
    """Dashboard view of a seller's money."""

    seller_id: uuid.UUID
    pending_escrow_cents: int
    available_cents: int
    total_paid_out_cents: int
    currency: str
    held_count: int
    pending_payout_count: int
    failed_payout_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "seller_id": str(self.seller_id),
            "pending_escrow_cents": self.pending_escrow_cents,
            "available_cents": self.available_cents,
            "total_paid_out_cents": self.total_paid_out_cents,
            "currency": self.currency,
            "held_count": self.held_count,
            "pending_payout_count": self.pending_payout_count,
            "failed_payout_count": self.failed_payout_count,
        }


@dataclass
class CheckoutSession:
    transaction_id: uuid.UUID
    reference: str
    checkout_url: str
    amount_cents: int
    currency: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": str(self.transaction_id),
            "reference": self.reference,
            "checkout_url": self.checkout_url,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
        }


@dataclass
class CheckoutStatus:
    """Where a checkout stands after the buyer returns from the gateway."""

    transaction_id: uuid.UUID
    reference: str
    status: str
    hold_id: uuid.UUID | None = None
    paid_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": str(self.transaction_id),
            "reference": self.reference,
            "status": self.status,
            "hold_id": _str_or_none(self.hold_id),
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }
