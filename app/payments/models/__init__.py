"""
Payment domain models.

- Transaction: A buyer payment attempt against a payment link
- EscrowHold: Funds held for a transaction until release or refund
- Payout / PayoutSettings: Seller payout attempts and destinations
- Refund: Money returned to a buyer
- Dispute: Flagged disagreement blocking auto-release until resolved
- WebhookEvent: Gateway webhook deliveries for idempotent processing
- BalanceEntry: Journal of seller balance mutations (payments.ledger)
"""

from payments.ledger.models import BalanceEntry
from payments.models.dispute import Dispute
from payments.models.escrow_hold import EscrowHold
from payments.models.payout import Payout, PayoutSettings
from payments.models.refund import Refund
from payments.models.transaction import Transaction
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "BalanceEntry",
    "Dispute",
    "EscrowHold",
    "Payout",
    "PayoutSettings",
    "Refund",
    "Transaction",
    "WebhookEvent",
]
