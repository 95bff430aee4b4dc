from payments.state_machines.states import (
    DisputeInitiator,
    DisputeResolution,
    EscrowHoldStatus,
    PaymentMethod,
    PayoutAccountType,
    PayoutStatus,
    RefundStatus,
    TransactionStatus,
    WebhookEventStatus,
)

__all__ = [
    "DisputeInitiator",
    "DisputeResolution",
    "EscrowHoldStatus",
    "PaymentMethod",
    "PayoutAccountType",
    "PayoutStatus",
    "RefundStatus",
    "TransactionStatus",
    "WebhookEventStatus",
]
