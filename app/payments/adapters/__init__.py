"""
Payment adapters for external services.

All payment gateway calls go through these adapters to ensure consistent
error handling, timeouts and observability. Services obtain the adapter
through get_gateway_adapter() so tests can substitute a mock.

Usage:
    from payments.adapters import get_gateway_adapter

    adapter = get_gateway_adapter()
    result = adapter.initiate_refund(
        transaction_reference=txn.payment_reference,
        amount_cents=hold.amount_cents,
        reason="Buyer rejected delivery",
    )
"""

from payments.adapters.paystack_adapter import (
    SIGNATURE_HEADER,
    Bank,
    ChargeInitResult,
    ChargeVerification,
    PaystackAdapter,
    RecipientResult,
    ReferenceGenerator,
    RefundResult,
    TransferResult,
    get_gateway_adapter,
    set_gateway_adapter,
)

__all__ = [
    "SIGNATURE_HEADER",
    "Bank",
    "ChargeInitResult",
    "ChargeVerification",
    "PaystackAdapter",
    "RecipientResult",
    "ReferenceGenerator",
    "RefundResult",
    "TransferResult",
    "get_gateway_adapter",
    "set_gateway_adapter",
]
