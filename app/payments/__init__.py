"""
Payments app: the escrow core of the marketplace.

This app handles:
- Checkout through the payment gateway (card, M-Pesa, bank transfer)
- Escrow holds: lock on payment, release to the seller, refund to the buyer
- Seller payouts with retry and balance compensation
- Gateway webhook ingestion (deduplicated, processed in Celery)
- Dispute resolution (refund, pay seller, or split)

Related apps:
    - marketplace: Seller balances, payment links and delivery records

Usage:
    from payments.services import CheckoutService, EscrowService

    session = CheckoutService.initiate_checkout(short_code, "buyer@example.com")
    EscrowService.release_escrow(hold_id, reason="buyer_confirmed")
"""
