"""
Marketplace app: sellers, payment links and delivery records.

These are the collaborators the escrow core consumes:
- Seller: carries the seller balance counters (written only by payments.ledger)
- PaymentLink: link status store, notified when escrow is locked/released/refunded
- ShippingProof: dispatch-proof store, supplies dispatched_at for auto-release
- DeliveryConfirmation: buyer confirmation store, consulted by auto-release
"""
