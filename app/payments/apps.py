"""
Payments app configuration.

This app holds the escrow core:
- Seller balance ledger
- Escrow holds, payouts, refunds and disputes
- Paystack gateway adapter
- Webhook ingestion and the background workers
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"

    def ready(self) -> None:
        # Registers the webhook handlers with the dispatcher
        from payments.webhooks import handlers  # noqa: F401
