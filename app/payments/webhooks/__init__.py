"""
Webhook handling for payment events from Paystack.

Webhooks are verified, stored idempotently, and processed asynchronously
via Celery tasks.

Usage:
    # In urls.py
    from payments.webhooks.views import paystack_webhook

    urlpatterns = [
        path("webhooks/paystack/", paystack_webhook, name="paystack_webhook"),
    ]
"""

from payments.webhooks.events import GatewayEventType, build_event_key
from payments.webhooks.handlers import dispatch_webhook, register_handler
from payments.webhooks.views import paystack_webhook

__all__ = [
    "GatewayEventType",
    "build_event_key",
    "dispatch_webhook",
    "paystack_webhook",
    "register_handler",
]
