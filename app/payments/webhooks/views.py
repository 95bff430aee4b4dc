"""
Webhook endpoint view for Paystack.

The view:
1. Verifies the x-paystack-signature header (HMAC-SHA512 of the raw body)
2. Creates/retrieves the WebhookEvent record (idempotent by event key)
3. Queues the event for async processing
4. Returns 200 immediately

A bad or missing signature is the only rejection; it changes no state.

Usage:
    # In urls.py
    from payments.webhooks.views import paystack_webhook

    urlpatterns = [
        path("webhooks/paystack/", paystack_webhook, name="paystack_webhook"),
    ]
"""

from __future__ import annotations

import json
import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.adapters import SIGNATURE_HEADER, PaystackAdapter
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus
from payments.webhooks.events import build_event_key

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def paystack_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and queue Paystack webhook events.

    Returns:
        HttpResponse with status:
        - 200: Event accepted (new, duplicate, or of an unknown kind), or a
          body that is not a JSON object, acknowledged and dropped
        - 401: Missing or invalid signature
    """
    payload = request.body
    signature = request.headers.get(SIGNATURE_HEADER, "")

    # Step 1: Verify signature
    if not PaystackAdapter.verify_webhook_signature(payload, signature):
        logger.warning(
            "Webhook signature verification failed",
            extra={"has_signature": bool(signature), "remote_addr": request.META.get("REMOTE_ADDR")},
        )
        return HttpResponse("Invalid signature", status=401)

    # A signed body we cannot read will not parse on redelivery either
    try:
        event_data = json.loads(payload)
    except (ValueError, UnicodeDecodeError):
        event_data = None

    if not isinstance(event_data, dict):
        logger.warning(
            "Webhook body is not a JSON object, acknowledged without processing",
            extra={"body_length": len(payload), "body_prefix": payload[:64].decode("utf-8", "replace")},
        )
        return HttpResponse("Ignored", status=200)

    event_type = str(event_data.get("event") or "unknown")
    event_key = build_event_key(event_data, payload)

    logger.info(
        f"Received Paystack webhook: {event_type}",
        extra={"event_key": event_key, "event_type": event_type},
    )

    # Step 2: Create/get WebhookEvent (idempotent)
    webhook_event, created = WebhookEvent.objects.get_or_create(
        event_key=event_key,
        defaults={
            "event_type": event_type,
            "payload": event_data,
            "status": WebhookEventStatus.PENDING,
        },
    )

    # Step 3: If already processed, return success
    if not created:
        if webhook_event.is_processed:
            logger.info(
                "Webhook already processed, returning success",
                extra={"event_key": event_key},
            )
            return HttpResponse("Already processed", status=200)

        logger.info(
            f"Webhook already exists with status: {webhook_event.status}",
            extra={"event_key": event_key},
        )

    # Step 4: Queue for async processing
    try:
        from payments.tasks import process_webhook_event

        process_webhook_event.delay(str(webhook_event.id))
        logger.info(
            "Webhook queued for processing",
            extra={"event_key": event_key, "webhook_event_id": str(webhook_event.id)},
        )
    except Exception as e:
        # The stored event is picked up by retry_failed_webhooks
        webhook_event.mark_failed(f"Queueing failed: {type(e).__name__}")
        webhook_event.save(update_fields=["status", "error_message", "updated_at"])
        logger.error(
            f"Failed to queue webhook: {type(e).__name__}",
            extra={"event_key": event_key},
            exc_info=True,
        )

    return HttpResponse("Accepted", status=200)
