"""
Celery tasks for payment processing.

This module provides async tasks for:
- Processing Paystack webhook events
- Retrying failed webhook events
- Resetting webhook events stuck in processing

The escrow auto-release and payout retry tasks live in payments.workers and
are re-exported here so Celery autodiscovery registers them.

Usage:
    from payments.tasks import process_webhook_event

    # Queue a webhook for async processing
    process_webhook_event.delay(str(webhook_event.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.db import transaction
from django.utils import timezone

from payments.models import WebhookEvent
from payments.models.webhook_event import MAX_PROCESSING_ATTEMPTS
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 30
RETRY_BATCH_SIZE = 100


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_PROCESSING_ATTEMPTS},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a Paystack webhook event asynchronously.

    This task:
    1. Locks the WebhookEvent row
    2. Skips it if already processed, or claimed by another worker
    3. Marks it as processing and releases the lock
    4. Dispatches to the handler for its event type
    5. Marks as processed or failed

    Handlers manage their own database transactions because some of them
    call the gateway, which must never happen inside one.

    Raises:
        Exception: Re-raised to trigger Celery retry mechanism
    """
    # Import here to avoid circular imports
    from payments.webhooks.handlers import dispatch_webhook

    webhook_event_id = UUID(str(webhook_event_id))

    # Claim the event under a row lock so redelivered copies never dispatch together
    with transaction.atomic():
        webhook_event = WebhookEvent.objects.select_for_update().filter(id=webhook_event_id).first()
        if webhook_event is None:
            logger.error(
                "WebhookEvent not found",
                extra={"webhook_event_id": str(webhook_event_id)},
            )
            return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

        if webhook_event.is_processed:
            logger.info(
                "WebhookEvent already processed, skipping",
                extra={"webhook_event_id": str(webhook_event_id), "event_key": webhook_event.event_key},
            )
            return {"status": "already_processed", "webhook_event_id": str(webhook_event_id)}

        if webhook_event.status == WebhookEventStatus.PROCESSING:
            # cleanup_stuck_webhooks resets it if that worker died
            logger.info(
                "WebhookEvent is being processed by another worker, skipping",
                extra={"webhook_event_id": str(webhook_event_id), "event_key": webhook_event.event_key},
            )
            return {"status": "in_progress", "webhook_event_id": str(webhook_event_id)}

        webhook_event.mark_processing()
        webhook_event.save()

    logger.info(
        f"Dispatching webhook: {webhook_event.event_type}",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "event_key": webhook_event.event_key,
            "retry_count": webhook_event.retry_count,
        },
    )

    try:
        result = dispatch_webhook(webhook_event)
    except Exception as e:
        webhook_event.mark_failed(f"{type(e).__name__}: {e}")
        webhook_event.save()
        logger.exception(
            "Webhook processing failed with exception",
            extra={"webhook_event_id": str(webhook_event_id), "event_key": webhook_event.event_key},
        )
        raise

    if result.success:
        webhook_event.mark_processed()
        webhook_event.save()
        logger.info(
            "Webhook processed successfully",
            extra={"webhook_event_id": str(webhook_event_id), "event_key": webhook_event.event_key},
        )
        return {
            "status": "processed",
            "webhook_event_id": str(webhook_event_id),
            "event_key": webhook_event.event_key,
        }

    error_msg = result.error or "Handler returned failure"
    webhook_event.mark_failed(error_msg)
    webhook_event.save()
    logger.warning(
        f"Webhook handler failed: {error_msg}",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "event_key": webhook_event.event_key,
            "error_code": result.error_code,
        },
    )
    return {
        "status": "handler_failed",
        "webhook_event_id": str(webhook_event_id),
        "error": error_msg,
        "error_code": result.error_code,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to re-queue failed webhook events.

    Events that already used all their attempts stay FAILED for an operator.

    Returns:
        Dict with count of webhooks queued for retry
    """
    failed_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=MAX_PROCESSING_ATTEMPTS,
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in failed_webhooks:
        try:
            process_webhook_event.delay(str(webhook.id))
            queued_count += 1
            logger.info(
                "Queued failed webhook for retry",
                extra={
                    "webhook_event_id": str(webhook.id),
                    "event_key": webhook.event_key,
                    "retry_count": webhook.retry_count,
                },
            )
        except Exception as e:
            logger.error(
                f"Failed to queue webhook for retry: {e}",
                extra={"webhook_event_id": str(webhook.id)},
            )

    if queued_count:
        logger.info(
            f"Queued {queued_count} failed webhooks for retry",
            extra={"queued_count": queued_count},
        )
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Periodic task to reset webhooks stuck in PROCESSING.

    A worker that crashed mid-event leaves it in PROCESSING; resetting it to
    FAILED lets retry_failed_webhooks pick it up again.

    Returns:
        Dict with count of webhooks reset
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)
    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        stuck_since = webhook.updated_at
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save()
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "event_key": webhook.event_key,
                "stuck_since": stuck_since.isoformat(),
            },
        )

    return {"reset_count": reset_count}


# =============================================================================
# Re-exported Worker Tasks
# =============================================================================

from payments.workers import (  # noqa: E402, F401
    auto_release_transaction,
    process_stale_escrows,
    retry_failed_payouts,
    retry_single_payout,
)
