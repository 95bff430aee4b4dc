"""
Tests for the Paystack webhook endpoint.

Celery runs eagerly in tests, so an accepted event is processed before the
response returns.
"""

import hashlib
import hmac
import json
from unittest.mock import patch

import pytest
from django.conf import settings
from django.urls import reverse

from payments.models import EscrowHold, WebhookEvent
from payments.state_machines import WebhookEventStatus

URL = reverse("payments:paystack_webhook")


def sign(body: bytes) -> str:
    return hmac.new(settings.PAYSTACK_SECRET_KEY.encode(), body, hashlib.sha512).hexdigest()


def post_webhook(client, payload, signature=None):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return client.post(
        URL,
        data=body,
        content_type="application/json",
        HTTP_X_PAYSTACK_SIGNATURE=sign(body) if signature is None else signature,
    )


def charge_success(txn, event_id=4099260516):
    return {
        "event": "charge.success",
        "data": {
            "id": event_id,
            "reference": txn.payment_reference,
            "amount": txn.amount_cents,
            "channel": "mobile_money",
        },
    }


@pytest.mark.django_db
class TestSignature:
    def test_invalid_signature_is_rejected(self, client, pending_transaction):
        response = post_webhook(client, charge_success(pending_transaction), signature="0" * 128)

        assert response.status_code == 401
        assert response.content == b"Invalid signature"
        assert not WebhookEvent.objects.exists()

    def test_missing_signature_is_rejected(self, client, pending_transaction):
        body = json.dumps(charge_success(pending_transaction)).encode()

        response = client.post(URL, data=body, content_type="application/json")

        assert response.status_code == 401
        assert not EscrowHold.objects.exists()

    def test_only_post_is_allowed(self, client):
        assert client.get(URL).status_code == 405


@pytest.mark.django_db
class TestIngestion:
    def test_charge_success_is_processed(self, client, pending_transaction):
        response = post_webhook(client, charge_success(pending_transaction))

        assert response.status_code == 200
        assert response.content == b"Accepted"
        stored = WebhookEvent.objects.get()
        assert stored.event_key == "charge.success:4099260516"
        assert stored.status == WebhookEventStatus.PROCESSED
        assert stored.retry_count == 1
        assert EscrowHold.objects.filter(transaction=pending_transaction).exists()

    def test_duplicate_delivery_is_applied_once(self, client, pending_transaction):
        post_webhook(client, charge_success(pending_transaction))

        response = post_webhook(client, charge_success(pending_transaction))

        assert response.status_code == 200
        assert response.content == b"Already processed"
        assert WebhookEvent.objects.count() == 1
        assert EscrowHold.objects.filter(transaction=pending_transaction).count() == 1

    def test_unknown_event_is_accepted(self, client):
        response = post_webhook(client, {"event": "subscription.create", "data": {"id": 77}})

        assert response.status_code == 200
        assert WebhookEvent.objects.get().status == WebhookEventStatus.PROCESSED

    @pytest.mark.parametrize("body", [b"not json", b"[1, 2, 3]"])
    def test_unreadable_body_is_acknowledged_without_state_change(self, client, body):
        response = post_webhook(client, body)

        assert response.status_code == 200
        assert not WebhookEvent.objects.exists()
        assert not EscrowHold.objects.exists()

    def test_queueing_failure_leaves_event_for_retry(self, client, pending_transaction):
        with patch("payments.tasks.process_webhook_event.delay", side_effect=ConnectionError("broker down")):
            response = post_webhook(client, charge_success(pending_transaction))

        assert response.status_code == 200
        stored = WebhookEvent.objects.get()
        assert stored.status == WebhookEventStatus.FAILED
        assert stored.error_message == "Queueing failed: ConnectionError"
