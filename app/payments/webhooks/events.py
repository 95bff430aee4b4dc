"""
Gateway event kinds understood by webhook ingestion.

Event names are matched against a closed enum rather than compared as raw
strings, so a misspelled name fails at import time instead of silently
never matching. Names the gateway may add later parse to None and are
acknowledged without processing.
"""

from __future__ import annotations

import hashlib
from enum import Enum


class GatewayEventType(str, Enum):
    CHARGE_SUCCESS = "charge.success"
    TRANSFER_SUCCESS = "transfer.success"
    TRANSFER_FAILED = "transfer.failed"
    TRANSFER_REVERSED = "transfer.reversed"
    REFUND_PENDING = "refund.pending"
    REFUND_PROCESSING = "refund.processing"
    REFUND_NEEDS_ATTENTION = "refund.needs-attention"
    REFUND_FAILED = "refund.failed"
    REFUND_PROCESSED = "refund.processed"

    @classmethod
    def parse(cls, name: str | None) -> GatewayEventType | None:
        """Return the event kind for a gateway event name, or None if unknown."""
        try:
            return cls(name)
        except ValueError:
            return None

    @property
    def is_refund_event(self) -> bool:
        return self.value.startswith("refund.")


def build_event_key(payload: dict, raw_body: bytes) -> str:
    """
    Idempotency key for a webhook delivery.

    Redeliveries of one event carry the same data id, so "{event}:{data.id}"
    collapses them. Payloads without an id fall back to a hash of the body.
    """
    event = payload.get("event") or "unknown"
    data = payload.get("data")
    object_id = data.get("id") if isinstance(data, dict) else None
    if object_id not in (None, ""):
        return f"{event}:{object_id}"
    return f"{event}:sha256:{hashlib.sha256(raw_body).hexdigest()}"
