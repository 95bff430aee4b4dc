"""
Pytest fixtures shared by all payments test packages.

This module provides:
- Sellers, links and transactions in the states escrow tests start from
- A mocked gateway adapter installed for every test (no network calls)
- API clients with and without the operator key
- A no-op DistributedLock for the Celery workers

Usage:
    def test_release(held_escrow, gateway):
        result = EscrowService.release_escrow(held_escrow.id)
        gateway.initiate_transfer.assert_called_once()
"""

import itertools
from contextlib import nullcontext
from unittest.mock import MagicMock, patch

import pytest
from rest_framework.test import APIClient

from marketplace.tests.factories import PaymentLinkFactory, SellerFactory
from payments.adapters import (
    ChargeInitResult,
    ChargeVerification,
    PaystackAdapter,
    RecipientResult,
    RefundResult,
    TransferResult,
    set_gateway_adapter,
)
from payments.models import EscrowHold
from payments.permissions import OPERATOR_KEY_HEADER
from payments.state_machines import TransactionStatus
from payments.tests.factories import PayoutSettingsFactory, TransactionFactory

OPERATOR_KEY = "test-operator-key"


# =============================================================================
# Gateway
# =============================================================================


@pytest.fixture(autouse=True)
def gateway():
    """
    Install a mocked PaystackAdapter for the services.

    Every call succeeds by default. Override per test, e.g.:
        gateway.initiate_transfer.side_effect = GatewayTimeoutError("timeout")
    """
    counter = itertools.count(1)
    adapter = MagicMock(spec=PaystackAdapter)

    adapter.initialize_charge.side_effect = lambda **kw: ChargeInitResult(
        checkout_url=f"https://checkout.gateway.test/{kw['reference']}",
        reference=kw["reference"],
        access_code="acc_test",
    )
    adapter.verify_charge.side_effect = lambda reference: ChargeVerification(
        reference=reference,
        status="success",
        amount_cents=100000,
        currency="KES",
        channel="card",
    )
    adapter.initiate_transfer.side_effect = lambda **kw: TransferResult(
        transfer_code=f"TRF_test_{next(counter)}",
        reference=kw["reference"],
        status="pending",
        amount_cents=kw["amount_cents"],
    )
    adapter.initiate_refund.side_effect = lambda **kw: RefundResult(
        refund_reference=f"{9000000 + next(counter)}",
        status="pending",
        amount_cents=kw["amount_cents"],
        transaction_reference=kw["transaction_reference"],
    )
    adapter.create_transfer_recipient.side_effect = lambda **kw: RecipientResult(
        recipient_code=f"RCP_test_{next(counter)}",
        name=kw["name"],
        account_number=kw["account_number"],
        bank_code=kw["bank_code"],
    )
    adapter.list_banks.return_value = []

    set_gateway_adapter(adapter)
    yield adapter
    set_gateway_adapter(None)


# =============================================================================
# Marketplace Fixtures
# =============================================================================


@pytest.fixture
def seller(db):
    return SellerFactory()


@pytest.fixture
def link(db, seller):
    """Active link for 1,000.00 KES."""
    return PaymentLinkFactory(seller=seller, price_cents=100000)


@pytest.fixture
def payout_settings(db, seller):
    """Verified M-Pesa payout destination for the seller."""
    return PayoutSettingsFactory(seller=seller)


# =============================================================================
# Transaction / Escrow Fixtures
# =============================================================================


@pytest.fixture
def pending_transaction(db, link):
    return TransactionFactory(link=link)


@pytest.fixture
def paid_transaction(db, link):
    """Transaction the gateway confirmed; escrow not locked yet."""
    return TransactionFactory(link=link, status=TransactionStatus.COMPLETED)


@pytest.fixture
def held_escrow(db, paid_transaction):
    """
    HELD root hold for paid_transaction, locked through the escrow engine.

    The seller's pending balance carries the hold's amount.
    """
    from payments.services import EscrowService

    result = EscrowService.lock_escrow(paid_transaction.id)
    assert result.success, result.error
    return EscrowHold.objects.get(id=result.data.hold_id)


@pytest.fixture
def dispatched_escrow(db, held_escrow):
    """HELD hold whose seller has recorded dispatch (auto-release clock running)."""
    from marketplace.services import DeliveryService

    result = DeliveryService.record_dispatch(
        held_escrow.transaction_id,
        courier_name="G4S",
        tracking_number="G4S-0001",
    )
    assert result.success, result.error
    return held_escrow


# =============================================================================
# API Clients
# =============================================================================


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def operator_client():
    """Client sending the configured operator key."""
    client = APIClient()
    client.credentials(**{f"HTTP_{OPERATOR_KEY_HEADER.upper().replace('-', '_')}": OPERATOR_KEY})
    return client


# =============================================================================
# Worker Fixtures
# =============================================================================


@pytest.fixture
def no_distributed_lock():
    """Replace the Redis lock used by the workers with a no-op context manager."""
    with (
        patch("payments.workers.auto_release.DistributedLock", return_value=nullcontext()) as auto_lock,
        patch("payments.workers.payout_executor.DistributedLock", return_value=nullcontext()) as payout_lock,
    ):
        yield MagicMock(auto_release=auto_lock, payout_executor=payout_lock)
