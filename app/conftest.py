"""
Project-wide pytest configuration.

pytest-django loads config.settings (see pyproject.toml); this module applies
test-only overrides and assigns unit/integration/e2e markers by filename.
App-specific fixtures live in each app's tests/conftest.py.
"""

import os

import django
import pytest

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Apply test-only settings overrides."""
    django.setup()

    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Never talk to a real gateway from the test suite
    settings.PAYSTACK_SECRET_KEY = "sk_test_suite_secret"
    settings.PAYSTACK_BASE_URL = "https://gateway.test"
    settings.ESCROW_OPERATOR_API_KEY = "test-operator-key"


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full escrow journeys)
    - test_views.py, test_*_service.py, test_tasks.py, ... → integration
    - test_state_transitions.py, test_paystack_adapter.py, ... → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_handlers.py",
        "test_escrow_service.py",
        "test_payout_service.py",
        "test_dispute_service.py",
        "test_checkout_service.py",
        "test_auto_release.py",
        "test_payout_executor.py",
        "test_refund_service.py",
        "test_escrow_invariants.py",
    ]

    unit_patterns = [
        "test_paystack_adapter.py",
        "test_state_transitions.py",
        "test_locks.py",
        "test_events.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = os.path.basename(str(item.fspath))

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)
