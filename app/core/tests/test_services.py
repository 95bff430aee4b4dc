"""
Tests for ServiceResult and BaseService.
"""

import logging

from core.exceptions import ConflictError
from core.services import BaseService, ServiceResult


class TestServiceResult:
    def test_success(self):
        result = ServiceResult.success({"hold_id": "abc"})

        assert result.success
        assert bool(result) is True
        assert result.data == {"hold_id": "abc"}
        assert result.error is None
        assert result.to_response() == {"success": True, "data": {"hold_id": "abc"}}

    def test_failure_with_field_errors(self):
        result = ServiceResult.failure(
            "Invalid request",
            error_code="VALIDATION_ERROR",
            errors={"buyer_phone": ["Enter a valid Kenyan phone number."]},
        )

        assert not result
        assert result.to_response() == {
            "success": False,
            "error": "Invalid request",
            "error_code": "VALIDATION_ERROR",
            "errors": {"buyer_phone": ["Enter a valid Kenyan phone number."]},
        }

    def test_failure_can_carry_data(self):
        result = ServiceResult.failure("Transfer failed: timeout", error_code="TRANSFER_FAILED", data=42)

        assert result.data == 42
        assert "data" not in result.to_response()

    def test_failure_without_code(self):
        assert ServiceResult.failure("Boom").to_response() == {"success": False, "error": "Boom"}

    def test_from_application_error(self):
        exc = ConflictError("Hold already released", error_code="ALREADY_RELEASED")

        result = ServiceResult.from_exception(exc)

        assert result.error == "Hold already released"
        assert result.error_code == "ALREADY_RELEASED"

    def test_from_plain_exception(self):
        result = ServiceResult.from_exception(KeyError("seller"))

        assert result.error_code == "KEYERROR"

    def test_explicit_code_wins(self):
        exc = ConflictError("Balance moved", error_code="CONFLICT")

        assert ServiceResult.from_exception(exc, error_code="INSUFFICIENT_BALANCE").error_code == "INSUFFICIENT_BALANCE"


class TestBaseService:
    def test_logger_named_after_subclass(self):
        class LedgerProbe(BaseService):
            pass

        logger = LedgerProbe.get_logger()

        assert isinstance(logger, logging.Logger)
        assert logger.name == f"{__name__}.LedgerProbe"
