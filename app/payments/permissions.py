"""
Permission classes for the payments API.

Operator endpoints move money (release, refund, dispute resolution, payout
retry) and are called by the back office, not by buyers or sellers. They
authenticate with a shared key in the X-Operator-Key header.
"""

from __future__ import annotations

import hmac
import logging
from typing import TYPE_CHECKING

from django.conf import settings
from rest_framework import permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView

logger = logging.getLogger(__name__)

OPERATOR_KEY_HEADER = "X-Operator-Key"


class HasOperatorKey(permissions.BasePermission):
    """
    Allows access only to requests carrying the configured operator key.

    With no key configured every request is denied.
    """

    message = "A valid operator key is required."

    def has_permission(self, request: Request, view: APIView) -> bool:
        expected = settings.ESCROW_OPERATOR_API_KEY
        provided = request.headers.get(OPERATOR_KEY_HEADER, "")
        if not expected or not provided:
            return False
        allowed = hmac.compare_digest(provided.encode(), expected.encode())
        if not allowed:
            logger.warning(
                "Operator endpoint called with an invalid key",
                extra={"path": request.path},
            )
        return allowed
