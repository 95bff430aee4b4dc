"""
Pytest fixtures for Paystack adapter tests.

The adapter talks to an httpx.MockTransport instead of the network. Tests
register canned responses per path and inspect the requests that were made.

Usage:
    def test_verify(paystack):
        paystack.respond("/transaction/verify/esc_1", json={"status": True, "data": {...}})
        PaystackAdapter.verify_charge("esc_1")
        assert paystack.requests[0].method == "GET"
"""

import json

import httpx
import pytest

from payments.adapters import PaystackAdapter


class FakePaystack:
    """Canned responses keyed by request path."""

    def __init__(self):
        self.routes: dict[str, httpx.Response | Exception] = {}
        self.requests: list[httpx.Request] = []

    def respond(self, path: str, status_code: int = 200, json=None, content: bytes | None = None):
        if content is not None:
            self.routes[path] = httpx.Response(status_code, content=content)
        else:
            self.routes[path] = httpx.Response(status_code, json=json)

    def fail(self, path: str, exc: Exception):
        self.routes[path] = exc

    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"status": False, "message": "Route not mocked"})
        if isinstance(route, Exception):
            raise route
        return route


@pytest.fixture
def paystack():
    fake = FakePaystack()
    PaystackAdapter.transport = httpx.MockTransport(fake.handler)
    yield fake
    PaystackAdapter.transport = None
