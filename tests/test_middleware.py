"""
Tests for booking_engine.core.middleware

Covers:
- CorrelationIdMiddleware: correlation id propagation
- RequestLoggingMiddleware: request logging with masked idempotency keys
- SecurityHeadersMiddleware
- exception handlers: AppException, validation errors, unexpected errors
- the full stack through the application
"""
import json
import logging
from unittest.mock import AsyncMock

import pytest
from fastapi.exceptions import RequestValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse, JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from booking_engine.core.exceptions import AppException, ErrorCode, InsufficientFundsError
from booking_engine.core.middleware import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    _mask_idempotency_key,
    app_exception_handler,
    generic_exception_handler,
    request_validation_exception_handler,
)


# ============================================================================
# Helpers
# ============================================================================


def _hello(request: Request) -> PlainTextResponse:
    return PlainTextResponse("ok")


def _error(request: Request) -> PlainTextResponse:
    raise ValueError("test failure")


def _build_app(*, middlewares: list[tuple] | None = None) -> Starlette:
    app = Starlette(routes=[Route("/test", _hello), Route("/error", _error)])
    for mw_class, kwargs in middlewares or []:
        app.add_middleware(mw_class, **kwargs)
    return app


def _mock_request(path: str) -> AsyncMock:
    request = AsyncMock(spec=Request)
    request.url.path = path
    return request


# ============================================================================
# Idempotency key masking
# ============================================================================


class TestMaskIdempotencyKey:

    @pytest.mark.unit
    def test_keeps_last_four(self) -> None:
        assert _mask_idempotency_key("order-2024-000731") == "****0731"

    @pytest.mark.unit
    def test_short_key_fully_masked(self) -> None:
        assert _mask_idempotency_key("abc") == "****"

    @pytest.mark.unit
    def test_missing_key(self) -> None:
        assert _mask_idempotency_key(None) is None
        assert _mask_idempotency_key("") is None


# ============================================================================
# CorrelationIdMiddleware
# ============================================================================


class TestCorrelationIdMiddleware:

    @pytest.mark.unit
    def test_generates_correlation_id_when_missing(self) -> None:
        app = _build_app(middlewares=[(CorrelationIdMiddleware, {})])
        with TestClient(app) as client:
            response = client.get("/test")
            assert response.status_code == 200
            assert len(response.headers["x-correlation-id"]) == 8

    @pytest.mark.unit
    def test_preserves_existing_correlation_id(self) -> None:
        app = _build_app(middlewares=[(CorrelationIdMiddleware, {})])
        with TestClient(app) as client:
            response = client.get("/test", headers={"X-Correlation-ID": "upstream-id"})
            assert response.headers["x-correlation-id"] == "upstream-id"

    @pytest.mark.unit
    def test_correlation_id_unique_per_request(self) -> None:
        app = _build_app(middlewares=[(CorrelationIdMiddleware, {})])
        with TestClient(app) as client:
            first = client.get("/test").headers["x-correlation-id"]
            second = client.get("/test").headers["x-correlation-id"]
            assert first != second


# ============================================================================
# RequestLoggingMiddleware
# ============================================================================


class TestRequestLoggingMiddleware:

    @pytest.mark.unit
    def test_idempotency_key_is_masked_in_logs(self, caplog) -> None:
        app = _build_app(middlewares=[(RequestLoggingMiddleware, {})])
        with caplog.at_level(logging.INFO, logger="booking_engine.core.middleware"):
            with TestClient(app) as client:
                client.get("/test", headers={"Idempotency-Key": "order-2024-000731"})

        started = next(r for r in caplog.records if r.getMessage().startswith("Request started"))
        assert started.extra_data["idempotency_key"] == "****0731"
        assert "order-2024-000731" not in json.dumps(started.extra_data)

    @pytest.mark.unit
    def test_exception_in_handler_reraised(self) -> None:
        app = _build_app(middlewares=[(RequestLoggingMiddleware, {})])
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/error")
            assert response.status_code == 500


# ============================================================================
# Exception handlers
# ============================================================================


class TestAppExceptionHandler:

    @pytest.mark.asyncio
    async def test_handles_app_exception(self) -> None:
        exc = InsufficientFundsError(wallet_id=3, current_balance=50, required_amount=200, shipment_id=9)

        response = await app_exception_handler(_mock_request("/api/shipments"), exc)

        assert isinstance(response, JSONResponse)
        assert response.status_code == 402
        assert "x-correlation-id" in response.headers
        body = json.loads(response.body)
        assert body["error"]["code"] == ErrorCode.INSUFFICIENT_FUNDS.value
        assert body["error"]["details"]["shortfall"] == 150
        assert body["error"]["details"]["shipment_id"] == 9

    @pytest.mark.asyncio
    async def test_plain_app_exception_defaults_to_500(self) -> None:
        exc = AppException(message="boom")

        response = await app_exception_handler(_mock_request("/api/x"), exc)

        assert response.status_code == 500
        assert json.loads(response.body)["error"]["code"] == "ERR_1000"

    @pytest.mark.asyncio
    async def test_validation_errors_become_400(self) -> None:
        exc = RequestValidationError([
            {"loc": ("body", "box_count"), "msg": "Input should be greater than or equal to 1", "type": "greater_than_equal"},
        ])

        response = await request_validation_exception_handler(_mock_request("/api/shipments"), exc)

        assert response.status_code == 400
        body = json.loads(response.body)
        assert body["error"]["code"] == "ERR_1001"
        assert body["error"]["details"]["field"] == "body.box_count"
        assert body["error"]["details"]["errors"][0]["type"] == "greater_than_equal"


class TestGenericExceptionHandler:

    @pytest.mark.asyncio
    async def test_handles_unexpected_exception(self) -> None:
        response = await generic_exception_handler(_mock_request("/api/x"), RuntimeError("unexpected"))

        assert isinstance(response, JSONResponse)
        assert response.status_code == 500
        assert "x-correlation-id" in response.headers

    @pytest.mark.asyncio
    async def test_does_not_leak_internal_details(self) -> None:
        exc = RuntimeError("database connection failed on host 10.0.0.1")

        response = await generic_exception_handler(_mock_request("/api/x"), exc)

        body = response.body.decode()
        assert "10.0.0.1" not in body
        assert "database connection" not in body
        assert "ERR_1000" in body


# ============================================================================
# SecurityHeadersMiddleware
# ============================================================================


class TestSecurityHeadersMiddleware:

    @pytest.mark.unit
    def test_nosniff_on_all_responses(self) -> None:
        app = _build_app(middlewares=[(SecurityHeadersMiddleware, {"debug": False})])
        with TestClient(app) as client:
            assert client.get("/test").headers["x-content-type-options"] == "nosniff"

    @pytest.mark.unit
    def test_production_headers(self) -> None:
        app = _build_app(middlewares=[(SecurityHeadersMiddleware, {"debug": False})])
        with TestClient(app) as client:
            response = client.get("/test")
            assert response.headers["content-security-policy"] == "upgrade-insecure-requests"
            assert "includeSubDomains" in response.headers["strict-transport-security"]

    @pytest.mark.unit
    def test_no_csp_or_hsts_in_debug_mode(self) -> None:
        app = _build_app(middlewares=[(SecurityHeadersMiddleware, {"debug": True})])
        with TestClient(app) as client:
            response = client.get("/test")
            assert "content-security-policy" not in response.headers
            assert "strict-transport-security" not in response.headers
            assert response.headers["x-content-type-options"] == "nosniff"


# ============================================================================
# Full stack
# ============================================================================


class TestFullStack:

    @pytest.mark.asyncio
    async def test_health_has_stack_headers(self, test_client) -> None:
        response = await test_client.get("/health")

        assert response.status_code == 200
        assert "x-correlation-id" in response.headers
        assert response.headers.get("x-content-type-options") == "nosniff"

    @pytest.mark.asyncio
    async def test_error_responses_carry_correlation_id(self, test_client) -> None:
        response = await test_client.get("/api/shipments/12345", headers={"X-Correlation-ID": "trace-77"})

        assert response.status_code == 404
        assert response.headers["x-correlation-id"] == "trace-77"
