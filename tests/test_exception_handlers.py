"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, headers and no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ratewarden.core.config import settings
from ratewarden.core.errors import (
    AccessBlockedError,
    AppError,
    AuthenticationAppError,
    CaptchaRequiredError,
    ConfigurationAppError,
    RateLimitExceededError,
    StoreUnavailableError,
    ValidationAppError,
)
from ratewarden.core.exception_handlers import general_exception_handler, setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers)


def _raise_on(app: FastAPI, path: str, exc: Exception) -> None:
    @app.get(path)
    async def endpoint():
        raise exc


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    @pytest.mark.parametrize(
        "exc,status_code",
        [
            (ValidationAppError(code="unknown_policy", message="x"), 400),
            (AuthenticationAppError(code="invalid_api_key", message="x"), 403),
            (CaptchaRequiredError(code="captcha_required", message="x"), 403),
            (RateLimitExceededError(code="rate_limit_exceeded", message="x"), 429),
            (AccessBlockedError(code="access_blocked", message="x"), 429),
            (StoreUnavailableError(code="store_unavailable", message="x"), 503),
            (ConfigurationAppError(code="policy_invalid_window", message="x"), 500),
        ],
    )
    def test_status_mapping(self, client, app_with_handlers, exc, status_code) -> None:
        _raise_on(app_with_handlers, "/boom", exc)

        response = client.get("/boom")

        assert response.status_code == status_code
        assert response.json()["error"]["code"] == exc.code

    def test_validation_error_includes_details(self, client, app_with_handlers) -> None:
        _raise_on(
            app_with_handlers,
            "/details",
            ValidationAppError(code="unknown_policy", message="Unknown", details={"policy": "NOPE"}),
        )

        data = client.get("/details").json()

        assert data["error"]["details"] == {"policy": "NOPE"}

    def test_rate_limit_error_sets_headers(self, client, app_with_handlers) -> None:
        _raise_on(
            app_with_handlers,
            "/limited",
            RateLimitExceededError(
                code="rate_limit_exceeded",
                message="Too many requests",
                details={"limit": 10, "remaining": 0, "reset_at": 1704068100, "retry_after": 42},
            ),
        )

        response = client.get("/limited")

        assert response.headers["Retry-After"] == "42"
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["X-RateLimit-Reset"] == "1704068100"

    def test_captcha_error_has_no_rate_limit_headers(self, client, app_with_handlers) -> None:
        _raise_on(
            app_with_handlers,
            "/captcha",
            CaptchaRequiredError(
                code="captcha_required", message="x", details={"requires_captcha": True}
            ),
        )

        response = client.get("/captcha")

        assert "Retry-After" not in response.headers
        assert response.json()["error"]["details"]["requires_captcha"] is True

    def test_headers_disabled_by_setting(self, client, app_with_handlers) -> None:
        _raise_on(
            app_with_handlers,
            "/quiet",
            AccessBlockedError(code="access_blocked", message="x", details={"retry_after": 60}),
        )

        with patch.object(settings.app, "rate_limit_include_headers", False):
            response = client.get("/quiet")

        assert response.status_code == 429
        assert "Retry-After" not in response.headers

    def test_error_response_format_is_consistent(self, client, app_with_handlers) -> None:
        _raise_on(app_with_handlers, "/format", ValidationAppError(code="test", message="test"))

        data = client.get("/format").json()

        assert set(data["error"]) >= {"code", "message", "request_id"}


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_general_exception_handler_logic(self) -> None:
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = RuntimeError("Unexpected error: redis://user:pw@cache:6379 refused")
        response = asyncio.run(general_exception_handler(request, exc))

        data = json.loads(bytes(response.body).decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        assert "redis://" not in data["error"]["message"]
        assert "request_id" in data["error"]

    def test_general_exception_handler_never_leaks_stack_trace(self) -> None:
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        response = asyncio.run(general_exception_handler(request, ValueError("details")))

        response_text = bytes(response.body).decode()
        assert "Traceback" not in response_text
        assert "ValueError" not in response_text


def test_setup_exception_handlers_registers_handlers(app_with_handlers: FastAPI) -> None:
    assert AppError in app_with_handlers.exception_handlers
    assert Exception in app_with_handlers.exception_handlers
