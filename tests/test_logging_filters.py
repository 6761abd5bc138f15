"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from ratewarden.core.logging import (
    JsonFormatter,
    SensitiveDataFilter,
    clear_request_id,
    set_request_id,
    short_digest,
)


@pytest.fixture
def capture():
    logger = logging.getLogger("test_redaction")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    yield logger, stream
    logger.handlers.clear()


def test_redacts_secrets_and_caller_addresses(capture):
    logger, stream = capture

    logger.info(
        "test_event",
        extra={
            "api_key": "sk-secret-123",
            "client_ip": "203.0.113.7",
            "identifier": "198.51.100.1",
            "cf-turnstile-response": "token-abc",
            "safe_field": "visible",
        },
    )

    output = stream.getvalue()
    assert "sk-secret-123" not in output
    assert "203.0.113.7" not in output
    assert "198.51.100.1" not in output
    assert "token-abc" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_allows_safe_fields(capture):
    logger, stream = capture

    logger.info(
        "rate_limit.exceeded",
        extra={"policy": "UPLOAD", "count": 11, "limit": 10, "digest": short_digest("a" * 32)},
    )

    payload = json.loads(stream.getvalue())
    assert payload["message"] == "rate_limit.exceeded"
    assert payload["policy"] == "UPLOAD"
    assert payload["limit"] == 10
    assert payload["digest"] == "aaaaaaaa***"
    assert "[REDACTED]" not in stream.getvalue()


def test_redacts_nested_dicts(capture):
    logger, stream = capture

    logger.info(
        "nested_event",
        extra={
            "headers": {"x-forwarded-for": "203.0.113.7", "user-agent": "pytest"},
            "safe_data": {"count": 5},
        },
    )

    output = stream.getvalue()
    assert "203.0.113.7" not in output
    assert "pytest" in output


def test_includes_request_id_from_context(capture):
    logger, stream = capture

    set_request_id("req-42")
    try:
        logger.info("with_request_id")
    finally:
        clear_request_id()

    assert json.loads(stream.getvalue())["request_id"] == "req-42"
