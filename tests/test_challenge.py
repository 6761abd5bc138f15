"""Tests for the Turnstile client and challenge verification."""

from urllib.parse import parse_qs

import httpx
import pytest
from unittest.mock import AsyncMock

from ratewarden.adapters.challenge.base import ChallengeResponse
from ratewarden.adapters.challenge.factory import create_challenge_client
from ratewarden.adapters.challenge.turnstile import TurnstileClient
from ratewarden.core.config import ChallengeSettings
from ratewarden.core.errors import (
    ChallengeProviderError,
    ConfigurationAppError,
    StoreUnavailableError,
)
from ratewarden.services.challenge import ChallengeVerifier
from ratewarden.services.patterns import abuse_key

VERIFY_URL = "https://turnstile.test/siteverify"


def _client(handler) -> TurnstileClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TurnstileClient("secret-123", verify_url=VERIFY_URL, http_client=http_client)


class TestTurnstileClient:
    @pytest.mark.asyncio
    async def test_posts_form_and_parses_success(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"success": True, "hostname": "example.com"})

        reply = await _client(handler).verify_token("tok", remote_ip="203.0.113.9")

        assert reply == ChallengeResponse(success=True, error_codes=(), hostname="example.com")
        assert seen["url"] == VERIFY_URL
        assert seen["form"] == {
            "secret": ["secret-123"],
            "response": ["tok"],
            "remoteip": ["203.0.113.9"],
        }

    @pytest.mark.asyncio
    async def test_failure_reply_carries_error_codes(self) -> None:
        client = _client(
            lambda request: httpx.Response(
                200, json={"success": False, "error-codes": ["timeout-or-duplicate"]}
            )
        )

        reply = await client.verify_token("tok")

        assert reply.success is False
        assert reply.error_codes == ("timeout-or-duplicate",)

    @pytest.mark.asyncio
    async def test_truthy_non_boolean_success_is_not_success(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"success": "true"}))

        assert (await client.verify_token("tok")).success is False

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        client = _client(lambda request: httpx.Response(500, text="oops"))

        with pytest.raises(ChallengeProviderError) as exc_info:
            await client.verify_token("tok")
        assert exc_info.value.code == "challenge_http_error"

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(ChallengeProviderError) as exc_info:
            await _client(handler).verify_token("tok")
        assert exc_info.value.code == "challenge_unreachable"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [b"<html>", b"[true]"])
    async def test_malformed_reply(self, content) -> None:
        client = _client(lambda request: httpx.Response(200, content=content))

        with pytest.raises(ChallengeProviderError) as exc_info:
            await client.verify_token("tok")
        assert exc_info.value.code == "challenge_invalid_reply"


def test_factory_rejects_unknown_provider() -> None:
    with pytest.raises(ConfigurationAppError):
        create_challenge_client(ChallengeSettings(provider="recaptcha"))


def test_factory_builds_turnstile_client() -> None:
    client = create_challenge_client(ChallengeSettings(provider="turnstile"))
    assert isinstance(client, TurnstileClient)


class TestChallengeVerifier:
    @pytest.fixture
    def verifier(self, challenge_client, store, hasher) -> ChallengeVerifier:
        return ChallengeVerifier(challenge_client, store, hasher)

    @pytest.mark.asyncio
    async def test_success_clears_abuse_status(self, verifier, store, hasher) -> None:
        key = abuse_key(hasher.hash("203.0.113.9"))
        await store.set(key, "captcha", expire_in_seconds=600)

        assert await verifier.verify("valid-token", "203.0.113.9") is True
        assert await store.get(key) is None

    @pytest.mark.asyncio
    async def test_rejected_token_keeps_status(self, verifier, store, hasher) -> None:
        key = abuse_key(hasher.hash("203.0.113.9"))
        await store.set(key, "captcha", expire_in_seconds=600)

        assert await verifier.verify("bad-token", "203.0.113.9") is False
        assert await store.get(key) == "captcha"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, ""])
    async def test_empty_token_fails_without_provider_call(
        self, verifier, challenge_client, token
    ) -> None:
        assert await verifier.verify(token, "203.0.113.9") is False
        assert challenge_client.calls == []

    @pytest.mark.asyncio
    async def test_provider_error_fails_closed(self, store, hasher) -> None:
        client = AsyncMock()
        client.verify_token.side_effect = ChallengeProviderError(
            code="challenge_unreachable", message="down"
        )

        verifier = ChallengeVerifier(client, store, hasher)

        assert await verifier.verify("valid-token", "203.0.113.9") is False

    @pytest.mark.asyncio
    async def test_store_error_after_success_still_passes(self, challenge_client, hasher) -> None:
        store = AsyncMock()
        store.delete.side_effect = StoreUnavailableError(code="store_unavailable", message="down")

        verifier = ChallengeVerifier(challenge_client, store, hasher)

        assert await verifier.verify("valid-token", "203.0.113.9") is True

    @pytest.mark.asyncio
    async def test_forwards_identifier_as_remote_ip(self, verifier, challenge_client) -> None:
        await verifier.verify("valid-token", "203.0.113.9")

        assert challenge_client.calls == [("valid-token", "203.0.113.9")]
