"""Cloudflare Turnstile challenge client adapter."""

from typing import Any

import httpx

from ratewarden.adapters.challenge.base import AbstractChallengeClient, ChallengeResponse
from ratewarden.core.errors import ChallengeProviderError

DEFAULT_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


class TurnstileClient(AbstractChallengeClient):
    """Client for the Turnstile ``siteverify`` endpoint.

    Uses an ``httpx.AsyncClient``; pass one in to share a connection pool or
    to mock the transport in tests.
    """

    def __init__(
        self,
        secret_key: str,
        verify_url: str = DEFAULT_VERIFY_URL,
        timeout_seconds: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the Turnstile client.

        Args:
            secret_key: Server-side Turnstile secret.
            verify_url: Verification endpoint URL.
            timeout_seconds: Timeout for requests in seconds.
            http_client: Optional pre-built async HTTP client.
        """
        self._secret_key = secret_key
        self._verify_url = verify_url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def verify_token(self, token: str, *, remote_ip: str | None = None) -> ChallengeResponse:
        """Post the token to ``siteverify`` and parse the reply.

        Args:
            token: Response token from the Turnstile widget.
            remote_ip: Caller address forwarded as ``remoteip``.

        Returns:
            ChallengeResponse: ``success`` is True only for an explicit ``true``.

        Raises:
            ChallengeProviderError: On transport errors, non-2xx status codes
                or a body that is not a JSON object.
        """
        form = {"secret": self._secret_key, "response": token}
        if remote_ip:
            form["remoteip"] = remote_ip

        try:
            response = await self._http.post(self._verify_url, data=form)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ChallengeProviderError(
                code="challenge_http_error",
                message=f"Turnstile returned HTTP {exc.response.status_code}",
            ) from exc
        except httpx.HTTPError as exc:
            raise ChallengeProviderError(
                code="challenge_unreachable",
                message=f"Turnstile request failed: {type(exc).__name__}",
            ) from exc

        try:
            body: Any = response.json()
        except ValueError as exc:
            raise ChallengeProviderError(
                code="challenge_invalid_reply",
                message="Turnstile returned a non-JSON body",
            ) from exc

        if not isinstance(body, dict):
            raise ChallengeProviderError(
                code="challenge_invalid_reply",
                message="Turnstile reply is not a JSON object",
            )

        return ChallengeResponse(
            success=body.get("success") is True,
            error_codes=tuple(str(c) for c in body.get("error-codes") or ()),
            hostname=body.get("hostname"),
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()
