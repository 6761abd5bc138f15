"""Challenge token verification.

Verification fails closed: an empty token, an unreachable provider or a
malformed reply are all treated as a failed challenge. A successful
verification clears the caller's abuse status.
"""

from __future__ import annotations

import logging

from ratewarden.adapters.challenge.base import AbstractChallengeClient
from ratewarden.adapters.store.base import AbstractCounterStore
from ratewarden.core.errors import ChallengeProviderError, StoreUnavailableError
from ratewarden.core.identity import IdentityHasher
from ratewarden.core.logging import short_digest
from ratewarden.services.patterns import abuse_key

logger = logging.getLogger(__name__)


class ChallengeVerifier:
    """Confirms caller-supplied challenge tokens with the provider."""

    def __init__(
        self,
        client: AbstractChallengeClient,
        store: AbstractCounterStore,
        hasher: IdentityHasher,
    ) -> None:
        self._client = client
        self._store = store
        self._hasher = hasher

    async def verify(self, token: str | None, identifier: str) -> bool:
        """Verify ``token`` for the caller ``identifier``.

        Args:
            token: Challenge response token supplied by the caller.
            identifier: Raw caller identifier (forwarded to the provider).

        Returns:
            bool: True only when the provider explicitly confirmed the token.
        """
        digest = self._hasher.hash(identifier)
        if not token:
            logger.info("challenge.missing_token", extra={"digest": short_digest(digest)})
            return False

        try:
            reply = await self._client.verify_token(token, remote_ip=identifier or None)
        except ChallengeProviderError as exc:
            logger.error(
                "challenge.provider_error",
                extra={
                    "error_code": exc.code,
                    "error_msg": exc.message,
                    "digest": short_digest(digest),
                },
            )
            return False

        if not reply.success:
            logger.warning(
                "challenge.rejected",
                extra={
                    "digest": short_digest(digest),
                    "error_codes": list(reply.error_codes),
                },
            )
            return False

        try:
            await self._store.delete(abuse_key(digest))
        except StoreUnavailableError as exc:
            # The caller proved good faith; a stale status expires on its own.
            logger.error(
                "challenge.clear_status_failed",
                extra={"error_code": exc.code, "digest": short_digest(digest)},
            )

        logger.info("challenge.verified", extra={"digest": short_digest(digest)})
        return True

    async def close(self) -> None:
        await self._client.close()
