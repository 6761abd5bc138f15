"""Caller identity helpers.

Raw caller addresses are only ever held in request scope. Everything that
touches the shared store or a log line works with the salted digest produced
by :class:`IdentityHasher`.
"""

from __future__ import annotations

import hashlib

from starlette.requests import Request

UNKNOWN_CLIENT_IP = "0.0.0.0"
DIGEST_LENGTH = 32


class IdentityHasher:
    """Turns a raw caller identifier into a salted, one-way digest.

    The same identifier always maps to the same digest for a given salt, so
    digests can be used as storage key prefixes across service instances.
    Empty identifiers are hashed like any other value and therefore share a
    single (rate limited) identity.
    """

    def __init__(self, salt: str) -> None:
        self._salt = salt

    def hash(self, raw: str) -> str:
        """Return the hex digest of ``raw + salt`` truncated to 32 chars."""
        hasher = hashlib.sha256()
        hasher.update((raw or "").encode("utf-8"))
        hasher.update(self._salt.encode("utf-8"))
        return hasher.hexdigest()[:DIGEST_LENGTH]


def get_client_ip(request: Request, *, trust_proxy_headers: bool = True) -> str:
    """Resolve the caller address for a request.

    Proxy headers are consulted in order ``CF-Connecting-IP``, ``X-Real-IP``
    and the first hop of ``X-Forwarded-For`` when the deployment sits behind a
    trusted proxy. Otherwise the socket peer is used.

    Args:
        request: Incoming Starlette/FastAPI request.
        trust_proxy_headers: Whether forwarding headers may be trusted.

    Returns:
        The caller address, or ``0.0.0.0`` when it cannot be determined.
    """

    if trust_proxy_headers:
        headers = request.headers
        for header in ("cf-connecting-ip", "x-real-ip"):
            value = headers.get(header)
            if value:
                return value.strip()
        forwarded_for = headers.get("x-forwarded-for")
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT_IP
