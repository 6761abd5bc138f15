"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before any import that might build settings.
"""

import os

os.environ["APP_ENV"] = "testing"

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("SECURITY_IDENTITY_SALT", "test-salt")
os.environ.setdefault("CHALLENGE_SECRET_KEY", "test-turnstile-secret")
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from ratewarden.adapters.challenge.base import AbstractChallengeClient, ChallengeResponse
from ratewarden.adapters.store.in_memory import InMemoryCounterStore
from ratewarden.core.identity import IdentityHasher
from ratewarden.core.rate_limit import set_rate_limit_service
from ratewarden.services.challenge import ChallengeVerifier
from ratewarden.services.policies import PolicyRegistry
from ratewarden.services.rate_limit_service import RateLimitService

# 2024-01-01T00:00:00Z, aligned to every default window length
T0 = 1_704_067_200.0


class FakeClock:
    """Settable time source returning UNIX seconds."""

    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubChallengeClient(AbstractChallengeClient):
    """Challenge client answering from a fixed set of valid tokens."""

    def __init__(self, valid_tokens=("valid-token",)) -> None:
        self.valid_tokens = set(valid_tokens)
        self.calls: list[tuple[str, str | None]] = []
        self.closed = False

    async def verify_token(self, token, *, remote_ip=None):
        self.calls.append((token, remote_ip))
        if token in self.valid_tokens:
            return ChallengeResponse(success=True)
        return ChallengeResponse(success=False, error_codes=("invalid-input-response",))

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def hasher() -> IdentityHasher:
    return IdentityHasher("test-salt")


@pytest.fixture
def challenge_client() -> StubChallengeClient:
    return StubChallengeClient()


@pytest.fixture
def service(store, hasher, challenge_client, clock) -> RateLimitService:
    verifier = ChallengeVerifier(challenge_client, store, hasher)
    return RateLimitService(store, PolicyRegistry(), hasher, verifier, clock=clock)


@pytest.fixture
def installed_service(service):
    """Install ``service`` as the process-wide instance for HTTP tests."""
    set_rate_limit_service(service)
    yield service
    set_rate_limit_service(None)
