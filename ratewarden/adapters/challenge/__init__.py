"""Challenge adapter layer - abstracts over captcha verification providers."""

from ratewarden.adapters.challenge.base import AbstractChallengeClient, ChallengeResponse
from ratewarden.adapters.challenge.factory import create_challenge_client
from ratewarden.adapters.challenge.turnstile import TurnstileClient

__all__ = [
    "AbstractChallengeClient",
    "ChallengeResponse",
    "TurnstileClient",
    "create_challenge_client",
]
