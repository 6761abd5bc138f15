"""Factory pattern for creating challenge client instances."""

import logging

from ratewarden.adapters.challenge.base import AbstractChallengeClient
from ratewarden.adapters.challenge.turnstile import TurnstileClient
from ratewarden.core.config import ChallengeSettings, settings
from ratewarden.core.errors import ConfigurationAppError

logger = logging.getLogger(__name__)


def create_challenge_client(
    challenge_settings: ChallengeSettings | None = None,
) -> AbstractChallengeClient:
    """Instantiate the challenge client for the configured provider.

    A missing secret is allowed (development) but logged: every verification
    will then be rejected by the provider, so captcha-gated callers stay gated.

    Returns:
        AbstractChallengeClient: Configured client instance.

    Raises:
        ConfigurationAppError: If the provider is unknown.
    """
    cfg = challenge_settings or settings.challenge
    provider = cfg.provider.lower()

    if provider == "turnstile":
        secret = cfg.secret_key.get_secret_value()
        if not secret:
            logger.warning(
                "challenge.secret_missing",
                extra={"provider": provider},
            )
        return TurnstileClient(
            secret_key=secret,
            verify_url=cfg.verify_url,
            timeout_seconds=cfg.timeout_seconds,
        )

    raise ConfigurationAppError(
        code="challenge_unknown_provider",
        message=f"Unknown challenge provider: '{provider}'. Supported providers: turnstile",
    )
