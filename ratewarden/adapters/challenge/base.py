from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ChallengeResponse:
	"""Reply from a challenge verification provider.

	Attributes:
		success: Whether the provider accepted the token.
		error_codes: Provider error codes, if any.
		hostname: Hostname the challenge was solved on, when reported.
	"""

	success: bool
	error_codes: tuple[str, ...] = field(default_factory=tuple)
	hostname: str | None = None


class AbstractChallengeClient(ABC):
	"""Interface for challenge (captcha) verification providers."""

	@abstractmethod
	async def verify_token(self, token: str, *, remote_ip: str | None = None) -> ChallengeResponse:
		"""Confirm a caller-supplied challenge token with the provider.

		Args:
			token: Response token produced by the client-side widget.
			remote_ip: Caller address, forwarded to the provider when known.

		Returns:
			ChallengeResponse: Parsed provider reply.

		Raises:
			ChallengeProviderError: If the provider is unreachable or replies
				with something that is not a verification result.
		"""
		...

	async def close(self) -> None:
		return None
