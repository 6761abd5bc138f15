"""Admission policy table.

Policies are immutable and validated once when the registry is built at
startup; an invalid definition aborts startup with a
:class:`~ratewarden.core.errors.ConfigurationAppError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from ratewarden.core.errors import ConfigurationAppError, ValidationAppError

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000

# Fields that may be overridden from configuration
_OVERRIDABLE_FIELDS = {"window_ms", "max_requests", "skip_successful", "skip_failed"}


@dataclass(frozen=True)
class Policy:
    """Named fixed-window admission policy.

    Attributes:
        name: Policy name (e.g. ``UPLOAD``).
        window_ms: Window length in milliseconds.
        max_requests: Requests admitted per window.
        skip_successful: Successful requests do not count toward the ceiling.
        skip_failed: Failed requests do not count toward the ceiling.
    """

    name: str
    window_ms: int
    max_requests: int
    skip_successful: bool = False
    skip_failed: bool = False

    @property
    def window_seconds(self) -> int:
        """Window length rounded up to whole seconds (store TTL)."""
        return -(-self.window_ms // 1000)

    def skips(self, success: bool) -> bool:
        """Whether a request with this outcome is excluded from the count."""
        return self.skip_successful if success else self.skip_failed


DEFAULT_POLICIES: tuple[Policy, ...] = (
    # File uploads (most restrictive); failed uploads are not held against the caller
    Policy("UPLOAD", window_ms=15 * MINUTE_MS, max_requests=10, skip_failed=True),
    Policy("PROCESS", window_ms=5 * MINUTE_MS, max_requests=20),
    Policy("DOWNLOAD", window_ms=10 * MINUTE_MS, max_requests=50, skip_failed=True),
    Policy("API", window_ms=MINUTE_MS, max_requests=100),
    Policy("PAGE", window_ms=MINUTE_MS, max_requests=200, skip_successful=True, skip_failed=True),
)


def _validate(policy: Policy) -> None:
    if not policy.name:
        raise ConfigurationAppError(
            code="policy_invalid_name",
            message="Policy name must be a non-empty string",
        )
    for field_name, code in (
        ("window_ms", "policy_invalid_window"),
        ("max_requests", "policy_invalid_max_requests"),
    ):
        value = getattr(policy, field_name)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationAppError(
                code=code,
                message=f"Policy '{policy.name}' must have an integer {field_name}",
                details={"policy": policy.name, "context": {field_name: repr(value)}},
            )
    if policy.window_ms <= 0:
        raise ConfigurationAppError(
            code="policy_invalid_window",
            message=f"Policy '{policy.name}' must have window_ms > 0",
            details={"policy": policy.name, "context": {"window_ms": policy.window_ms}},
        )
    if policy.max_requests <= 0:
        raise ConfigurationAppError(
            code="policy_invalid_max_requests",
            message=f"Policy '{policy.name}' must have max_requests > 0",
            details={"policy": policy.name, "context": {"max_requests": policy.max_requests}},
        )


class PolicyRegistry:
    """Read-only lookup of admission policies by name."""

    def __init__(self, policies: Iterable[Policy] = DEFAULT_POLICIES) -> None:
        table: dict[str, Policy] = {}
        for policy in policies:
            _validate(policy)
            if policy.name in table:
                raise ConfigurationAppError(
                    code="policy_duplicate",
                    message=f"Policy '{policy.name}' is defined more than once",
                )
            table[policy.name] = policy
        if not table:
            raise ConfigurationAppError(
                code="policy_table_empty",
                message="At least one admission policy must be configured",
            )
        self._policies: Mapping[str, Policy] = MappingProxyType(table)

    @classmethod
    def with_overrides(
        cls,
        overrides: Mapping[str, Mapping[str, Any]],
        base: Iterable[Policy] = DEFAULT_POLICIES,
    ) -> "PolicyRegistry":
        """Build a registry from ``base`` with per-policy field overrides.

        Unknown policy names in ``overrides`` define new policies and must
        supply ``window_ms`` and ``max_requests``.

        Raises:
            ConfigurationAppError: On unknown fields or invalid values.
        """
        merged = {policy.name: policy for policy in base}
        for name, fields in overrides.items():
            unknown = set(fields) - _OVERRIDABLE_FIELDS
            if unknown:
                raise ConfigurationAppError(
                    code="policy_unknown_field",
                    message=f"Unknown override field(s) for policy '{name}': {sorted(unknown)}",
                )
            try:
                if name in merged:
                    merged[name] = replace(merged[name], **fields)
                else:
                    merged[name] = Policy(name=name, **fields)
            except TypeError as exc:
                raise ConfigurationAppError(
                    code="policy_incomplete",
                    message=f"Policy '{name}' override is incomplete: {exc}",
                ) from exc
            logger.info("policy.override_applied", extra={"policy": name})
        return cls(merged.values())

    def get(self, name: str) -> Policy:
        """Return the policy registered under ``name``.

        Raises:
            ValidationAppError: If no such policy exists.
        """
        policy = self._policies.get(name)
        if policy is None:
            raise ValidationAppError(
                code="unknown_policy",
                message=f"Unknown rate limit policy: '{name}'",
                details={"policy": name},
            )
        return policy

    def names(self) -> list[str]:
        return list(self._policies)

    def __iter__(self):
        return iter(self._policies.values())

    def __len__(self) -> int:
        return len(self._policies)
