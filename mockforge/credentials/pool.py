"""
API key pool with failure isolation.

The pool owns every credential's mutable state (failures, usage, quota
window). It is built once at startup and passed to the orchestrator and the
batch runner. None of its methods await, so concurrent asyncio sessions only
ever see it between complete operations.

Two selection policies:

- ``round_robin``: mock ``i`` starts at key ``(i - 1) mod P`` and skips keys
  that failed. A single failure excludes a key for the rest of the run.
- ``least_failed``: pick the usable key with the fewest failures, oldest
  failure first. A key is excluded after ``failure_threshold`` failures in a
  row; when every key is excluded the pool resets itself, assuming the quota
  window has rolled over.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from mockforge.credentials.quota import QuotaEstimator
from mockforge.errors import AllCredentialsExhausted, ConfigurationError


class SelectionPolicy(str, Enum):
    """Strategy used by ``CredentialPool.assign``."""

    ROUND_ROBIN = "round_robin"
    LEAST_FAILED = "least_failed"


@dataclass
class Credential:
    """One API key and its runtime state."""

    secret: str = field(repr=False)
    index: int
    usage_count: int = 0
    failure_count: int = 0
    last_failure_at: float | None = None
    last_error: str | None = None

    # Rolling quota window
    window_tokens: int = 0
    window_started_at: float = 0.0
    total_tokens: int = 0

    @property
    def label(self) -> str:
        return f"key {self.index + 1}"

    @property
    def masked(self) -> str:
        """Secret with everything but its edges hidden, safe for display."""
        if len(self.secret) <= 8:
            return "*" * len(self.secret)
        return f"{self.secret[:4]}...{self.secret[-4:]}"


@dataclass
class PoolStats:
    """Snapshot of pool state for the run summary."""

    total: int
    available: int
    failed: int
    usage: list[int] = field(default_factory=list)
    tokens: list[int] = field(default_factory=list)


class CredentialPool:
    """Assigns API keys to work units and isolates failing keys."""

    def __init__(
        self,
        secrets: Sequence[str],
        policy: SelectionPolicy | str = SelectionPolicy.ROUND_ROBIN,
        failure_threshold: int = 3,
        estimator: QuotaEstimator | None = None,
    ):
        """
        Build the pool.

        Args:
            secrets: API keys, in file order
            policy: Selection policy
            failure_threshold: Failures before exclusion (least_failed only)
            estimator: Quota estimator; also supplies the clock

        Raises:
            ConfigurationError: If no keys are given
        """
        if not secrets:
            raise ConfigurationError("At least one API key is required")

        self.policy = SelectionPolicy(policy)
        self.estimator = estimator or QuotaEstimator()
        # Round robin excludes on the first failure
        self.failure_threshold = (
            max(1, failure_threshold) if self.policy is SelectionPolicy.LEAST_FAILED else 1
        )
        started = self.estimator.now()
        self._credentials = [
            Credential(secret=secret, index=i, window_started_at=started)
            for i, secret in enumerate(secrets)
        ]

    def __len__(self) -> int:
        return len(self._credentials)

    @property
    def credentials(self) -> tuple[Credential, ...]:
        return tuple(self._credentials)

    def get(self, index: int) -> Credential:
        return self._credentials[index]

    def is_usable(self, credential: Credential) -> bool:
        return credential.failure_count < self.failure_threshold

    def available_count(self) -> int:
        return sum(1 for c in self._credentials if self.is_usable(c))

    # =========================================================================
    # Assignment
    # =========================================================================

    def assign(self, work_unit_id: int) -> Credential:
        """
        Select a key for a work unit.

        Args:
            work_unit_id: 1-based work unit ordinal

        Returns:
            A usable credential

        Raises:
            AllCredentialsExhausted: If no key can be used
        """
        if self.policy is SelectionPolicy.ROUND_ROBIN:
            return self._assign_round_robin(work_unit_id)
        return self._assign_least_failed()

    def _assign_round_robin(self, work_unit_id: int) -> Credential:
        size = len(self._credentials)
        start = (work_unit_id - 1) % size
        for offset in range(size):
            credential = self._credentials[(start + offset) % size]
            if self.is_usable(credential):
                return credential
        raise AllCredentialsExhausted(f"All {size} API keys have failed")

    def _assign_least_failed(self) -> Credential:
        candidate = self._least_failed()
        if candidate is None:
            self._self_heal()
            candidate = self._least_failed()
        if candidate is None:
            raise AllCredentialsExhausted(f"All {len(self)} API keys have failed")
        return candidate

    def _least_failed(self) -> Credential | None:
        usable = [c for c in self._credentials if self.is_usable(c)]
        if not usable:
            return None
        return min(
            usable,
            key=lambda c: (
                c.failure_count,
                c.last_failure_at if c.last_failure_at is not None else float("-inf"),
            ),
        )

    def _self_heal(self) -> None:
        logger.warning(
            f"All {len(self)} API keys reached {self.failure_threshold} failures; "
            "resetting failure state"
        )
        self.reset_failures()

    def reset_failures(self) -> None:
        for credential in self._credentials:
            credential.failure_count = 0
            credential.last_error = None

    # =========================================================================
    # Outcome tracking
    # =========================================================================

    def mark_failed(self, index: int, cause: BaseException | str | None = None) -> None:
        """Record a failure; the key is excluded once it reaches the threshold."""
        credential = self._credentials[index]
        credential.failure_count += 1
        credential.last_failure_at = self.estimator.now()
        credential.last_error = str(cause) if cause is not None else None

        if self.is_usable(credential):
            logger.warning(
                f"{credential.label} failed "
                f"({credential.failure_count}/{self.failure_threshold}): {credential.last_error}"
            )
        else:
            logger.warning(f"Excluding {credential.label}: {credential.last_error}")

    def record_success(self, index: int) -> None:
        """A success forgives earlier failures."""
        credential = self._credentials[index]
        credential.failure_count = 0
        credential.last_error = None

    def increment_usage(self, index: int) -> None:
        self._credentials[index].usage_count += 1

    # =========================================================================
    # Quota awareness
    # =========================================================================

    def _roll_window(self, credential: Credential) -> None:
        if self.estimator.window_expired(credential.window_started_at):
            credential.window_tokens = 0
            credential.window_started_at = self.estimator.now()

    def can_handle(self, index: int, estimated_cost: int) -> bool:
        """Check whether a key's current window has room for a request."""
        credential = self._credentials[index]
        self._roll_window(credential)
        return credential.window_tokens + estimated_cost <= self.estimator.tokens_per_window

    def best_candidate(self, estimated_cost: int) -> Credential:
        """
        Pick a key proactively from estimated token usage.

        Prefers the first usable key with headroom in its window, otherwise
        the usable key whose window resets soonest.

        Raises:
            AllCredentialsExhausted: If no key can be used
        """
        usable = [c for c in self._credentials if self.is_usable(c)]
        if not usable and self.policy is SelectionPolicy.LEAST_FAILED:
            self._self_heal()
            usable = list(self._credentials)
        if not usable:
            raise AllCredentialsExhausted(f"All {len(self)} API keys have failed")

        for credential in usable:
            if self.can_handle(credential.index, estimated_cost):
                return credential

        fallback = min(usable, key=lambda c: c.window_started_at)
        logger.warning(
            f"No key has headroom for ~{estimated_cost:,} tokens; using {fallback.label} "
            f"(window resets in {self.estimator.seconds_until_reset(fallback.window_started_at):.0f}s)"
        )
        return fallback

    def record_tokens(self, index: int, tokens: int) -> None:
        credential = self._credentials[index]
        self._roll_window(credential)
        credential.window_tokens += tokens
        credential.total_tokens += tokens

    def stats(self) -> PoolStats:
        available = self.available_count()
        return PoolStats(
            total=len(self),
            available=available,
            failed=len(self) - available,
            usage=[c.usage_count for c in self._credentials],
            tokens=[c.total_tokens for c in self._credentials],
        )
