"""Retry bounds and backoff delays for one generation session."""

from __future__ import annotations

from dataclasses import dataclass

from mockforge.config import Settings


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounds on a session's retry loops.

    ``max_continuation_attempts`` limits response cycles that end in a
    continuation or a parse failure; ``max_transport_retries`` limits failed
    API calls, quota failures included.
    """

    max_continuation_attempts: int = 5
    max_transport_retries: int = 3
    backoff_base: float = 1.0
    backoff_multiplier: float = 1.5
    backoff_max: float = 30.0
    quota_cooldown: float = 60.0
    request_pacing: float = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_continuation_attempts=settings.max_continuation_attempts,
            max_transport_retries=settings.max_transport_retries,
            backoff_base=settings.backoff_base_seconds,
            backoff_multiplier=settings.backoff_multiplier,
            backoff_max=settings.backoff_max_seconds,
            quota_cooldown=settings.quota_cooldown_seconds,
            request_pacing=settings.request_pacing_seconds,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry ``attempt`` (1-based): base * multiplier^(attempt-1), capped."""
        delay = self.backoff_base * self.backoff_multiplier ** max(0, attempt - 1)
        return min(delay, self.backoff_max)

    def pacing_delay(self, available_keys: int) -> float:
        """Pre-request pause, spread across the keys still available (at least 0.1s when enabled)."""
        if self.request_pacing <= 0:
            return 0.0
        return max(0.1, self.request_pacing / max(1, available_keys))
