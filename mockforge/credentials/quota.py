"""
Token cost estimation and per-key quota windows.

Gemini's free tier limits each key to a fixed number of input tokens per
minute. The estimator approximates a request's cost before sending it so the
pool can pick a key that still has headroom in its current window.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from mockforge.sources import ContentPart

CHARS_PER_TOKEN = 3
BASE64_WEIGHT = 0.75
FREE_TIER_TOKENS_PER_MINUTE = 125_000


def base64_length(byte_count: int) -> int:
    """Length of the base64 encoding of ``byte_count`` bytes."""
    return 4 * math.ceil(byte_count / 3)


class QuotaEstimator:
    """Estimates request cost and tracks when quota windows roll over."""

    def __init__(
        self,
        tokens_per_window: int = FREE_TIER_TOKENS_PER_MINUTE,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.tokens_per_window = tokens_per_window
        self.window_seconds = window_seconds
        self.clock = clock

    def estimate_tokens(self, parts: Iterable[ContentPart]) -> int:
        """
        Estimate the input token cost of a request.

        Text counts one token per three characters. Binary attachments are
        sent base64-encoded, so they count their encoded length at 0.75.

        Args:
            parts: Request content parts

        Returns:
            Estimated token count (rounded up)
        """
        chars = 0.0
        for part in parts:
            if part.text is not None:
                chars += len(part.text)
            if part.data is not None:
                chars += base64_length(len(part.data)) * BASE64_WEIGHT

        estimate = math.ceil(chars / CHARS_PER_TOKEN)
        if estimate > self.tokens_per_window:
            logger.warning(
                f"Estimated request size {estimate:,} tokens exceeds the per-key "
                f"limit of {self.tokens_per_window:,}; consider fewer reference files"
            )
        return estimate

    def now(self) -> float:
        return self.clock()

    def window_expired(self, started_at: float) -> bool:
        """True when a window opened at ``started_at`` has rolled over."""
        return self.clock() - started_at >= self.window_seconds

    def seconds_until_reset(self, started_at: float) -> float:
        return max(0.0, started_at + self.window_seconds - self.clock())
