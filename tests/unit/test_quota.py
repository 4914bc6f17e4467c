"""
Unit tests for request cost estimation.
"""

from mockforge.credentials.quota import QuotaEstimator, base64_length
from mockforge.sources import ContentPart


class TestEstimateTokens:
    """Tests for QuotaEstimator.estimate_tokens."""

    def test_text_is_three_chars_per_token(self):
        """Text counts one token per three characters, rounded up."""
        estimator = QuotaEstimator()
        assert estimator.estimate_tokens([ContentPart.from_text("a" * 10)]) == 4

    def test_binary_counts_encoded_length(self):
        """Binary parts count their base64 length at 0.75."""
        estimator = QuotaEstimator()
        part = ContentPart.from_bytes(b"x" * 300, "application/pdf")

        # 300 bytes -> 400 base64 chars -> 300 weighted chars -> 100 tokens
        assert estimator.estimate_tokens([part]) == 100

    def test_parts_are_summed(self):
        """Text and binary parts add up."""
        estimator = QuotaEstimator()
        parts = [ContentPart.from_text("a" * 30), ContentPart.from_bytes(b"x" * 300, "image/png")]
        assert estimator.estimate_tokens(parts) == 110

    def test_base64_length(self):
        """Base64 output is four characters per started three-byte group."""
        assert base64_length(0) == 0
        assert base64_length(1) == 4
        assert base64_length(3) == 4
        assert base64_length(4) == 8


class TestWindow:
    """Tests for window expiry."""

    def test_window_expiry(self):
        """A window expires once its length has elapsed."""
        now = [100.0]
        estimator = QuotaEstimator(window_seconds=60, clock=lambda: now[0])

        assert not estimator.window_expired(50.0)
        now[0] = 110.0
        assert estimator.window_expired(50.0)

    def test_seconds_until_reset(self):
        """Time to reset never goes negative."""
        now = [100.0]
        estimator = QuotaEstimator(window_seconds=60, clock=lambda: now[0])

        assert estimator.seconds_until_reset(80.0) == 40.0
        now[0] = 500.0
        assert estimator.seconds_until_reset(80.0) == 0.0
