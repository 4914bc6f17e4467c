"""
Unit tests for prompt construction and settings.
"""

from mockforge.config import Settings
from mockforge.generation.backoff import RetryPolicy
from mockforge.generation.prompts import (
    clarification_instruction,
    continuation_instruction,
    detect_exam_type,
    get_system_prompt,
)
from mockforge.generation.schema import EXAM_SCHEMA, QUESTION_SET_SCHEMA


class TestPrompts:
    """Tests for prompt helpers."""

    def test_detect_exam_type(self):
        """Keywords in the user prompt select the exam type."""
        assert detect_exam_type("Create a Data Interpretation mock with tables") == "data-interpretation"
        assert detect_exam_type("Quantitative aptitude, arithmetic heavy") == "quantitative"
        assert detect_exam_type("English reading comprehension") == "verbal"
        assert detect_exam_type("A general awareness test") == "generic"

    def test_system_prompt_mentions_target_and_layout(self):
        """The system prompt carries the target count and the JSON layout."""
        exam = get_system_prompt("quantitative", EXAM_SCHEMA, 75)
        sets = get_system_prompt("unknown-type", QUESTION_SET_SCHEMA, 20)

        assert "exactly 75 questions" in exam
        assert "sectionTitle" in exam
        assert "setTitle" in sets

    def test_continuation_instruction(self):
        """Continuations name the remaining count and the next number."""
        text = continuation_instruction(60, 91)
        assert "remaining 60 questions" in text
        assert "Start from question 91" in text

    def test_clarification_instruction(self):
        """Clarifications optionally name the structural problem."""
        assert "not valid JSON" in clarification_instruction()
        assert "missing sections" in clarification_instruction("missing sections")


class TestSettings:
    """Tests for Settings and RetryPolicy."""

    def test_defaults(self, monkeypatch, tmp_path):
        """Defaults match the documented behaviour."""
        monkeypatch.chdir(tmp_path)
        settings = Settings()

        assert settings.gemini_model == "gemini-2.5-flash"
        assert settings.target_items == 150
        assert settings.selection_policy == "round_robin"
        assert settings.output_formats == ["pptx"]
        assert settings.max_continuation_attempts == 5

    def test_environment_override(self, monkeypatch, tmp_path):
        """Environment variables override defaults."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("TARGET_ITEMS", "40")
        monkeypatch.setenv("SELECTION_POLICY", "least_failed")
        monkeypatch.setenv("GEMINI_API_KEY", "AIzaEnvironment01")

        settings = Settings()

        assert settings.target_items == 40
        assert settings.selection_policy == "least_failed"
        assert settings.has_inline_key()

    def test_retry_policy_from_settings(self, monkeypatch, tmp_path):
        """RetryPolicy mirrors the orchestration settings."""
        monkeypatch.chdir(tmp_path)
        policy = RetryPolicy.from_settings(Settings(backoff_multiplier=2.0, max_transport_retries=4))

        assert policy.max_transport_retries == 4
        assert policy.backoff_delay(1) == 1.0
        assert policy.backoff_delay(3) == 4.0

    def test_backoff_capped(self):
        """Backoff never exceeds its maximum."""
        policy = RetryPolicy(backoff_base=10.0, backoff_multiplier=3.0, backoff_max=30.0)
        assert policy.backoff_delay(5) == 30.0

    def test_pacing_delay(self):
        """Pacing is split across keys with a floor."""
        assert RetryPolicy().pacing_delay(3) == 0.0
        assert RetryPolicy(request_pacing=3.0).pacing_delay(3) == 1.0
        assert RetryPolicy(request_pacing=0.2).pacing_delay(10) == 0.1
