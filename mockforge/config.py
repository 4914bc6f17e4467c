"""
Configuration settings for MockForge.

Uses Pydantic Settings for environment variable management with .env file support.
Command-line flags override these values per run.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Gemini API
    # ========================================
    gemini_api_key: str | None = Field(
        default=None,
        description="Single Gemini API key, used when no credential file exists",
    )
    gemini_model: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model used for generation",
    )
    max_output_tokens: int = Field(
        default=8192,
        description="Maximum output tokens per response",
    )
    temperature: float = Field(
        default=0.7,
        description="Sampling temperature (0.0-2.0)",
    )
    thinking_budget: int | None = Field(
        default=None,
        description="Thinking budget (-1 for dynamic, 0 to disable, None for model default)",
    )
    streaming: bool = Field(
        default=True,
        description="Use the streaming API, falling back to a single call when unsupported",
    )
    request_timeout_seconds: float = Field(
        default=300.0,
        description="Timeout for a single generation request",
    )

    # ========================================
    # Credentials
    # ========================================
    credential_file: str = Field(
        default="api_key.txt",
        description="File with one API key per line (# comments allowed)",
    )
    selection_policy: Literal["round_robin", "least_failed"] = Field(
        default="round_robin",
        description="How a key is picked for each mock",
    )
    failure_threshold: int = Field(
        default=3,
        description="Failures before a key is excluded (least_failed policy)",
    )
    quota_aware: bool = Field(
        default=False,
        description="Pick keys proactively from estimated token usage",
    )
    quota_tokens_per_window: int = Field(
        default=125_000,
        description="Token ceiling per key per quota window (free tier: 125k/min)",
    )
    quota_window_seconds: float = Field(
        default=60.0,
        description="Length of the rolling quota window",
    )

    # ========================================
    # Orchestration
    # ========================================
    target_items: int = Field(
        default=150,
        description="Number of questions each mock must contain",
    )
    document_schema: Literal["exam", "question_sets"] = Field(
        default="exam",
        description="JSON layout requested from the model",
    )
    max_continuation_attempts: int = Field(
        default=5,
        description="Response cycles allowed for continuations and parse retries",
    )
    max_transport_retries: int = Field(
        default=3,
        description="Transport failures tolerated per mock",
    )
    backoff_base_seconds: float = Field(
        default=1.0,
        description="Base delay before retrying a transport failure",
    )
    backoff_multiplier: float = Field(
        default=1.5,
        description="Exponential growth factor between retries",
    )
    backoff_max_seconds: float = Field(
        default=30.0,
        description="Upper bound for a single backoff delay",
    )
    quota_cooldown_seconds: float = Field(
        default=60.0,
        description="Wait before reusing keys once every key hit its quota",
    )
    request_pacing_seconds: float = Field(
        default=0.0,
        description="Delay before each request, divided across the available keys",
    )
    collapse_whitespace: bool = Field(
        default=False,
        description="Collapse line breaks in responses before parsing",
    )

    # ========================================
    # Batch
    # ========================================
    concurrency: int = Field(
        default=1,
        description="Mocks generated in parallel (capped by key count)",
    )
    batch_pause_seconds: float = Field(
        default=0.5,
        description="Pause between concurrent batches",
    )

    # ========================================
    # Sources & Output
    # ========================================
    max_file_bytes: int = Field(
        default=20 * 1024 * 1024,
        description="Reference files larger than this are skipped",
    )
    output_formats: list[Literal["pptx", "pdf", "json"]] = Field(
        default_factory=lambda: ["pptx"],
        description="Artifacts written for each mock",
    )
    ppt_background: str | None = Field(
        default=None,
        description="Background image for every slide",
    )
    save_debug: bool = Field(
        default=False,
        description="Persist raw responses and assembled JSON next to the output",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # Helper Methods
    # ========================================
    def has_inline_key(self) -> bool:
        """Check if a single key is configured through the environment."""
        return bool(self.gemini_api_key and self.gemini_api_key.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
