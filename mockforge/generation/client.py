"""
Gemini API client.

Wraps the google-genai SDK behind a small ``GenerativeClient`` protocol so the
orchestrator can be driven by a scripted fake in tests. This is also the one
place where SDK and network exceptions are translated into MockForge's error
taxonomy; everything downstream dispatches on exception type only.

Features:
- One SDK client per API key, created lazily
- Streaming with transparent fallback to a single request
- Per-request timeout
- Thinking budget validation before any network call
- Usage counters (prompt / output / thinking tokens)
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from loguru import logger

from mockforge.errors import (
    ConfigurationError,
    CredentialRejected,
    MockForgeError,
    QuotaError,
    TransportError,
)
from mockforge.sources import ContentPart

# Model family -> (minimum, maximum) thinking budget. flash-lite before flash.
THINKING_BUDGET_RANGES: tuple[tuple[str, int, int], ...] = (
    ("flash-lite", 512, 24576),
    ("flash", 1, 24576),
    ("pro", 128, 32768),
)
PRO_MINIMUM_BUDGET = 128

QUOTA_STATUSES = frozenset({"RESOURCE_EXHAUSTED"})
REJECTED_STATUSES = frozenset({"UNAUTHENTICATED", "PERMISSION_DENIED"})
REJECTED_MARKERS = ("api_key_invalid", "api key not valid", "api key expired")
RETRIABLE_STATUS_CODES = frozenset({408, 500, 502, 503, 504})


def _model_family(model: str) -> tuple[str, int, int] | None:
    name = model.lower()
    for family in THINKING_BUDGET_RANGES:
        if family[0] in name:
            return family
    return None


def validate_thinking_budget(budget: int | None, model: str) -> int | None:
    """
    Validate a thinking budget for a model family.

    Args:
        budget: None (model default), -1 (dynamic), 0 (disabled) or a token count
        model: Model name, e.g. "gemini-2.5-flash"

    Returns:
        The budget to send, or None to leave it unset

    Raises:
        ConfigurationError: If the budget is outside the family's range
    """
    if budget is None:
        return None
    if budget == -1:
        return -1

    family = _model_family(model)
    if budget == 0:
        if family is not None and family[0] == "pro":
            logger.warning(
                f"Thinking cannot be disabled for {model}; using minimum budget ({PRO_MINIMUM_BUDGET})"
            )
            return PRO_MINIMUM_BUDGET
        return 0

    if budget < 0:
        raise ConfigurationError(f"Thinking budget must be -1, 0 or positive, got {budget}")
    if family is not None:
        name, minimum, maximum = family
        if not minimum <= budget <= maximum:
            raise ConfigurationError(
                f"Thinking budget for {name} models must be between "
                f"{minimum}-{maximum} tokens, got {budget}"
            )
    return budget


# =============================================================================
# Request / Response Types
# =============================================================================


@dataclass
class GenerationOptions:
    """Model parameters shared by every request of a run."""

    model: str = "gemini-2.5-flash"
    max_output_tokens: int = 8192
    temperature: float = 0.7
    thinking_budget: int | None = None
    stream: bool = True
    timeout_seconds: float = 300.0

    def __post_init__(self) -> None:
        if self.max_output_tokens <= 0:
            raise ConfigurationError(f"max_output_tokens must be positive, got {self.max_output_tokens}")
        if not 0.0 <= self.temperature <= 2.0:
            raise ConfigurationError(f"temperature must be between 0.0 and 2.0, got {self.temperature}")
        self.thinking_budget = validate_thinking_budget(self.thinking_budget, self.model)

    def to_sdk_config(self) -> types.GenerateContentConfig:
        thinking = None
        if self.thinking_budget is not None:
            thinking = types.ThinkingConfig(thinking_budget=self.thinking_budget)
        return types.GenerateContentConfig(
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
            thinking_config=thinking,
        )


@dataclass
class UsageStats:
    """Token counters reported by the API."""

    prompt_tokens: int = 0
    output_tokens: int = 0
    thinking_tokens: int = 0

    @property
    def total(self) -> int:
        return self.prompt_tokens + self.output_tokens + self.thinking_tokens

    def add(self, other: UsageStats) -> None:
        self.prompt_tokens += other.prompt_tokens
        self.output_tokens += other.output_tokens
        self.thinking_tokens += other.thinking_tokens


@dataclass
class GenerationRequest:
    api_key: str = field(repr=False)
    contents: list[ContentPart]
    options: GenerationOptions


@dataclass
class GenerationResponse:
    text: str
    usage: UsageStats = field(default_factory=UsageStats)
    finish_reason: str | None = None
    streamed: bool = False


class GenerativeClient(Protocol):
    """Anything that turns a request into response text."""

    async def generate(self, request: GenerationRequest) -> GenerationResponse: ...


# =============================================================================
# Error Translation
# =============================================================================


def classify_error(exc: BaseException) -> MockForgeError:
    """
    Translate an SDK or network exception into the error taxonomy.

    Quota and key problems become ``CredentialFailure`` subclasses so the
    orchestrator rotates keys; 5xx, 408, timeouts and network errors are
    retriable; other API errors (bad request, unknown model) are not.
    """
    if isinstance(exc, MockForgeError):
        return exc

    if isinstance(exc, genai_errors.APIError):
        code = getattr(exc, "code", None)
        status = str(getattr(exc, "status", "") or "").upper()
        message = str(exc)
        lowered = message.lower()

        if code == 429 or status in QUOTA_STATUSES:
            return QuotaError(message, status_code=code)
        if code in (401, 403) or status in REJECTED_STATUSES or any(
            marker in lowered for marker in REJECTED_MARKERS
        ):
            return CredentialRejected(message, status_code=code)
        if code is not None and (code >= 500 or code in RETRIABLE_STATUS_CODES):
            return TransportError(message, status_code=code)
        return TransportError(message, status_code=code, retriable=False)

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return TransportError(f"Request timed out ({type(exc).__name__})")
    if isinstance(exc, httpx.TransportError):
        return TransportError(f"Network error: {exc}")
    return TransportError(f"{type(exc).__name__}: {exc}")


@contextmanager
def translate_errors() -> Iterator[None]:
    try:
        yield
    except MockForgeError:
        raise
    except Exception as e:
        raise classify_error(e) from e


# =============================================================================
# Gemini Client
# =============================================================================


class StreamingUnsupported(Exception):
    """The SDK in use cannot stream responses."""


def _to_sdk_contents(parts: list[ContentPart]) -> list[types.Content]:
    sdk_parts = []
    for part in parts:
        if part.data is not None:
            sdk_parts.append(
                types.Part.from_bytes(data=part.data, mime_type=part.mime_type or "application/octet-stream")
            )
        else:
            sdk_parts.append(types.Part.from_text(text=part.text or ""))
    return [types.Content(role="user", parts=sdk_parts)]


def _usage_from(response: Any) -> UsageStats | None:
    meta = getattr(response, "usage_metadata", None)
    if meta is None:
        return None
    return UsageStats(
        prompt_tokens=getattr(meta, "prompt_token_count", None) or 0,
        output_tokens=getattr(meta, "candidates_token_count", None) or 0,
        thinking_tokens=getattr(meta, "thoughts_token_count", None) or 0,
    )


def _finish_reason(response: Any) -> str | None:
    candidates = getattr(response, "candidates", None)
    if not candidates:
        return None
    reason = getattr(candidates[0], "finish_reason", None)
    if reason is None:
        return None
    return getattr(reason, "name", None) or str(reason)


class GeminiClient:
    """google-genai backed ``GenerativeClient``."""

    def __init__(self):
        self._clients: dict[str, genai.Client] = {}
        self._streaming_supported = True

    def _client_for(self, api_key: str) -> genai.Client:
        if api_key not in self._clients:
            self._clients[api_key] = genai.Client(api_key=api_key)
        return self._clients[api_key]

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """
        Send one request.

        Raises:
            QuotaError: Rate limit or quota exhausted for this key
            CredentialRejected: Key invalid or not permitted
            TransportError: Any other API, network or timeout failure
        """
        with translate_errors():
            client = self._client_for(request.api_key)
            contents = _to_sdk_contents(request.contents)
            config = request.options.to_sdk_config()
            return await asyncio.wait_for(
                self._dispatch(client, request.options, contents, config),
                timeout=request.options.timeout_seconds,
            )

    async def _dispatch(
        self,
        client: genai.Client,
        options: GenerationOptions,
        contents: list[types.Content],
        config: types.GenerateContentConfig,
    ) -> GenerationResponse:
        if options.stream and self._streaming_supported:
            try:
                return await self._generate_streaming(client, options.model, contents, config)
            except StreamingUnsupported as e:
                logger.warning(f"Streaming unavailable ({e}); falling back to non-streaming requests")
                self._streaming_supported = False
        return await self._generate_once(client, options.model, contents, config)

    async def _generate_streaming(
        self,
        client: genai.Client,
        model: str,
        contents: list[types.Content],
        config: types.GenerateContentConfig,
    ) -> GenerationResponse:
        stream_factory = getattr(client.aio.models, "generate_content_stream", None)
        if stream_factory is None:
            raise StreamingUnsupported("SDK has no streaming endpoint")

        stream = await stream_factory(model=model, contents=contents, config=config)
        if not hasattr(stream, "__aiter__"):
            raise StreamingUnsupported(f"{type(stream).__name__} is not async-iterable")

        fragments: list[str] = []
        usage = UsageStats()
        finish_reason = None
        async for chunk in stream:
            if chunk.text:
                fragments.append(chunk.text)
            usage = _usage_from(chunk) or usage
            finish_reason = _finish_reason(chunk) or finish_reason

        text = "".join(fragments)
        logger.debug(f"Streamed {len(fragments)} fragments ({len(text):,} chars)")
        return GenerationResponse(text=text, usage=usage, finish_reason=finish_reason, streamed=True)

    async def _generate_once(
        self,
        client: genai.Client,
        model: str,
        contents: list[types.Content],
        config: types.GenerateContentConfig,
    ) -> GenerationResponse:
        response = await client.aio.models.generate_content(
            model=model, contents=contents, config=config
        )
        return GenerationResponse(
            text=response.text or "",
            usage=_usage_from(response) or UsageStats(),
            finish_reason=_finish_reason(response),
        )
