"""Mock generation: prompts, Gemini client, response assembly and orchestration."""

from mockforge.generation.assembler import ResponseAssembler, ResponsePart
from mockforge.generation.backoff import RetryPolicy
from mockforge.generation.batch import BatchRunner, BatchSummary, build_work_units
from mockforge.generation.client import (
    GeminiClient,
    GenerationOptions,
    GenerationRequest,
    GenerationResponse,
    UsageStats,
)
from mockforge.generation.orchestrator import (
    AttemptOutcome,
    GenerationOrchestrator,
    SessionState,
    WorkResult,
    WorkUnit,
)
from mockforge.generation.schema import EXAM_SCHEMA, QUESTION_SET_SCHEMA, get_schema

__all__ = [
    "AttemptOutcome",
    "BatchRunner",
    "BatchSummary",
    "EXAM_SCHEMA",
    "GeminiClient",
    "GenerationOptions",
    "GenerationOrchestrator",
    "GenerationRequest",
    "GenerationResponse",
    "QUESTION_SET_SCHEMA",
    "ResponseAssembler",
    "ResponsePart",
    "RetryPolicy",
    "SessionState",
    "UsageStats",
    "WorkResult",
    "WorkUnit",
    "build_work_units",
    "get_schema",
]
