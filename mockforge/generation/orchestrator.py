"""
Generation orchestrator: drives one mock from request to rendered artifact.

Each call to ``GenerationOrchestrator.run`` is one session for one work
unit. The session moves through these states::

    idle -> request_in_flight -> parsed | parse_failed | transport_failed
         -> complete | needs_continuation | retry_scheduled
            | credential_rotation | terminal_failure

- A response with too few questions triggers a continuation on the same key.
- An unparseable response triggers a clarification request. Continuations
  and clarifications share ``max_continuation_attempts``.
- A quota or key failure excludes the key and retries at once on another.
- Other transport failures back off exponentially. Quota failures count
  against the same ``max_transport_retries`` budget.

Requests within a session are strictly sequential; only separate sessions
run concurrently.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from loguru import logger

from mockforge.credentials.pool import Credential, CredentialPool, SelectionPolicy
from mockforge.errors import (
    CredentialFailure,
    CredentialRejected,
    ErrorKind,
    IncompleteDocument,
    MalformedResponse,
    MockForgeError,
    RenderError,
    SchemaViolation,
    TransportError,
)
from mockforge.generation.assembler import ResponseAssembler
from mockforge.generation.backoff import RetryPolicy
from mockforge.generation.client import (
    GenerationOptions,
    GenerationRequest,
    GenerativeClient,
    UsageStats,
)
from mockforge.generation.prompts import clarification_instruction, continuation_instruction
from mockforge.render.base import Renderer
from mockforge.sources import ContentPart, debug_path_for


class SessionState(str, Enum):
    """States of one generation session."""

    IDLE = "idle"
    REQUEST_IN_FLIGHT = "request_in_flight"
    PARSED = "parsed"
    PARSE_FAILED = "parse_failed"
    TRANSPORT_FAILED = "transport_failed"
    NEEDS_CONTINUATION = "needs_continuation"
    COMPLETE = "complete"
    RETRY_SCHEDULED = "retry_scheduled"
    CREDENTIAL_ROTATION = "credential_rotation"
    TERMINAL_FAILURE = "terminal_failure"


class AttemptOutcome(str, Enum):
    """What happened to one API request."""

    SUCCESS = "success"
    CONTINUATION = "continuation"
    PARSE_FAILURE = "parse_failure"
    SCHEMA_VIOLATION = "schema_violation"
    QUOTA_FAILURE = "quota_failure"
    CREDENTIAL_REJECTED = "credential_rejected"
    TRANSPORT_FAILURE = "transport_failure"


RETRY_OUTCOMES = frozenset({
    AttemptOutcome.PARSE_FAILURE,
    AttemptOutcome.SCHEMA_VIOLATION,
    AttemptOutcome.QUOTA_FAILURE,
    AttemptOutcome.CREDENTIAL_REJECTED,
    AttemptOutcome.TRANSPORT_FAILURE,
})


@dataclass
class AttemptRecord:
    """One API request made by a session."""

    number: int
    credential_index: int
    outcome: AttemptOutcome
    error: str | None = None
    item_count: int = 0


@dataclass
class WorkUnit:
    """One requested mock: its ordinal, destination and request payload."""

    index: int
    output_base: Path
    contents: tuple[ContentPart, ...]
    # Continuation and clarification instructions, appended in order
    follow_ups: list[str] = field(default_factory=list)

    def request_contents(self) -> list[ContentPart]:
        return [*self.contents, *(ContentPart.from_text(text) for text in self.follow_ups)]


@dataclass
class WorkResult:
    """Outcome of one session, as reported to the batch runner."""

    index: int
    success: bool
    output_paths: list[Path] = field(default_factory=list)
    item_count: int = 0
    error_kind: ErrorKind | None = None
    error: str | None = None
    suggested_action: str | None = None
    credential_index: int | None = None
    attempts: list[AttemptRecord] = field(default_factory=list)
    states: list[SessionState] = field(default_factory=list)
    usage: UsageStats = field(default_factory=UsageStats)
    elapsed_seconds: float = 0.0

    @property
    def requests(self) -> int:
        return len(self.attempts)

    @property
    def retries(self) -> int:
        return sum(1 for a in self.attempts if a.outcome in RETRY_OUTCOMES)

    @property
    def continuations(self) -> int:
        return sum(1 for a in self.attempts if a.outcome is AttemptOutcome.CONTINUATION)

    @property
    def final_state(self) -> SessionState | None:
        return self.states[-1] if self.states else None

    @classmethod
    def failed(cls, index: int, error: BaseException) -> WorkResult:
        """Result for a session that died outside the state machine."""
        if isinstance(error, MockForgeError):
            return cls(
                index=index,
                success=False,
                error_kind=error.kind,
                error=error.message,
                suggested_action=error.suggested_action,
            )
        return cls(
            index=index,
            success=False,
            error_kind=ErrorKind.UNEXPECTED,
            error=f"{type(error).__name__}: {error}",
        )


@dataclass
class _Session:
    unit: WorkUnit
    started: float = field(default_factory=time.monotonic)
    state: SessionState = SessionState.IDLE
    states: list[SessionState] = field(default_factory=lambda: [SessionState.IDLE])
    attempts: list[AttemptRecord] = field(default_factory=list)
    credential: Credential | None = None
    document: dict[str, Any] | None = None
    content_cycles: int = 0
    transport_failures: int = 0
    usage: UsageStats = field(default_factory=UsageStats)

    def transition(self, state: SessionState) -> None:
        self.state = state
        self.states.append(state)

    def record(
        self,
        credential: Credential,
        outcome: AttemptOutcome,
        error: BaseException | None = None,
        item_count: int = 0,
    ) -> None:
        self.attempts.append(
            AttemptRecord(
                number=len(self.attempts) + 1,
                credential_index=credential.index,
                outcome=outcome,
                error=str(error) if error is not None else None,
                item_count=item_count,
            )
        )


class GenerationOrchestrator:
    """Runs generation sessions against a shared credential pool."""

    def __init__(
        self,
        pool: CredentialPool,
        client: GenerativeClient,
        assembler: ResponseAssembler,
        options: GenerationOptions,
        renderers: Sequence[Renderer] = (),
        policy: RetryPolicy | None = None,
        target_items: int = 150,
        quota_aware: bool = False,
        save_debug: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            pool: Shared credential pool
            client: Generative API client
            assembler: Response assembler for the requested schema
            options: Model parameters sent with every request
            renderers: Artifact writers invoked on completion
            policy: Retry bounds and backoff delays
            target_items: Questions each mock must contain
            quota_aware: Pick keys by estimated token headroom
            save_debug: Persist raw responses next to the output
            sleep: Awaitable delay function
        """
        self.pool = pool
        self.client = client
        self.assembler = assembler
        self.options = options
        self.renderers = list(renderers)
        self.policy = policy or RetryPolicy()
        self.target_items = target_items
        self.quota_aware = quota_aware
        self.save_debug = save_debug
        self._sleep = sleep

    async def run(self, unit: WorkUnit) -> WorkResult:
        """
        Drive one work unit to a rendered artifact or a terminal failure.

        Never raises for expected failures; they are reported in the result.
        """
        session = _Session(unit=unit)
        logger.info(f"Mock {unit.index}: starting (target {self.target_items} questions)")

        try:
            document = await self._generate(session)
            outputs = await self._render(document, unit)
        except MockForgeError as e:
            session.transition(SessionState.TERMINAL_FAILURE)
            logger.error(f"Mock {unit.index}: failed ({e.kind.value}): {e.message}")
            if self.save_debug and session.document is not None:
                await self._write_debug(unit, "", ".json", json.dumps(session.document, indent=2))
            return self._result(session, success=False, error=e)

        logger.success(
            f"Mock {unit.index}: {self.assembler.count_items(document)} questions -> "
            f"{', '.join(p.name for p in outputs) or 'no renderer'}"
        )
        return self._result(session, success=True, outputs=outputs, document=document)

    # =========================================================================
    # State machine
    # =========================================================================

    async def _generate(self, session: _Session) -> dict[str, Any]:
        unit = session.unit
        while True:
            credential = self._acquire(session)
            pause = self.policy.pacing_delay(self.pool.available_count())
            if pause:
                await self._sleep(pause)

            session.transition(SessionState.REQUEST_IN_FLIGHT)
            request = GenerationRequest(
                api_key=credential.secret,
                contents=unit.request_contents(),
                options=self.options,
            )
            try:
                response = await self.client.generate(request)
            except CredentialFailure as e:
                await self._rotate(session, credential, e)
                continue
            except TransportError as e:
                await self._schedule_retry(session, credential, e)
                continue

            session.usage.add(response.usage)
            self.pool.record_tokens(
                credential.index,
                response.usage.prompt_tokens
                or self.pool.estimator.estimate_tokens(request.contents),
            )
            if response.finish_reason == "MAX_TOKENS":
                logger.info(f"Mock {unit.index}: response hit the output token limit")
            if self.save_debug:
                await self._write_debug(unit, f"attempt{len(session.attempts) + 1}", ".txt", response.text)

            try:
                part = self.assembler.assemble(response.text, partial=session.document is not None)
            except (MalformedResponse, SchemaViolation) as e:
                self._clarify(session, credential, e)
                continue

            session.transition(SessionState.PARSED)
            if session.document is None:
                session.document = part.data
            else:
                session.document = self.assembler.merge(session.document, part.data)
            total = self.assembler.count_items(session.document)

            duplicates = self.assembler.duplicate_item_ids(session.document)
            if duplicates:
                logger.warning(f"Mock {unit.index}: duplicate question numbers {duplicates[:10]}")

            if total >= self.target_items:
                session.record(credential, AttemptOutcome.SUCCESS, item_count=part.item_count)
                session.transition(SessionState.COMPLETE)
                self.pool.record_success(credential.index)
                self.pool.increment_usage(credential.index)
                return session.document

            session.record(credential, AttemptOutcome.CONTINUATION, item_count=part.item_count)
            self._continue(session, total)

    def _acquire(self, session: _Session) -> Credential:
        credential = session.credential
        if credential is not None and self.pool.is_usable(credential):
            return credential

        if self.quota_aware:
            estimate = self.pool.estimator.estimate_tokens(session.unit.request_contents())
            credential = self.pool.best_candidate(estimate)
        else:
            credential = self.pool.assign(session.unit.index)
        session.credential = credential
        logger.info(f"Mock {session.unit.index}: using {credential.label}")
        return credential

    def _continue(self, session: _Session, total: int) -> None:
        session.transition(SessionState.NEEDS_CONTINUATION)
        session.content_cycles += 1
        if session.content_cycles >= self.policy.max_continuation_attempts:
            raise IncompleteDocument(
                f"Only {total}/{self.target_items} questions after "
                f"{session.content_cycles} responses"
            )

        remaining = self.target_items - total
        logger.info(
            f"Mock {session.unit.index}: {total}/{self.target_items} questions, "
            f"requesting {remaining} more from question {total + 1}"
        )
        session.unit.follow_ups.append(continuation_instruction(remaining, total + 1))
        session.transition(SessionState.IDLE)

    def _clarify(
        self,
        session: _Session,
        credential: Credential,
        error: MalformedResponse | SchemaViolation,
    ) -> None:
        outcome = (
            AttemptOutcome.SCHEMA_VIOLATION
            if isinstance(error, SchemaViolation)
            else AttemptOutcome.PARSE_FAILURE
        )
        session.transition(SessionState.PARSE_FAILED)
        session.record(credential, outcome, error)
        session.content_cycles += 1
        if session.content_cycles >= self.policy.max_continuation_attempts:
            raise error

        logger.warning(
            f"Mock {session.unit.index}: {error.message} "
            f"(attempt {session.content_cycles}/{self.policy.max_continuation_attempts}); "
            "asking for valid JSON"
        )
        problem = error.message if isinstance(error, SchemaViolation) else None
        session.unit.follow_ups.append(clarification_instruction(problem))
        session.transition(SessionState.IDLE)

    async def _rotate(
        self,
        session: _Session,
        credential: Credential,
        error: CredentialFailure,
    ) -> None:
        outcome = (
            AttemptOutcome.CREDENTIAL_REJECTED
            if isinstance(error, CredentialRejected)
            else AttemptOutcome.QUOTA_FAILURE
        )
        session.transition(SessionState.TRANSPORT_FAILED)
        session.record(credential, outcome, error)
        self.pool.mark_failed(credential.index, error)
        session.credential = None
        session.transport_failures += 1
        if session.transport_failures >= self.policy.max_transport_retries:
            raise error

        session.transition(SessionState.CREDENTIAL_ROTATION)
        if (
            self.pool.policy is SelectionPolicy.LEAST_FAILED
            and self.pool.available_count() == 0
            and self.policy.quota_cooldown > 0
        ):
            logger.warning(
                f"Mock {session.unit.index}: every key is over quota; "
                f"cooling down for {self.policy.quota_cooldown:.0f}s"
            )
            await self._sleep(self.policy.quota_cooldown)
        session.transition(SessionState.IDLE)

    async def _schedule_retry(
        self,
        session: _Session,
        credential: Credential,
        error: TransportError,
    ) -> None:
        session.transition(SessionState.TRANSPORT_FAILED)
        session.record(credential, AttemptOutcome.TRANSPORT_FAILURE, error)
        session.transport_failures += 1
        if not error.retriable or session.transport_failures >= self.policy.max_transport_retries:
            raise error

        delay = self.policy.backoff_delay(session.transport_failures)
        session.transition(SessionState.RETRY_SCHEDULED)
        logger.warning(
            f"Mock {session.unit.index}: {error.message} "
            f"(attempt {session.transport_failures}/{self.policy.max_transport_retries}). "
            f"Retrying in {delay:.1f}s..."
        )
        await self._sleep(delay)
        session.transition(SessionState.IDLE)

    # =========================================================================
    # Output
    # =========================================================================

    async def _render(self, document: dict[str, Any], unit: WorkUnit) -> list[Path]:
        if self.save_debug:
            await self._write_debug(unit, "", ".json", json.dumps(document, indent=2))

        outputs: list[Path] = []
        for renderer in self.renderers:
            path = Path(f"{unit.output_base}{renderer.suffix}")
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                await asyncio.to_thread(renderer.render, document, path)
            except Exception as e:
                raise RenderError(f"{type(renderer).__name__} failed for {path}: {e}") from e
            outputs.append(path)
        return outputs

    async def _write_debug(self, unit: WorkUnit, label: str, suffix: str, text: str) -> None:
        path = debug_path_for(unit.output_base, label, suffix)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(path.write_text, text, encoding="utf-8")
            logger.debug(f"Mock {unit.index}: saved {path}")
        except OSError as e:
            logger.warning(f"Mock {unit.index}: could not save debug file {path}: {e}")

    def _result(
        self,
        session: _Session,
        success: bool,
        outputs: list[Path] | None = None,
        document: dict[str, Any] | None = None,
        error: MockForgeError | None = None,
    ) -> WorkResult:
        return WorkResult(
            index=session.unit.index,
            success=success,
            output_paths=outputs or [],
            item_count=self.assembler.count_items(document) if document is not None else 0,
            error_kind=error.kind if error else None,
            error=error.message if error else None,
            suggested_action=error.suggested_action if error else None,
            credential_index=session.attempts[-1].credential_index if session.attempts else None,
            attempts=list(session.attempts),
            states=list(session.states),
            usage=session.usage,
            elapsed_seconds=time.monotonic() - session.started,
        )
