"""
Unit tests for the generation orchestrator state machine.
"""

import pytest

from conftest import FakeClient, FakeRenderer, SleepRecorder, make_exam
from mockforge.credentials.pool import CredentialPool
from mockforge.credentials.quota import QuotaEstimator
from mockforge.errors import CredentialRejected, ErrorKind, QuotaError, TransportError
from mockforge.generation.assembler import ResponseAssembler
from mockforge.generation.backoff import RetryPolicy
from mockforge.generation.client import GenerationOptions
from mockforge.generation.orchestrator import (
    AttemptOutcome,
    GenerationOrchestrator,
    SessionState,
    WorkUnit,
)
from mockforge.generation.prompts import CLARIFICATION_PROMPT, continuation_instruction
from mockforge.generation.schema import EXAM_SCHEMA
from mockforge.sources import ContentPart, build_request_contents

KEYS = ["AIzaTestKey00000", "AIzaTestKey00001", "AIzaTestKey00002"]


@pytest.fixture
def unit(tmp_path):
    contents = build_request_contents(
        "system prompt",
        [ContentPart.from_text("[pyq.txt]\nQ1. 2 + 2 = ?")],
        [],
        "Create a quantitative mock",
    )
    return WorkUnit(index=1, output_base=tmp_path / "mock", contents=tuple(contents))


def build_orchestrator(
    client,
    keys=2,
    selection="round_robin",
    renderers=(),
    target_items=10,
    policy=None,
    sleep=None,
    estimator=None,
    **kwargs,
):
    pool = CredentialPool(KEYS[:keys], policy=selection, failure_threshold=1, estimator=estimator)
    orchestrator = GenerationOrchestrator(
        pool=pool,
        client=client,
        assembler=ResponseAssembler(EXAM_SCHEMA),
        options=GenerationOptions(),
        renderers=renderers,
        policy=policy or RetryPolicy(),
        target_items=target_items,
        sleep=sleep or SleepRecorder(),
        **kwargs,
    )
    return orchestrator, pool


class TestCompletion:
    """Tests for the happy path."""

    @pytest.mark.asyncio
    async def test_single_response_completes(self, unit):
        """A full response is rendered once and credited to its key."""
        client = FakeClient([make_exam(10)])
        renderer = FakeRenderer()
        orchestrator, pool = build_orchestrator(client, renderers=[renderer])

        result = await orchestrator.run(unit)

        assert result.success is True
        assert result.item_count == 10
        assert result.final_state is SessionState.COMPLETE
        assert result.requests == 1
        assert result.retries == 0
        assert len(renderer.rendered) == 1
        assert result.output_paths == [unit.output_base.with_name("mock.fake")]
        assert result.output_paths[0].exists()
        assert pool.get(0).usage_count == 1
        assert pool.get(0).failure_count == 0
        assert pool.get(0).total_tokens == 100

    @pytest.mark.asyncio
    async def test_continuation_requests_remaining_items(self, unit):
        """A short response asks for the rest on the same key."""
        client = FakeClient([make_exam(90), make_exam(60, start=91)])
        orchestrator, pool = build_orchestrator(client, target_items=150)

        result = await orchestrator.run(unit)

        assert result.success is True
        assert result.item_count == 150
        assert result.continuations == 1
        assert client.follow_ups(2) == [continuation_instruction(60, 91)]
        assert "60" in client.follow_ups(2)[0]
        assert "91" in client.follow_ups(2)[0]
        assert client.requests[0].api_key == client.requests[1].api_key
        assert SessionState.NEEDS_CONTINUATION in result.states
        assert result.usage.prompt_tokens == 200

    @pytest.mark.asyncio
    async def test_malformed_then_valid(self, unit):
        """An unparseable response triggers one clarification on the same key."""
        client = FakeClient(["Sorry, here is the mock: not json", make_exam(10)])
        orchestrator, pool = build_orchestrator(client)

        result = await orchestrator.run(unit)

        assert result.success is True
        assert result.requests == 2
        assert result.retries == 1
        assert result.attempts[0].outcome is AttemptOutcome.PARSE_FAILURE
        assert client.follow_ups(2) == [CLARIFICATION_PROMPT]
        assert client.requests[0].api_key == client.requests[1].api_key
        assert SessionState.PARSE_FAILED in result.states
        assert result.final_state is SessionState.COMPLETE

    @pytest.mark.asyncio
    async def test_schema_violation_names_problem(self, unit):
        """A structural problem is described in the clarification."""
        client = FakeClient([{"examTitle": "Mock"}, make_exam(10)])
        orchestrator, _ = build_orchestrator(client)

        result = await orchestrator.run(unit)

        assert result.success is True
        assert result.attempts[0].outcome is AttemptOutcome.SCHEMA_VIOLATION
        assert client.follow_ups(2)[0].startswith("The previous response did not follow")
        assert "examDetails" in client.follow_ups(2)[0]


class TestCredentialFailures:
    """Tests for quota and key rejection handling."""

    @pytest.mark.asyncio
    async def test_quota_rotates_to_next_key(self, unit):
        """A quota failure excludes the key and retries at once on another."""
        client = FakeClient([QuotaError("429 RESOURCE_EXHAUSTED"), make_exam(10)])
        sleep = SleepRecorder()
        orchestrator, pool = build_orchestrator(client, sleep=sleep)

        result = await orchestrator.run(unit)

        assert result.success is True
        assert client.requests[0].api_key == KEYS[0]
        assert client.requests[1].api_key == KEYS[1]
        assert result.attempts[0].outcome is AttemptOutcome.QUOTA_FAILURE
        assert result.credential_index == 1
        assert not pool.is_usable(pool.get(0))
        assert SessionState.CREDENTIAL_ROTATION in result.states
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_rejected_key_rotates(self, unit):
        """A rejected key is treated like a quota failure for rotation."""
        client = FakeClient([CredentialRejected("API key not valid"), make_exam(10)])
        orchestrator, pool = build_orchestrator(client)

        result = await orchestrator.run(unit)

        assert result.success is True
        assert result.attempts[0].outcome is AttemptOutcome.CREDENTIAL_REJECTED
        assert pool.get(0).last_error == "API key not valid"

    @pytest.mark.asyncio
    async def test_single_key_exhausted(self, unit):
        """With round robin and one key a quota failure ends the session."""
        client = FakeClient([QuotaError("429")])
        orchestrator, _ = build_orchestrator(client, keys=1)

        result = await orchestrator.run(unit)

        assert result.success is False
        assert result.error_kind is ErrorKind.CREDENTIALS_EXHAUSTED
        assert result.final_state is SessionState.TERMINAL_FAILURE
        assert result.suggested_action

    @pytest.mark.asyncio
    async def test_least_failed_cools_down_and_heals(self, unit):
        """When every key is over quota the session waits, then reuses them."""
        client = FakeClient([QuotaError("429"), make_exam(10)])
        sleep = SleepRecorder()
        orchestrator, pool = build_orchestrator(
            client,
            keys=1,
            selection="least_failed",
            policy=RetryPolicy(quota_cooldown=60.0),
            sleep=sleep,
        )

        result = await orchestrator.run(unit)

        assert result.success is True
        assert sleep.delays == [60.0]
        assert pool.get(0).failure_count == 0

    @pytest.mark.asyncio
    async def test_quota_aware_picks_key_with_headroom(self, unit):
        """Proactive selection skips a key whose window is full."""
        estimator = QuotaEstimator(tokens_per_window=10_000)
        client = FakeClient([make_exam(10)])
        orchestrator, pool = build_orchestrator(client, estimator=estimator, quota_aware=True)
        pool.record_tokens(0, 10_000)

        result = await orchestrator.run(unit)

        assert result.success is True
        assert client.requests[0].api_key == KEYS[1]


class TestTransportFailures:
    """Tests for backoff and retry limits."""

    @pytest.mark.asyncio
    async def test_backoff_then_success(self, unit):
        """Transient failures back off exponentially on the same key."""
        client = FakeClient([TransportError("503"), TransportError("503"), make_exam(10)])
        sleep = SleepRecorder()
        policy = RetryPolicy(max_transport_retries=3, backoff_base=1.0, backoff_multiplier=2.0)
        orchestrator, pool = build_orchestrator(client, policy=policy, sleep=sleep)

        result = await orchestrator.run(unit)

        assert result.success is True
        assert sleep.delays == [1.0, 2.0]
        assert {r.api_key for r in client.requests} == {KEYS[0]}
        assert result.retries == 2
        assert SessionState.RETRY_SCHEDULED in result.states
        assert pool.get(0).failure_count == 0

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, unit):
        """The session fails after max_transport_retries failures."""
        client = FakeClient([TransportError("timeout")] * 3)
        sleep = SleepRecorder()
        orchestrator, _ = build_orchestrator(client, policy=RetryPolicy(max_transport_retries=3), sleep=sleep)

        result = await orchestrator.run(unit)

        assert result.success is False
        assert result.error_kind is ErrorKind.TRANSPORT
        assert result.requests == 3
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_non_retriable_fails_immediately(self, unit):
        """A bad request is not retried."""
        client = FakeClient([TransportError("400 INVALID_ARGUMENT", status_code=400, retriable=False)])
        orchestrator, _ = build_orchestrator(client)

        result = await orchestrator.run(unit)

        assert result.success is False
        assert result.requests == 1


class TestLimits:
    """Tests for continuation and parse retry ceilings."""

    @pytest.mark.asyncio
    async def test_incomplete_document(self, unit):
        """Too few items after the continuation limit is a terminal failure."""
        client = FakeClient([make_exam(10), make_exam(10, start=11), make_exam(10, start=21)])
        renderer = FakeRenderer()
        orchestrator, _ = build_orchestrator(
            client,
            renderers=[renderer],
            target_items=100,
            policy=RetryPolicy(max_continuation_attempts=3),
        )

        result = await orchestrator.run(unit)

        assert result.success is False
        assert result.error_kind is ErrorKind.INCOMPLETE_DOCUMENT
        assert result.requests == 3
        assert renderer.rendered == []

    @pytest.mark.asyncio
    async def test_parse_failures_exhausted(self, unit):
        """Repeated garbage ends in a malformed response failure."""
        client = FakeClient(["garbage", "more garbage"])
        orchestrator, pool = build_orchestrator(client, policy=RetryPolicy(max_continuation_attempts=2))

        result = await orchestrator.run(unit)

        assert result.success is False
        assert result.error_kind is ErrorKind.MALFORMED_RESPONSE
        assert result.requests == 2
        assert pool.is_usable(pool.get(0))


class TestOutput:
    """Tests for rendering and debug output."""

    @pytest.mark.asyncio
    async def test_render_failure(self, unit):
        """A renderer exception becomes a render error."""
        client = FakeClient([make_exam(10)])
        orchestrator, _ = build_orchestrator(client, renderers=[FakeRenderer(fail=True)])

        result = await orchestrator.run(unit)

        assert result.success is False
        assert result.error_kind is ErrorKind.RENDER
        assert "disk full" in result.error

    @pytest.mark.asyncio
    async def test_save_debug_writes_raw_and_assembled(self, unit):
        """Debug mode keeps every raw response and the final document."""
        client = FakeClient(["not json", make_exam(10)])
        orchestrator, _ = build_orchestrator(client, save_debug=True)

        result = await orchestrator.run(unit)

        folder = unit.output_base.parent
        assert result.success is True
        assert (folder / "mock_debug_attempt1.txt").read_text(encoding="utf-8") == "not json"
        assert (folder / "mock_debug_attempt2.txt").exists()
        assert (folder / "mock_debug.json").exists()

    @pytest.mark.asyncio
    async def test_request_pacing(self, unit):
        """Pacing is spread across the available keys."""
        client = FakeClient([make_exam(10)])
        sleep = SleepRecorder()
        orchestrator, _ = build_orchestrator(client, policy=RetryPolicy(request_pacing=2.0), sleep=sleep)

        await orchestrator.run(unit)

        assert sleep.delays == [1.0]
