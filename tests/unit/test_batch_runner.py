"""
Unit tests for the batch runner.
"""

import asyncio

import pytest

from conftest import FakeClient, SleepRecorder, make_exam
from mockforge.credentials.pool import CredentialPool
from mockforge.errors import ErrorKind, TransportError
from mockforge.generation.assembler import ResponseAssembler
from mockforge.generation.backoff import RetryPolicy
from mockforge.generation.batch import BatchRunner, build_work_units
from mockforge.generation.client import GenerationOptions
from mockforge.generation.orchestrator import GenerationOrchestrator, WorkResult
from mockforge.generation.schema import EXAM_SCHEMA
from mockforge.sources import ContentPart

KEYS = ["AIzaTestKey00000", "AIzaTestKey00001", "AIzaTestKey00002"]
CONTENTS = [ContentPart.from_text("system"), ContentPart.from_text("make a mock")]


def build_runner(client, keys=1, concurrency=1, sleep=None, retries=1, backoff_sleep=None):
    pool = CredentialPool(KEYS[:keys])
    orchestrator = GenerationOrchestrator(
        pool=pool,
        client=client,
        assembler=ResponseAssembler(EXAM_SCHEMA),
        options=GenerationOptions(),
        policy=RetryPolicy(max_transport_retries=retries),
        target_items=5,
        sleep=backoff_sleep or SleepRecorder(),
    )
    runner = BatchRunner(orchestrator, pool, concurrency=concurrency, batch_pause=0.5, sleep=sleep or SleepRecorder())
    return runner, pool


class TestBuildWorkUnits:
    """Tests for work unit numbering."""

    def test_single_mock_keeps_name(self, tmp_path):
        """One mock is written under the given name."""
        units = build_work_units(1, tmp_path / "cat.pptx", CONTENTS)
        assert [u.output_base.name for u in units] == ["cat"]

    def test_padded_ordinals(self, tmp_path):
        """Several mocks get zero-padded suffixes."""
        units = build_work_units(12, tmp_path / "cat", CONTENTS)

        assert [u.index for u in units] == list(range(1, 13))
        assert units[0].output_base.name == "cat_01"
        assert units[-1].output_base.name == "cat_12"

    def test_units_do_not_share_follow_ups(self, tmp_path):
        """Each unit keeps its own continuation history."""
        units = build_work_units(2, tmp_path / "cat", CONTENTS)
        units[0].follow_ups.append("continue")
        assert units[1].follow_ups == []


class TestBatchRunner:
    """Tests for BatchRunner.run."""

    def test_effective_concurrency(self):
        """Concurrency is capped by key count and batch size."""
        runner, _ = build_runner(FakeClient([]), keys=2, concurrency=5)

        assert runner.effective_concurrency(10) == 2
        assert runner.effective_concurrency(1) == 1

    @pytest.mark.asyncio
    async def test_failure_isolated(self, tmp_path):
        """One failing mock does not affect the others."""
        client = FakeClient([
            make_exam(5),
            TransportError("400 bad request", retriable=False),
            make_exam(5),
        ])
        sleep = SleepRecorder()
        runner, _ = build_runner(client, keys=1, concurrency=1, sleep=sleep)

        summary = await runner.run(build_work_units(3, tmp_path / "mock", CONTENTS))

        assert [r.index for r in summary.results] == [1, 2, 3]
        assert [r.success for r in summary.results] == [True, False, True]
        assert len(summary.succeeded) == 2
        assert summary.results[1].error_kind is ErrorKind.TRANSPORT
        assert summary.all_failed is False
        assert sleep.delays == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_retries_exhausted_isolated(self, tmp_path):
        """A mock that runs out of transport retries fails alone."""
        client = FakeClient([
            make_exam(5),
            TransportError("503 unavailable"),
            TransportError("503 unavailable"),
            TransportError("503 unavailable"),
            make_exam(5),
        ])
        backoff = SleepRecorder()
        runner, pool = build_runner(client, retries=3, backoff_sleep=backoff)

        summary = await runner.run(build_work_units(3, tmp_path / "mock", CONTENTS))

        assert [r.success for r in summary.results] == [True, False, True]
        assert summary.results[1].error_kind is ErrorKind.TRANSPORT
        assert backoff.delays == [1.0, 1.5]
        assert len(client.requests) == 5
        assert pool.available_count() == 1

    @pytest.mark.asyncio
    async def test_all_failed(self, tmp_path):
        """A batch with no success reports all_failed."""
        client = FakeClient([TransportError("400", retriable=False)] * 2)
        runner, _ = build_runner(client)

        summary = await runner.run(build_work_units(2, tmp_path / "mock", CONTENTS))

        assert summary.all_failed is True
        assert len(summary.failed) == 2

    @pytest.mark.asyncio
    async def test_results_ordered_by_index(self, tmp_path):
        """Results come back in mock order whatever the completion order."""

        class SlowFirstClient:
            async def generate(self, request):
                if "mock 1" in request.contents[-1].text:
                    await asyncio.sleep(0.05)
                return await FakeClient([make_exam(5)]).generate(request)

        pool = CredentialPool(KEYS[:2])
        orchestrator = GenerationOrchestrator(
            pool=pool,
            client=SlowFirstClient(),
            assembler=ResponseAssembler(EXAM_SCHEMA),
            options=GenerationOptions(),
            target_items=5,
        )
        runner = BatchRunner(orchestrator, pool, concurrency=2)
        units = build_work_units(2, tmp_path / "mock", CONTENTS)
        for i, unit in enumerate(units, start=1):
            unit.contents = (*unit.contents, ContentPart.from_text(f"mock {i}"))

        summary = await runner.run(list(reversed(units)))

        assert summary.concurrency == 2
        assert [r.index for r in summary.results] == [1, 2]
        assert all(r.success for r in summary.results)

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_failed_result(self, tmp_path):
        """An exception escaping a session is reported for that mock only."""
        runner, _ = build_runner(FakeClient([]))

        async def explode(unit):
            raise RuntimeError("boom")

        runner.orchestrator.run = explode
        summary = await runner.run(build_work_units(1, tmp_path / "mock", CONTENTS))

        result = summary.results[0]
        assert isinstance(result, WorkResult)
        assert result.success is False
        assert result.error_kind is ErrorKind.UNEXPECTED
        assert "boom" in result.error

    @pytest.mark.asyncio
    async def test_usage_aggregated(self, tmp_path):
        """Token usage is summed across mocks."""
        client = FakeClient([make_exam(5), make_exam(5)])
        runner, _ = build_runner(client)

        summary = await runner.run(build_work_units(2, tmp_path / "mock", CONTENTS))

        assert summary.usage.prompt_tokens == 200
        assert summary.usage.output_tokens == 100
