"""
Batch runner: generate N mocks with bounded concurrency.

Mocks run in groups of ``C = min(concurrency, key count, N)``. All sessions
of a group run concurrently and the group waits for every one to settle
before pausing and starting the next. One mock failing never affects its
siblings; results come back in mock order regardless of completion order.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from mockforge.credentials.pool import CredentialPool
from mockforge.generation.client import UsageStats
from mockforge.generation.orchestrator import GenerationOrchestrator, WorkResult, WorkUnit
from mockforge.sources import ContentPart, output_base_for


@dataclass
class BatchSummary:
    """Aggregated outcome of a batch."""

    results: list[WorkResult] = field(default_factory=list)
    concurrency: int = 1
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> list[WorkResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[WorkResult]:
        return [r for r in self.results if not r.success]

    @property
    def all_failed(self) -> bool:
        return not self.succeeded

    @property
    def usage(self) -> UsageStats:
        total = UsageStats()
        for result in self.results:
            total.add(result.usage)
        return total


def build_work_units(
    count: int,
    output: str | Path,
    contents: Sequence[ContentPart],
) -> list[WorkUnit]:
    """One work unit per requested mock, numbered from 1."""
    return [
        WorkUnit(index=i, output_base=output_base_for(output, i, count), contents=tuple(contents))
        for i in range(1, count + 1)
    ]


class BatchRunner:
    """Runs generation sessions in paced, bounded-concurrency groups."""

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        pool: CredentialPool,
        concurrency: int = 1,
        batch_pause: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.orchestrator = orchestrator
        self.pool = pool
        self.concurrency = concurrency
        self.batch_pause = batch_pause
        self._sleep = sleep

    def effective_concurrency(self, total: int) -> int:
        return max(1, min(self.concurrency, len(self.pool), total))

    async def run(self, units: Sequence[WorkUnit]) -> BatchSummary:
        """
        Run every work unit to a terminal state.

        Args:
            units: Work units, any order

        Returns:
            Summary with results in work-unit index order
        """
        started = time.monotonic()
        size = self.effective_concurrency(len(units))
        batches = [list(units[i:i + size]) for i in range(0, len(units), size)]
        logger.info(
            f"Generating {len(units)} mock(s) with concurrency {size} "
            f"across {len(self.pool)} key(s)"
        )

        results: dict[int, WorkResult] = {}
        for number, batch in enumerate(batches, start=1):
            if len(batches) > 1:
                logger.info(
                    f"Batch {number}/{len(batches)}: mocks "
                    f"{', '.join(str(u.index) for u in batch)}"
                )
            outcomes = await asyncio.gather(
                *(self.orchestrator.run(unit) for unit in batch),
                return_exceptions=True,
            )
            for unit, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.opt(exception=outcome).error(f"Mock {unit.index}: unexpected error")
                    outcome = WorkResult.failed(unit.index, outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                results[unit.index] = outcome

            if number < len(batches) and self.batch_pause > 0:
                await self._sleep(self.batch_pause)

        summary = BatchSummary(
            results=[results[i] for i in sorted(results)],
            concurrency=size,
            elapsed_seconds=time.monotonic() - started,
        )
        logger.info(
            f"Batch finished: {len(summary.succeeded)} succeeded, "
            f"{len(summary.failed)} failed in {summary.elapsed_seconds:.1f}s"
        )
        return summary
