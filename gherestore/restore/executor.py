# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Plan Executor - Runs a RestorePlan stage by stage.

Outside the parallel region a failing step aborts the run at once. Inside
it, parallel mode lets every started sibling finish and reports all of
them before failing; sequential mode stops at the first failure. Soft
steps never fail the run.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List

import structlog

from gherestore.exceptions import RestoreError, StepFailure
from gherestore.restore.plan import RestorePlan, RestoreStep

logger = structlog.get_logger()


@dataclass(frozen=True)
class StepResult:
    """Outcome of one executed step."""

    name: str
    ok: bool
    soft: bool
    duration_seconds: float
    error: str | None = None
    output: str = ""


StepCallback = Callable[[StepResult], Awaitable[None]]


class _StepError(Exception):
    """Carries the failed result alongside the original exception."""

    def __init__(self, result: StepResult, cause: BaseException):
        super().__init__(result.error)
        self.result = result
        self.cause = cause


async def _run_step(step: RestoreStep, ctx: Any) -> StepResult:
    logger.info("step_started", step=step.name, description=step.description)
    start = time.monotonic()

    try:
        await step.action(ctx)
    except Exception as e:
        duration = time.monotonic() - start
        output = e.output if isinstance(e, StepFailure) else ""
        message = e.message if isinstance(e, RestoreError) else str(e)
        result = StepResult(step.name, False, step.soft, duration, message, output)

        if step.soft:
            logger.warning("step_failed_soft", step=step.name, error=message, output=output)
            return result

        logger.error("step_failed", step=step.name, error=message, output=output)
        raise _StepError(result, e)

    duration = time.monotonic() - start
    logger.info("step_finished", step=step.name, duration=round(duration, 3))
    return StepResult(step.name, True, step.soft, duration)


def _as_failure(error: _StepError) -> RestoreError:
    """
    Translate a step error into what the caller sees.

    Step failures are re-labelled with the step name. Other orchestrator
    errors (lost connection, status misuse) pass through unchanged.
    """
    cause = error.cause
    if isinstance(cause, RestoreError) and not isinstance(cause, StepFailure):
        return cause
    return StepFailure(
        f"Step {error.result.name} failed: {error.result.error}",
        details=getattr(cause, "details", {}),
        steps=[error.result.name],
        output=error.result.output,
    )


class PlanExecutor:
    """
    Executes a plan against a restore context.

    Args:
        parallel: Run the parallel region concurrently
        max_jobs: Worker limit for the parallel region
        on_step: Awaited with every StepResult as it is produced
    """

    def __init__(
        self,
        parallel: bool = False,
        max_jobs: int = 1,
        on_step: StepCallback | None = None,
    ):
        if max_jobs < 1:
            raise ValueError(f"max_jobs must be >= 1, got {max_jobs}")
        self.parallel = parallel
        self.max_jobs = max_jobs
        self.on_step = on_step
        self.results: List[StepResult] = []

    async def _record(self, result: StepResult) -> None:
        self.results.append(result)
        if self.on_step is not None:
            await self.on_step(result)

    async def _run_single(self, step: RestoreStep, ctx: Any) -> None:
        try:
            result = await _run_step(step, ctx)
        except _StepError as e:
            await self._record(e.result)
            raise _as_failure(e) from e.cause
        await self._record(result)

    async def _run_region(self, steps: List[RestoreStep], ctx: Any) -> None:
        if not self.parallel or len(steps) == 1:
            for step in steps:
                await self._run_single(step, ctx)
            return

        semaphore = asyncio.Semaphore(self.max_jobs)
        logger.info("parallel_region_started", steps=[s.name for s in steps], max_jobs=self.max_jobs)

        async def bounded(step: RestoreStep) -> StepResult:
            async with semaphore:
                try:
                    result = await _run_step(step, ctx)
                except _StepError as e:
                    await self._record(e.result)
                    raise
                await self._record(result)
                return result

        outcomes = await asyncio.gather(*(bounded(s) for s in steps), return_exceptions=True)

        errors = [o for o in outcomes if isinstance(o, BaseException)]
        step_errors = [e for e in errors if isinstance(e, _StepError)]
        unexpected = [e for e in errors if not isinstance(e, _StepError)]
        if unexpected:
            raise unexpected[0]

        passthrough = [_as_failure(e) for e in step_errors]
        non_step = [e for e in passthrough if not isinstance(e, StepFailure)]
        if non_step:
            raise non_step[0]

        if step_errors:
            failed = [e.result.name for e in step_errors]
            raise StepFailure(
                f"{len(failed)} parallel step(s) failed: {', '.join(failed)}",
                details={"errors": {e.result.name: e.result.error for e in step_errors}},
                steps=failed,
                output="\n".join(
                    f"[{e.result.name}] {e.result.output}" for e in step_errors if e.result.output
                ),
            )

    async def execute(self, plan: RestorePlan, ctx: Any) -> List[StepResult]:
        """
        Run every stage of the plan in order.

        Returns:
            StepResult for every executed step

        Raises:
            StepFailure: If a non-soft step failed
        """
        for stage in plan.stages():
            if stage[0].concurrent:
                await self._run_region(stage, ctx)
            else:
                await self._run_single(stage[0], ctx)
        return list(self.results)
