"""
release-orchestrator — stage scheduler

File: src/release_orchestrator/pipeline/scheduler.py

Purpose
- Drive the declared stage sequence for one run: evaluate gates, execute
  stage bodies in order, halt on the first fatal result, and guarantee the
  terminal steps (cleanup, archive, report) on every exit path.

Contract
- Stages run strictly sequentially in declared order; a stage begins only
  after the previous one completed.
- A stage whose gate is false is recorded as ``skipped`` without running.
- The first ``failed`` result ends the run as FAILED naming that stage;
  no later stage body executes.
- The whole run is bounded by one overall timeout. On expiry the in-flight
  stage is recorded as failed with ``timed_out`` set. A stage stays in flight
  until its stage-scoped cleanup has finished; cleanup cut off by the ceiling
  completes before the run-level cleanup starts.
- A fired cancel token ends the run as FAILED the same way, with the token's
  reason as the in-flight stage message, and the report is still returned.
- Cleanup runs exactly once for every registered resource, then the archive
  is written, then the notifier is called exactly once.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from release_orchestrator.domain.models import (
    PipelineRun,
    RunOutcome,
    ServiceInstance,
    ServiceKind,
    StageDefinition,
    StageOutcome,
    StageResult,
    StageStatus,
)
from release_orchestrator.observability.logging import correlation_scope
from release_orchestrator.pipeline.archive import RunArchive
from release_orchestrator.pipeline.cleanup import CleanupGuarantor, CleanupReport
from release_orchestrator.pipeline.gates import Gate, GateContext, should_run
from release_orchestrator.pipeline.notifier import Notifier
from release_orchestrator.pipeline.stages import StageContext
from release_orchestrator.utils.concurrency import CancellationToken, run_with_timeout


@dataclass(slots=True)
class _InFlight:
    definition: StageDefinition
    started_ns: int
    # Set once the body returned; the stage is then in its cleanup window.
    result: StageResult | None = None


@dataclass(frozen=True, slots=True)
class PlannedStage:
    name: str
    ordinal: int
    gate: Gate
    will_run: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "stage": self.name,
            "ordinal": self.ordinal,
            "gate": self.gate.describe(),
            "will_run": self.will_run,
        }


@dataclass(frozen=True, slots=True)
class RunReport:
    """Everything a caller needs after ``execute`` returns."""

    run: PipelineRun
    cleanup_reports: tuple[CleanupReport, ...] = ()
    archive_dir: Path | None = None
    report_text: str = ""
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.run.outcome is RunOutcome.SUCCEEDED


class StageScheduler:
    def __init__(
        self,
        definitions: Sequence[StageDefinition],
        *,
        cleanup: CleanupGuarantor,
        notifier: Notifier,
        archive: RunArchive | None = None,
        timeout_seconds: float,
        logger: Any | None = None,
    ) -> None:
        if not definitions:
            raise ValueError("at least one stage definition is required")
        ordinals = [definition.ordinal for definition in definitions]
        if ordinals != sorted(ordinals) or len(set(ordinals)) != len(ordinals):
            raise ValueError("stage definitions must have unique, ascending ordinals")
        names = [definition.name for definition in definitions]
        if len(set(names)) != len(names):
            raise ValueError("stage names must be unique")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._definitions = tuple(definitions)
        self._cleanup = cleanup
        self._notifier = notifier
        self._archive = archive
        self._timeout_seconds = timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._in_flight: _InFlight | None = None

    @property
    def definitions(self) -> tuple[StageDefinition, ...]:
        return self._definitions

    def plan(self, gate_context: GateContext) -> tuple[PlannedStage, ...]:
        """Gate evaluation for every stage, without executing anything."""

        return tuple(
            PlannedStage(
                name=definition.name,
                ordinal=definition.ordinal,
                gate=definition.gate,
                will_run=should_run(definition.gate, gate_context),
            )
            for definition in self._definitions
        )

    async def execute(
        self,
        context: StageContext,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> RunReport:
        run = context.run
        self._logger.info(
            "run_started",
            run_id=run.run_id,
            branch=run.branch,
            image=run.metadata.image_ref,
            params=run.params.as_mapping(),
        )
        archive_dir: Path | None = None
        report_text = ""
        with correlation_scope(run_id=run.run_id):
            try:
                await run_with_timeout(
                    self._run_stages(context),
                    timeout_seconds=self._timeout_seconds,
                    cancel_token=cancel_token,
                )
            except TimeoutError:
                self._record_timeout(run)
            except asyncio.CancelledError:
                # Only a fired token turns into a reported run; task cancellation propagates.
                if cancel_token is None or not cancel_token.is_cancelled:
                    raise
                self._record_interrupted(run, cancel_token.reason)
            finally:
                if not run.is_finished:
                    self._record_interrupted(run)
                await self._cleanup.run_all()
                if self._archive is not None:
                    archive_dir = self._archive.write(run, self._cleanup.reports)
                report_text = self._notifier.report(run, self._cleanup.reports)

        self._logger.info(
            "run_finished",
            run_id=run.run_id,
            outcome=run.outcome.value,
            failed_stage=run.failed_stage,
            duration_ms=run.duration_ms(),
        )
        return RunReport(
            run=run,
            cleanup_reports=self._cleanup.reports,
            archive_dir=archive_dir,
            report_text=report_text,
            warnings=tuple(
                f"{result.stage}: {result.message}"
                for result in run.results
                if result.status is StageStatus.WARNING
            ),
        )

    async def _run_stages(self, context: StageContext) -> None:
        run = context.run
        gate_context = GateContext(branch=run.branch, params=run.params.as_mapping())

        for definition in self._definitions:
            if not should_run(definition.gate, gate_context):
                reason = f"gate not satisfied: {definition.gate.describe()}"
                run.append(
                    StageResult(
                        stage=definition.name,
                        ordinal=definition.ordinal,
                        status=StageStatus.SKIPPED,
                        message=reason,
                    )
                )
                self._logger.info("stage_skipped", stage=definition.name, reason=reason)
                continue

            result = await self._run_one(definition, context.for_stage(definition.name))
            await self._cleanup.run_scope(definition.name)
            self._in_flight = None
            run.append(result)

            if result.status is StageStatus.FAILED:
                run.finish(RunOutcome.FAILED, failed_stage=definition.name)
                return

        run.finish(RunOutcome.SUCCEEDED)

    async def _run_one(self, definition: StageDefinition, context: StageContext) -> StageResult:
        if definition.cleanup is not None:
            self._cleanup.register(
                ServiceInstance(ServiceKind.STAGE_HOOK, definition.name),
                definition.cleanup,
                scope=definition.name,
            )

        started_ns = time.monotonic_ns()
        in_flight = self._in_flight = _InFlight(definition, started_ns)
        self._logger.info("stage_started", stage=definition.name, ordinal=definition.ordinal)
        with correlation_scope(stage=definition.name):
            try:
                outcome = await definition.action(context)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                self._logger.exception("stage_crashed", stage=definition.name)
                outcome = StageOutcome.failed(f"unexpected error: {type(exc).__name__}: {exc}")

        result = in_flight.result = StageResult.from_outcome(
            definition, outcome, duration_ms=_elapsed_ms(started_ns)
        )
        log = self._logger.error if result.status is StageStatus.FAILED else self._logger.info
        log(
            "stage_finished",
            stage=result.stage,
            status=result.status.value,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
            detail=result.message,
        )
        return result

    def _record_timeout(self, run: PipelineRun) -> None:
        message = f"pipeline timed out after {self._timeout_seconds:g}s"
        in_flight = self._in_flight
        self._in_flight = None
        if in_flight is None:
            # Expired between stages; blame the last stage that ran.
            last = run.results[-1].stage if run.results else self._definitions[0].name
            self._logger.error("run_timed_out", stage=last)
            if not run.is_finished:
                run.finish(RunOutcome.FAILED, failed_stage=last)
            return

        result = _cut_short(in_flight, message, timed_out=True)
        run.append(result)
        self._logger.error("run_timed_out", stage=result.stage, detail=result.message)
        run.finish(RunOutcome.FAILED, failed_stage=result.stage)

    def _record_interrupted(self, run: PipelineRun, reason: str = "interrupted") -> None:
        in_flight = self._in_flight
        self._in_flight = None
        if in_flight is not None:
            result = _cut_short(in_flight, reason, timed_out=False)
            run.append(result)
            stage = result.stage
        else:
            stage = run.results[-1].stage if run.results else self._definitions[0].name
        self._logger.error("run_interrupted", stage=stage)
        run.finish(RunOutcome.FAILED, failed_stage=stage)


def _cut_short(in_flight: _InFlight, message: str, *, timed_out: bool) -> StageResult:
    """Failed result for a stage stopped in its body or in its cleanup window."""

    definition = in_flight.definition
    finished = in_flight.result
    if finished is not None:
        message = (
            f"{message} during stage cleanup "
            f"(stage had {finished.status.value}: {finished.message})"
        )
    return StageResult(
        stage=definition.name,
        ordinal=definition.ordinal,
        status=StageStatus.FAILED,
        exit_code=finished.exit_code if finished is not None else None,
        output=finished.output if finished is not None else "",
        message=message,
        duration_ms=_elapsed_ms(in_flight.started_ns),
        timed_out=timed_out,
    )


def _elapsed_ms(started_ns: int) -> int:
    return max(0, (time.monotonic_ns() - started_ns) // 1_000_000)


__all__ = ["PlannedStage", "RunReport", "StageScheduler"]
