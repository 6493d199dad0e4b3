"""
release-orchestrator — pipeline assembly

File: src/release_orchestrator/pipeline/runner.py

Purpose
- Turn validated settings plus the ambient environment into a ready-to-run
  scheduler, and run it.

Every collaborator with side effects (executor, sleep, environment, report
callback) is injectable so the whole pipeline can be driven by fakes.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from release_orchestrator.config.settings import PipelineSettings
from release_orchestrator.constants import ENV_BRANCH_NAME, ENV_BUILD_NUMBER, ENV_GIT_COMMIT
from release_orchestrator.domain.ids import generate_run_id
from release_orchestrator.domain.models import PipelineRun, StageAction
from release_orchestrator.execution.docker import DockerCli
from release_orchestrator.execution.executor import CommandExecutor, LocalSubprocessExecutor
from release_orchestrator.pipeline.archive import RunArchive
from release_orchestrator.pipeline.cleanup import CleanupGuarantor
from release_orchestrator.pipeline.gates import GateContext
from release_orchestrator.pipeline.metadata import resolve_metadata, resolve_parameters
from release_orchestrator.pipeline.notifier import (
    CallbackSink,
    FileSink,
    LogSink,
    Notifier,
    ReportSink,
)
from release_orchestrator.pipeline.publisher import ArtifactPublisher
from release_orchestrator.pipeline.scheduler import PlannedStage, RunReport, StageScheduler
from release_orchestrator.pipeline.stages import (
    ProbeFactory,
    StageContext,
    build_stage_definitions,
    default_probe_factory,
)
from release_orchestrator.security.credentials import CredentialAccessor
from release_orchestrator.utils.concurrency import CancellationToken
from release_orchestrator.verification.health import HealthVerifier, SleepFn


@dataclass(frozen=True, slots=True)
class RunRequest:
    """Per-invocation inputs that override the ambient environment."""

    branch: str | None = None
    commit: str | None = None
    build_number: str | None = None
    push_image: bool | None = None
    deploy: bool | None = None
    compose_file: str | None = None
    run_id: str | None = None

    def apply(self, environ: Mapping[str, str]) -> dict[str, str]:
        merged = dict(environ)
        for key, value in (
            (ENV_BRANCH_NAME, self.branch),
            (ENV_GIT_COMMIT, self.commit),
            (ENV_BUILD_NUMBER, self.build_number),
        ):
            if value is not None:
                merged[key] = value
        return merged


class PipelineRunner:
    def __init__(
        self,
        settings: PipelineSettings,
        *,
        environ: Mapping[str, str] | None = None,
        executor: CommandExecutor | None = None,
        sleep: SleepFn | None = None,
        probe_factory: ProbeFactory | None = None,
        report_callback: Callable[[str], None] | None = None,
        actions: Mapping[str, StageAction] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings
        self._environ = environ if environ is not None else os.environ
        self._executor = executor or LocalSubprocessExecutor(
            default_timeout_seconds=settings.commands.timeout_seconds,
            default_cwd=settings.workspace,
        )
        self._sleep = sleep
        self._probe_factory = probe_factory or default_probe_factory(
            self._executor,
            max_time_seconds=settings.verification.probe_timeout_seconds,
        )
        self._report_callback = report_callback
        self._actions = dict(actions or {})
        self._logger = logger

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    def prepare(self, request: RunRequest | None = None) -> PipelineRun:
        """Resolve metadata and parameters once; raises ``ParameterError`` on bad input."""

        request = request or RunRequest()
        env = request.apply(self._environ)
        settings = self._settings
        metadata = resolve_metadata(
            env,
            image_name=settings.registry.image_name,
            registry_host=settings.registry.host,
        )
        params = resolve_parameters(
            env,
            topologies=settings.compose.topologies,
            push_image=request.push_image,
            deploy=request.deploy,
            compose_file=request.compose_file,
        )
        return PipelineRun(
            run_id=request.run_id or generate_run_id(),
            metadata=metadata,
            params=params,
        )

    def plan(self, run: PipelineRun) -> tuple[PlannedStage, ...]:
        scheduler = self._scheduler(CleanupGuarantor(logger=self._logger), Notifier(()))
        return scheduler.plan(GateContext(branch=run.branch, params=run.params.as_mapping()))

    async def run(
        self,
        run: PipelineRun,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> RunReport:
        settings = self._settings
        cleanup = CleanupGuarantor(logger=self._logger)
        docker = DockerCli(
            self._executor,
            binary=settings.runtime.docker_binary,
            cwd=str(settings.workspace),
            timeout_seconds=settings.commands.timeout_seconds,
        )
        publisher = ArtifactPublisher(
            docker,
            username_name=settings.registry.username_env,
            password_name=settings.registry.password_env,
            latest_branches=settings.latest_branches,
            push_latest=settings.registry.push_latest,
            logger=self._logger,
        )
        context = StageContext(
            run=run,
            settings=settings,
            executor=self._executor,
            docker=docker,
            verifier=HealthVerifier(sleep=self._sleep, logger=self._logger),
            credentials=CredentialAccessor(self._environ, logger=self._logger),
            cleanup=cleanup,
            publisher=publisher,
            probe_factory=self._probe_factory,
        )
        scheduler = self._scheduler(cleanup, Notifier(self._sinks(), logger=self._logger))
        return await scheduler.execute(context, cancel_token=cancel_token)

    def _sinks(self) -> list[ReportSink]:
        sinks: list[ReportSink] = [LogSink(self._logger)]
        if self._settings.observability.report_file:
            sinks.append(FileSink(self._settings.artifacts_dir))
        if self._report_callback is not None:
            sinks.append(CallbackSink(self._report_callback, name="console"))
        return sinks

    def _scheduler(self, cleanup: CleanupGuarantor, notifier: Notifier) -> StageScheduler:
        return StageScheduler(
            build_stage_definitions(self._settings, actions=self._actions),
            cleanup=cleanup,
            notifier=notifier,
            archive=RunArchive(self._settings.artifacts_dir, logger=self._logger),
            timeout_seconds=self._settings.timeout_seconds,
            logger=self._logger,
        )


__all__ = ["PipelineRunner", "RunRequest"]
