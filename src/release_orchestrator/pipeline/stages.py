"""
release-orchestrator — stage bodies

File: src/release_orchestrator/pipeline/stages.py

Purpose
- The eight pipeline stages, each an async function from ``StageContext`` to
  ``StageOutcome``, plus the declared stage table.

Contract
- A stage reports failure through ``StageOutcome.failed``; it raises only on
  programming or environment errors, which the scheduler records as failures.
- Optional tooling that is absent or failing yields ``StageOutcome.warning``.
- Resources a stage creates are registered with the cleanup guarantor before
  they are created, under the stage's scope.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from release_orchestrator.config.settings import PipelineSettings
from release_orchestrator.constants import (
    BUILD_STAGE,
    CHECKOUT_STAGE,
    DEPLOY_STAGE,
    INSTALL_STAGE,
    LINT_STAGE,
    PUBLISH_STAGE,
    STAGE_IDS_IN_ORDER,
    VERIFY_COMPOSE_STAGE,
    VERIFY_CONTAINER_STAGE,
)
from release_orchestrator.domain.ids import short_id
from release_orchestrator.domain.models import (
    PipelineRun,
    ServiceInstance,
    ServiceKind,
    StageAction,
    StageDefinition,
    StageOutcome,
)
from release_orchestrator.execution.docker import DockerCli
from release_orchestrator.execution.executor import (
    CommandExecutor,
    CommandResult,
    CommandSpec,
    ExitCondition,
    render_transcript,
)
from release_orchestrator.pipeline.cleanup import CleanupGuarantor
from release_orchestrator.pipeline.compose import ComposeFileError, ComposeStack, project_name
from release_orchestrator.pipeline.gates import default_gate_table
from release_orchestrator.pipeline.publisher import ArtifactPublisher, PublishStatus
from release_orchestrator.security.credentials import CredentialAccessor
from release_orchestrator.verification.health import (
    CommandProbe,
    HealthOutcome,
    HealthVerifier,
    Probe,
)

ProbeFactory = Callable[[str], Probe]

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class StageContext:
    """Collaborators handed to every stage body. ``stage`` is the running stage's name."""

    run: PipelineRun
    settings: PipelineSettings
    executor: CommandExecutor
    docker: DockerCli
    verifier: HealthVerifier
    credentials: CredentialAccessor
    cleanup: CleanupGuarantor
    publisher: ArtifactPublisher
    probe_factory: ProbeFactory
    stage: str = ""

    def for_stage(self, name: str) -> StageContext:
        return dataclasses.replace(self, stage=name)

    @property
    def workspace(self) -> str:
        return str(self.settings.workspace)


def default_probe_factory(executor: CommandExecutor, *, max_time_seconds: int) -> ProbeFactory:
    def factory(url: str) -> Probe:
        return CommandProbe(executor, url, max_time_seconds=max_time_seconds)

    return factory


def transcript(*results: CommandResult) -> str:
    return render_transcript(results)


def outcome_from_command(result: CommandResult, *, action: str) -> StageOutcome:
    output = transcript(result)
    if result.succeeded:
        return StageOutcome.passed(f"{action} succeeded", exit_code=result.exit_code, output=output)
    return StageOutcome.failed(
        f"{action} failed: {result.describe()}",
        exit_code=result.exit_code,
        output=output,
        timed_out=result.condition is ExitCondition.TIMEOUT,
    )


async def _run_configured(
    ctx: StageContext,
    argv: Sequence[str],
    *,
    env: dict[str, str] | None = None,
) -> CommandResult:
    return await ctx.executor.run(
        CommandSpec(
            argv=tuple(argv),
            cwd=ctx.workspace,
            env=env or {},
            timeout_seconds=ctx.settings.commands.timeout_seconds,
        )
    )


async def checkout_stage(ctx: StageContext) -> StageOutcome:
    argv = ctx.settings.commands.checkout
    if not argv:
        return StageOutcome.warning("no checkout command configured; using workspace as-is")
    return outcome_from_command(await _run_configured(ctx, argv), action="checkout")


async def install_stage(ctx: StageContext) -> StageOutcome:
    argv = ctx.settings.commands.install
    if not argv:
        return StageOutcome.warning("no install command configured; dependency install skipped")
    return outcome_from_command(await _run_configured(ctx, argv), action="dependency install")


async def lint_stage(ctx: StageContext) -> StageOutcome:
    commands = ctx.settings.commands
    if not commands.lint:
        return StageOutcome.warning("no lint command configured; static checks skipped")
    result = await _run_configured(ctx, commands.lint)
    if result.succeeded or commands.lint_required:
        return outcome_from_command(result, action="static checks")
    if result.condition is ExitCondition.SPAWN_ERROR:
        message = f"lint tool unavailable: {result.error}"
    else:
        message = f"static checks reported problems: {result.describe()}"
    return StageOutcome.warning(message, exit_code=result.exit_code, output=transcript(result))


async def build_stage(ctx: StageContext) -> StageOutcome:
    metadata = ctx.run.metadata
    runtime = ctx.settings.runtime
    if runtime.prune_images:
        ctx.cleanup.register(
            ServiceInstance(ServiceKind.IMAGE_LAYERS, "dangling"),
            ctx.docker.prune_dangling_images,
        )
    result = await ctx.docker.build(
        tag=metadata.local_ref,
        context=runtime.build_context,
        dockerfile=runtime.dockerfile,
        build_args={
            "BUILD_DATE": metadata.build_date,
            "VCS_REF": metadata.vcs_ref,
            "VERSION": metadata.tag,
        },
        labels={
            "org.opencontainers.image.created": metadata.build_date,
            "org.opencontainers.image.revision": metadata.vcs_ref,
            "org.opencontainers.image.version": metadata.tag,
        },
        timeout_seconds=ctx.settings.commands.build_timeout_seconds,
    )
    return outcome_from_command(result, action=f"image build {metadata.local_ref}")


async def verify_container_stage(ctx: StageContext) -> StageOutcome:
    verification = ctx.settings.verification
    name = f"{verification.container_name_prefix}-{short_id(ctx.run.run_id)}".lower()

    async def remove() -> CommandResult:
        return await ctx.docker.remove_container(name)

    ctx.cleanup.register(ServiceInstance(ServiceKind.CONTAINER, name), remove, scope=ctx.stage)

    started = await ctx.docker.run_detached(
        image=ctx.run.metadata.local_ref,
        name=name,
        ports=((verification.port, verification.container_port),),
        env=dict(ctx.settings.test_env),
    )
    if not started.succeeded:
        return outcome_from_command(started, action=f"starting container {name}")

    health = await ctx.verifier.await_healthy(
        ctx.probe_factory(verification.health_url),
        ctx.settings.container_health,
        target=name,
    )
    if health.ready:
        return StageOutcome.passed(
            f"container {name} {health.summary()}", output=transcript(started)
        )

    tail = await ctx.docker.logs(name, tail=verification.log_tail_lines)
    return _health_failure(name, health, transcript(started), tail)


async def verify_compose_stage(ctx: StageContext) -> StageOutcome:
    settings = ctx.settings
    topology = ctx.run.params.compose_file
    stack = ComposeStack(
        ctx.executor,
        compose_command=settings.runtime.compose_command,
        compose_file=settings.workspace / topology,
        project=project_name(settings.compose.project_prefix, ctx.run.run_id),
        env_file=settings.workspace / settings.compose.env_file_name,
        workspace=settings.workspace,
        timeout_seconds=settings.commands.timeout_seconds,
    )
    try:
        services = stack.services()
    except ComposeFileError as exc:
        return StageOutcome.failed(str(exc))

    ctx.cleanup.register(
        ServiceInstance(ServiceKind.ENV_FILE, stack.env_file.name),
        stack.remove_env_file,
        scope=ctx.stage,
    )
    stack.write_env_file(settings.test_env)
    ctx.cleanup.register(
        ServiceInstance(ServiceKind.COMPOSE_STACK, stack.project, {"file": topology}),
        stack.down,
        scope=ctx.stage,
    )

    up = await stack.up()
    if not up.succeeded:
        tail = await stack.logs(tail=settings.verification.log_tail_lines)
        outcome = outcome_from_command(up, action=f"compose up ({topology})")
        return StageOutcome.failed(
            outcome.message,
            exit_code=up.exit_code,
            output=f"{outcome.output}\n{transcript(tail)}",
            timed_out=outcome.timed_out,
        )

    health = await ctx.verifier.await_healthy(
        ctx.probe_factory(settings.verification.health_url),
        settings.compose_health,
        target=stack.project,
    )
    if health.ready:
        return StageOutcome.passed(
            f"topology {topology} ({', '.join(services)}) {health.summary()}",
            output=transcript(up),
        )

    tail = await stack.logs(tail=settings.verification.log_tail_lines)
    return _health_failure(stack.project, health, transcript(up), tail)


async def publish_stage(ctx: StageContext) -> StageOutcome:
    metadata = ctx.run.metadata
    outcome = await ctx.credentials.with_credentials(
        ctx.publisher.credential_names,
        lambda credentials: ctx.publisher.publish(metadata, credentials),
    )
    if outcome.status is PublishStatus.PUSHED:
        return StageOutcome.passed(outcome.message, output=outcome.transcript)
    if outcome.status is PublishStatus.SKIPPED:
        return StageOutcome.warning(outcome.message)
    return StageOutcome.failed(outcome.message, output=outcome.transcript)


async def deploy_stage(ctx: StageContext) -> StageOutcome:
    argv = ctx.settings.commands.deploy
    if not argv:
        return StageOutcome.warning("no deploy command configured; deployment skipped")
    metadata = ctx.run.metadata
    env = {
        "IMAGE_REF": metadata.image_ref,
        "IMAGE_NAME": metadata.image_name,
        "IMAGE_TAG": metadata.tag,
        "REGISTRY_HOST": metadata.registry_host,
        "BUILD_NUMBER": metadata.build_number,
        "VCS_REF": metadata.vcs_ref,
    }
    return outcome_from_command(await _run_configured(ctx, argv, env=env), action="deploy")


def _health_failure(
    target: str, health: HealthOutcome, started_output: str, tail: CommandResult
) -> StageOutcome:
    logger.error(
        "health_check_failed",
        target=target,
        attempts=health.attempts,
        log_tail=tail.output,
    )
    sections = [
        started_output,
        "--- health probes ---",
        health.render_diagnostics(),
        f"--- recent logs ({target}) ---",
        tail.output or tail.describe(),
    ]
    return StageOutcome.failed(f"{target} {health.summary()}", output="\n".join(sections))


STAGE_ACTIONS: dict[str, StageAction] = {
    CHECKOUT_STAGE: checkout_stage,
    INSTALL_STAGE: install_stage,
    LINT_STAGE: lint_stage,
    BUILD_STAGE: build_stage,
    VERIFY_CONTAINER_STAGE: verify_container_stage,
    VERIFY_COMPOSE_STAGE: verify_compose_stage,
    PUBLISH_STAGE: publish_stage,
    DEPLOY_STAGE: deploy_stage,
}


def build_stage_definitions(
    settings: PipelineSettings,
    *,
    actions: dict[str, Any] | None = None,
) -> tuple[StageDefinition, ...]:
    """Declared stage table. ``actions`` replaces individual bodies by stage name."""

    gates = default_gate_table(
        publish_branches=settings.publish_branches,
        deploy_branches=settings.deploy_branches,
    )
    table = {**STAGE_ACTIONS, **(actions or {})}
    return tuple(
        StageDefinition(name=name, ordinal=index, gate=gates[name], action=table[name])
        for index, name in enumerate(STAGE_IDS_IN_ORDER, start=1)
    )


__all__ = [
    "STAGE_ACTIONS",
    "ProbeFactory",
    "StageContext",
    "build_stage",
    "build_stage_definitions",
    "checkout_stage",
    "default_probe_factory",
    "deploy_stage",
    "install_stage",
    "lint_stage",
    "outcome_from_command",
    "publish_stage",
    "transcript",
    "verify_compose_stage",
    "verify_container_stage",
]
