"""
release-orchestrator — unit tests for stage bodies

File: tests/unit/pipeline/test_stages.py

Purpose
- Validate each stage body against a scripted executor: warnings for
  optional tooling, cleanup registration before resource creation, log-tail
  capture on health failure, and compose env-file lifecycle.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from release_orchestrator.domain.models import (
    BuildMetadata,
    PipelineRun,
    RunParameters,
    ServiceKind,
    StageStatus,
)
from release_orchestrator.execution.docker import DockerCli
from release_orchestrator.pipeline.cleanup import CleanupGuarantor
from release_orchestrator.pipeline.publisher import ArtifactPublisher
from release_orchestrator.pipeline.stages import (
    StageContext,
    build_stage,
    build_stage_definitions,
    checkout_stage,
    deploy_stage,
    install_stage,
    lint_stage,
    publish_stage,
    verify_compose_stage,
    verify_container_stage,
)
from release_orchestrator.security.credentials import CredentialAccessor
from release_orchestrator.security.redaction import SecretMasker
from release_orchestrator.verification.health import HealthVerifier, ProbeResult

if TYPE_CHECKING:
    from conftest import FakeExecutor, RecordingSleep, SettingsFactory

    from release_orchestrator.config.settings import PipelineSettings

_RUN_ID = "run-01J0000000000000000000ABCD"


class _Probe:
    def __init__(self, healthy: bool) -> None:
        self.healthy = healthy
        self.calls = 0

    async def check(self) -> ProbeResult:
        self.calls += 1
        return ProbeResult(healthy=self.healthy, detail="ok" if self.healthy else "refused")


def _context(
    settings: PipelineSettings,
    executor: FakeExecutor,
    sleep: RecordingSleep,
    *,
    probe: _Probe | None = None,
    env: dict[str, str] | None = None,
    branch: str = "main",
    params: RunParameters | None = None,
    stage: str = "",
) -> StageContext:
    metadata = BuildMetadata(
        image_name="webapp",
        tag="7-abcdef0",
        registry_host="docker.io",
        build_date="2026-03-01T12:30:45Z",
        vcs_ref="abcdef0123",
        branch=branch,
        build_number="7",
    )
    run = PipelineRun(run_id=_RUN_ID, metadata=metadata, params=params or RunParameters())
    docker = DockerCli(executor, cwd=str(settings.workspace))
    active_probe = probe or _Probe(healthy=True)
    return StageContext(
        run=run,
        settings=settings,
        executor=executor,
        docker=docker,
        verifier=HealthVerifier(sleep=sleep),
        credentials=CredentialAccessor(env or {}, masker=SecretMasker()),
        cleanup=CleanupGuarantor(),
        publisher=ArtifactPublisher(
            docker,
            username_name=settings.registry.username_env,
            password_name=settings.registry.password_env,
            latest_branches=settings.latest_branches,
        ),
        probe_factory=lambda url: active_probe,
        stage=stage,
    )


async def test_checkout_runs_configured_command(
    settings_factory: SettingsFactory, fake_executor: FakeExecutor, recording_sleep: RecordingSleep
) -> None:
    ctx = _context(settings_factory(), fake_executor, recording_sleep)
    outcome = await checkout_stage(ctx)

    assert outcome.status is StageStatus.PASSED
    assert fake_executor.argvs == [("git", "rev-parse", "--verify", "HEAD")]
    assert fake_executor.calls[0].cwd == str(ctx.settings.workspace)


async def test_unconfigured_install_is_a_warning(
    settings_factory: SettingsFactory, fake_executor: FakeExecutor, recording_sleep: RecordingSleep
) -> None:
    outcome = await install_stage(_context(settings_factory(), fake_executor, recording_sleep))
    assert outcome.status is StageStatus.WARNING
    assert fake_executor.calls == []


async def test_install_failure_is_fatal(
    settings_factory: SettingsFactory, fake_executor: FakeExecutor, recording_sleep: RecordingSleep
) -> None:
    settings = settings_factory(commands__install=["pip", "install", "-r", "requirements.txt"])
    fake_executor.on("pip", "install", exit_code=1, stderr="no matching distribution")

    outcome = await install_stage(_context(settings, fake_executor, recording_sleep))

    assert outcome.status is StageStatus.FAILED
    assert outcome.exit_code == 1
    assert "no matching distribution" in outcome.output


async def test_lint_problems_are_warnings_unless_required(
    settings_factory: SettingsFactory, fake_executor: FakeExecutor, recording_sleep: RecordingSleep
) -> None:
    fake_executor.on("flake8", exit_code=1, stdout="E501 line too long")

    lenient = settings_factory(commands__lint=["flake8", "."])
    strict = settings_factory(commands__lint=["flake8", "."], commands__lint_required=True)

    assert (await lint_stage(_context(lenient, fake_executor, recording_sleep))).status is (
        StageStatus.WARNING
    )
    assert (await lint_stage(_context(strict, fake_executor, recording_sleep))).status is (
        StageStatus.FAILED
    )


async def test_missing_lint_tool_is_a_warning(
    settings_factory: SettingsFactory, fake_executor: FakeExecutor, recording_sleep: RecordingSleep
) -> None:
    fake_executor.on("flake8", error="No such file or directory: 'flake8'")
    outcome = await lint_stage(
        _context(settings_factory(commands__lint=["flake8"]), fake_executor, recording_sleep)
    )
    assert outcome.status is StageStatus.WARNING
    assert "unavailable" in outcome.message


async def test_build_labels_image_and_registers_prune(
    settings_factory: SettingsFactory, fake_executor: FakeExecutor, recording_sleep: RecordingSleep
) -> None:
    ctx = _context(settings_factory(), fake_executor, recording_sleep)
    outcome = await build_stage(ctx)

    assert outcome.status is StageStatus.PASSED
    argv = fake_executor.argvs[0]
    assert argv[:4] == ("docker", "build", "-t", "webapp:7-abcdef0")
    assert "VCS_REF=abcdef0123" in argv
    assert "org.opencontainers.image.version=7-abcdef0" in argv
    assert [item.kind for item in ctx.cleanup.pending] == [ServiceKind.IMAGE_LAYERS]


async def test_build_timeout_is_reported(
    settings_factory: SettingsFactory, fake_executor: FakeExecutor, recording_sleep: RecordingSleep
) -> None:
    fake_executor.on("docker", "build", timed_out=True)
    outcome = await build_stage(_context(settings_factory(), fake_executor, recording_sleep))
    assert outcome.status is StageStatus.FAILED
    assert outcome.timed_out is True


async def test_verify_container_registers_removal_before_start(
    settings_factory: SettingsFactory, fake_executor: FakeExecutor, recording_sleep: RecordingSleep
) -> None:
    ctx = _context(settings_factory(), fake_executor, recording_sleep, stage="verify_container")
    outcome = await verify_container_stage(ctx)

    assert outcome.status is StageStatus.PASSED
    run_argv = fake_executor.called("docker", "run")[0].argv
    assert "-p" in run_argv and "8080:8080" in run_argv
    assert "APP_STORAGE_BACKEND=sqlite" in run_argv
    pending = ctx.cleanup.pending
    assert [item.kind for item in pending] == [ServiceKind.CONTAINER]
    assert pending[0].name == "release-verify-0000abcd"

    await ctx.cleanup.run_scope("verify_container")
    assert fake_executor.argvs[-1] == ("docker", "rm", "-f", "release-verify-0000abcd")


async def test_unhealthy_container_captures_log_tail(
    settings_factory: SettingsFactory, fake_executor: FakeExecutor, recording_sleep: RecordingSleep
) -> None:
    settings = settings_factory(
        {"health.container": {"settle_seconds": 1.0, "max_attempts": 3, "interval_seconds": 2.0}}
    )
    fake_executor.on("docker", "logs", stdout="Traceback: database locked")
    probe = _Probe(healthy=False)

    outcome = await verify_container_stage(
        _context(settings, fake_executor, recording_sleep, probe=probe, stage="verify_container")
    )

    assert outcome.status is StageStatus.FAILED
    assert probe.calls == 3
    assert recording_sleep.delays == [1.0, 2.0, 2.0]
    assert "Traceback: database locked" in outcome.output
    assert fake_executor.called("docker", "logs", "--tail", "100")


async def test_container_start_failure_is_fatal(
    settings_factory: SettingsFactory, fake_executor: FakeExecutor, recording_sleep: RecordingSleep
) -> None:
    fake_executor.on("docker", "run", exit_code=125, stderr="port is already allocated")
    probe = _Probe(healthy=True)
    ctx = _context(settings_factory(), fake_executor, recording_sleep, probe=probe, stage="v")

    outcome = await verify_container_stage(ctx)

    assert outcome.status is StageStatus.FAILED
    assert probe.calls == 0
    assert len(ctx.cleanup.pending) == 1


def _write_topology(workspace: Path) -> None:
    (workspace / "docker-compose.yml").write_text(
        "services:\n  web:\n    image: webapp\n  db:\n    image: postgres\n", encoding="utf-8"
    )


async def test_compose_stack_lifecycle(
    settings_factory: SettingsFactory,
    fake_executor: FakeExecutor,
    recording_sleep: RecordingSleep,
    tmp_path: Path,
) -> None:
    _write_topology(tmp_path)
    ctx = _context(
        settings_factory(),
        fake_executor,
        recording_sleep,
        params=RunParameters(compose_file="docker-compose.yml"),
        stage="verify_compose",
    )

    outcome = await verify_compose_stage(ctx)

    env_file = tmp_path / ".env.release-test"
    assert outcome.status is StageStatus.PASSED
    assert "db, web" in outcome.message
    assert env_file.exists()
    assert "APP_DISABLE_SIGNUP=true" in env_file.read_text(encoding="utf-8")
    assert env_file.stat().st_mode & 0o777 == 0o600
    up_argv = fake_executor.called("up", "-d")[0].argv
    assert up_argv[:3] == ("docker", "compose", "-f")
    assert "--env-file" in up_argv

    await ctx.cleanup.run_scope("verify_compose")

    assert fake_executor.called("down", "-v", "--remove-orphans")
    assert not env_file.exists()


async def test_compose_without_services_fails_before_any_command(
    settings_factory: SettingsFactory,
    fake_executor: FakeExecutor,
    recording_sleep: RecordingSleep,
    tmp_path: Path,
) -> None:
    (tmp_path / "docker-compose.yml").write_text("version: '3'\n", encoding="utf-8")
    ctx = _context(
        settings_factory(),
        fake_executor,
        recording_sleep,
        params=RunParameters(compose_file="docker-compose.yml"),
    )
    outcome = await verify_compose_stage(ctx)

    assert outcome.status is StageStatus.FAILED
    assert "no services" in outcome.message
    assert fake_executor.calls == []


async def test_publish_without_credentials_is_a_warning(
    settings_factory: SettingsFactory, fake_executor: FakeExecutor, recording_sleep: RecordingSleep
) -> None:
    outcome = await publish_stage(_context(settings_factory(), fake_executor, recording_sleep))
    assert outcome.status is StageStatus.WARNING
    assert fake_executor.calls == []


async def test_publish_with_credentials_pushes(
    settings_factory: SettingsFactory, fake_executor: FakeExecutor, recording_sleep: RecordingSleep
) -> None:
    env = {"REGISTRY_USERNAME": "ci-bot", "REGISTRY_PASSWORD": "pa55word-xyz"}
    outcome = await publish_stage(
        _context(settings_factory(), fake_executor, recording_sleep, env=env)
    )
    assert outcome.status is StageStatus.PASSED
    assert fake_executor.called("docker", "push", "docker.io/webapp:latest")


async def test_deploy_passes_image_reference(
    settings_factory: SettingsFactory, fake_executor: FakeExecutor, recording_sleep: RecordingSleep
) -> None:
    settings = settings_factory(commands__deploy=["./deploy.sh"])
    outcome = await deploy_stage(_context(settings, fake_executor, recording_sleep))

    assert outcome.status is StageStatus.PASSED
    spec = fake_executor.calls[0]
    assert spec.env["IMAGE_REF"] == "docker.io/webapp:7-abcdef0"
    assert spec.env["BUILD_NUMBER"] == "7"


def test_stage_definitions_follow_declared_order(settings_factory: SettingsFactory) -> None:
    definitions = build_stage_definitions(settings_factory())
    assert [item.name for item in definitions] == [
        "checkout",
        "install",
        "lint",
        "build",
        "verify_container",
        "verify_compose",
        "publish",
        "deploy",
    ]
    assert [item.ordinal for item in definitions] == list(range(1, 9))
