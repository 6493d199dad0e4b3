"""Typed, immutable view over a validated config mapping."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from release_orchestrator.verification.health import HealthPolicy, health_url


@dataclass(frozen=True, slots=True)
class RegistrySettings:
    host: str
    image_name: str
    username_env: str
    password_env: str
    push_latest: bool

    @property
    def credential_names(self) -> tuple[str, str]:
        return (self.username_env, self.password_env)


@dataclass(frozen=True, slots=True)
class RuntimeSettings:
    docker_binary: str
    compose_command: tuple[str, ...]
    dockerfile: str
    build_context: str
    prune_images: bool


@dataclass(frozen=True, slots=True)
class CommandSettings:
    checkout: tuple[str, ...]
    install: tuple[str, ...]
    lint: tuple[str, ...]
    deploy: tuple[str, ...]
    timeout_seconds: float
    build_timeout_seconds: float
    lint_required: bool


@dataclass(frozen=True, slots=True)
class VerificationSettings:
    host: str
    port: int
    container_port: int
    health_path: str
    probe_timeout_seconds: int
    log_tail_lines: int
    container_name_prefix: str

    @property
    def health_url(self) -> str:
        return health_url(self.host, self.port, self.health_path)


@dataclass(frozen=True, slots=True)
class ComposeSettings:
    topologies: tuple[str, ...]
    project_prefix: str
    env_file_name: str


@dataclass(frozen=True, slots=True)
class ObservabilitySettings:
    log_level: str
    log_format: str
    log_dir: Path
    log_to_stdout: bool
    redact_secrets: bool
    report_file: bool


@dataclass(frozen=True, slots=True)
class PipelineSettings:
    """Everything the stages and scheduler read from configuration."""

    timeout_seconds: float
    workspace: Path
    artifacts_dir: Path
    publish_branches: frozenset[str]
    deploy_branches: frozenset[str]
    latest_branches: frozenset[str]
    registry: RegistrySettings
    runtime: RuntimeSettings
    commands: CommandSettings
    verification: VerificationSettings
    container_health: HealthPolicy
    compose_health: HealthPolicy
    compose: ComposeSettings
    observability: ObservabilitySettings
    test_env: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> PipelineSettings:
        pipeline = config["pipeline"]
        registry = config["registry"]
        runtime = config["runtime"]
        commands = config["commands"]
        verification = config["verification"]
        health = config["health"]
        compose = config["compose"]
        observability = config["observability"]

        return cls(
            timeout_seconds=float(pipeline["timeout_minutes"]) * 60.0,
            workspace=Path(pipeline["workspace"]),
            artifacts_dir=Path(pipeline["artifacts_dir"]),
            publish_branches=frozenset(pipeline["publish_branches"]),
            deploy_branches=frozenset(pipeline["deploy_branches"]),
            latest_branches=frozenset(pipeline["latest_branches"]),
            registry=RegistrySettings(
                host=registry["host"],
                image_name=registry["image_name"],
                username_env=registry["username_env"],
                password_env=registry["password_env"],
                push_latest=registry["push_latest"],
            ),
            runtime=RuntimeSettings(
                docker_binary=runtime["docker_binary"],
                compose_command=tuple(runtime["compose_command"]),
                dockerfile=runtime["dockerfile"],
                build_context=runtime["build_context"],
                prune_images=runtime["prune_images"],
            ),
            commands=CommandSettings(
                checkout=tuple(commands["checkout"]),
                install=tuple(commands["install"]),
                lint=tuple(commands["lint"]),
                deploy=tuple(commands["deploy"]),
                timeout_seconds=float(commands["timeout_seconds"]),
                build_timeout_seconds=float(commands["build_timeout_seconds"]),
                lint_required=commands["lint_required"],
            ),
            verification=VerificationSettings(
                host=verification["host"],
                port=verification["port"],
                container_port=verification["container_port"],
                health_path=verification["health_path"],
                probe_timeout_seconds=verification["probe_timeout_seconds"],
                log_tail_lines=verification["log_tail_lines"],
                container_name_prefix=verification["container_name_prefix"],
            ),
            container_health=_policy(health["container"]),
            compose_health=_policy(health["compose"]),
            compose=ComposeSettings(
                topologies=tuple(compose["topologies"]),
                project_prefix=compose["project_prefix"],
                env_file_name=compose["env_file_name"],
            ),
            observability=ObservabilitySettings(
                log_level=observability["log_level"],
                log_format=observability["log_format"],
                log_dir=Path(observability["log_dir"]),
                log_to_stdout=observability["log_to_stdout"],
                redact_secrets=observability["redact_secrets"],
                report_file=observability["report_file"],
            ),
            test_env=dict(config.get("test_env", {})),
        )


def _policy(raw: Mapping[str, Any]) -> HealthPolicy:
    return HealthPolicy(
        settle_seconds=float(raw["settle_seconds"]),
        max_attempts=int(raw["max_attempts"]),
        interval_seconds=float(raw["interval_seconds"]),
    )


__all__ = [
    "CommandSettings",
    "ComposeSettings",
    "ObservabilitySettings",
    "PipelineSettings",
    "RegistrySettings",
    "RuntimeSettings",
    "VerificationSettings",
]
