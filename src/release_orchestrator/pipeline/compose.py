"""
release-orchestrator — compose topology handling

File: src/release_orchestrator/pipeline/compose.py

Purpose
- Bring up, inspect, and tear down one multi-service topology through the
  external compose engine.

What should be included in this file
- Topology file parsing (``yaml.safe_load``) to discover service names.
- The test-only env file, written with owner-only permissions.
- Argv construction for ``up``, ``down``, and ``logs``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from pathlib import Path

import yaml

from release_orchestrator.execution.executor import CommandExecutor, CommandResult, CommandSpec
from release_orchestrator.utils.fs import atomic_write, safe_unlink

_PROJECT_NAME_INVALID = re.compile(r"[^a-z0-9_-]+")


class ComposeFileError(ValueError):
    """Raised when a topology file cannot be read or is not a compose document."""


def load_services(path: str | Path) -> tuple[str, ...]:
    """Return the service names declared by a compose topology, sorted."""

    source = Path(path)
    try:
        with source.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except OSError as exc:
        raise ComposeFileError(f"unable to read compose file {source}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ComposeFileError(f"invalid YAML in compose file {source}: {exc}") from exc

    if not isinstance(payload, Mapping):
        raise ComposeFileError(f"compose file root must be a mapping: {source}")
    services = payload.get("services")
    if not isinstance(services, Mapping) or not services:
        raise ComposeFileError(f"compose file declares no services: {source}")
    return tuple(sorted(str(name) for name in services))


def render_env_file(values: Mapping[str, str]) -> str:
    lines: list[str] = []
    for key in sorted(values):
        value = values[key]
        if "\n" in value or "\r" in value:
            raise ValueError(f"env file value for {key!r} must be a single line")
        lines.append(f"{key}={value}")
    return "\n".join(lines) + "\n"


def project_name(prefix: str, run_id: str) -> str:
    raw = f"{prefix}-{run_id}".lower()
    return _PROJECT_NAME_INVALID.sub("-", raw).strip("-")


class ComposeStack:
    """One compose project instance owned by a single run."""

    def __init__(
        self,
        executor: CommandExecutor,
        *,
        compose_command: Sequence[str],
        compose_file: Path,
        project: str,
        env_file: Path,
        workspace: Path,
        timeout_seconds: float | None = None,
    ) -> None:
        self._executor = executor
        self._compose_command = tuple(compose_command)
        self._compose_file = compose_file
        self._project = project
        self._env_file = env_file
        self._workspace = workspace
        self._timeout_seconds = timeout_seconds

    @property
    def project(self) -> str:
        return self._project

    @property
    def env_file(self) -> Path:
        return self._env_file

    @property
    def compose_file(self) -> Path:
        return self._compose_file

    def services(self) -> tuple[str, ...]:
        return load_services(self._compose_file)

    def write_env_file(self, values: Mapping[str, str]) -> Path:
        atomic_write(self._env_file, render_env_file(values), encoding="utf-8", mode=0o600)
        return self._env_file

    async def remove_env_file(self) -> bool:
        return safe_unlink(self._env_file, self._workspace)

    async def up(self) -> CommandResult:
        return await self._run("up", "-d")

    async def down(self) -> CommandResult:
        return await self._run("down", "-v", "--remove-orphans")

    async def logs(self, *, tail: int) -> CommandResult:
        return await self._run("logs", "--no-color", "--tail", str(tail))

    def _base_argv(self) -> tuple[str, ...]:
        return (
            *self._compose_command,
            "-f",
            str(self._compose_file),
            "-p",
            self._project,
            "--env-file",
            str(self._env_file),
        )

    async def _run(self, *args: str) -> CommandResult:
        return await self._executor.run(
            CommandSpec(
                argv=(*self._base_argv(), *args),
                cwd=str(self._workspace),
                timeout_seconds=self._timeout_seconds,
            )
        )


__all__ = [
    "ComposeFileError",
    "ComposeStack",
    "load_services",
    "project_name",
    "render_env_file",
]
