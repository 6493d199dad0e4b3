"""Command execution primitives shared by every pipeline stage."""

from release_orchestrator.execution.docker import DockerCli
from release_orchestrator.execution.executor import (
    CommandExecutor,
    CommandResult,
    CommandSpec,
    ExitCondition,
    LocalSubprocessExecutor,
    TextRedactor,
    render_transcript,
)

__all__ = [
    "DockerCli",
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "ExitCondition",
    "LocalSubprocessExecutor",
    "TextRedactor",
    "render_transcript",
]
