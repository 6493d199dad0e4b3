"""
release-orchestrator — command executor

File: src/release_orchestrator/execution/executor.py

Purpose
- Run one external command to completion and report exit status and output.
  Every pipeline stage is built from this unit.

Contract
- Non-zero exit is reported through ``CommandResult``, never raised; the stage
  decides whether it is fatal.
- A command that exceeds its timeout is killed and reported with
  ``condition == ExitCondition.TIMEOUT`` and ``exit_code is None``.
- Cancelling ``run`` kills the child before ``CancelledError`` propagates.
- No retries at this layer.
- Captured output is decoded, newline-normalized, truncated, and masked before
  it leaves the executor. The argv recorded on the result is masked as well.
"""

from __future__ import annotations

import asyncio
import math
import os
import shlex
import time
from collections.abc import Callable, Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol, runtime_checkable

from release_orchestrator.security.redaction import DEFAULT_SECRET_MASKER

TextRedactor = Callable[[str], str]

DEFAULT_MAX_OUTPUT_CHARS = 200_000


class ExitCondition(StrEnum):
    """How one command ended."""

    OK = "ok"
    NONZERO = "nonzero"
    TIMEOUT = "timeout"
    SPAWN_ERROR = "spawn_error"


@dataclass(slots=True)
class CommandSpec:
    """One argv invocation plus the environment it runs in.

    ``env`` is layered over the parent environment. ``stdin_text`` is how
    secrets reach a command (``docker login --password-stdin``); it never
    appears in ``to_dict``.
    """

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    stdin_text: str | None = None
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if isinstance(self.argv, (str, bytes)) or not isinstance(self.argv, Sequence):
            raise ValueError(f"CommandSpec.argv: expected a sequence, got {self.argv!r}")
        self.argv = tuple(self.argv)
        if not self.argv or not all(isinstance(part, str) for part in self.argv):
            raise ValueError("CommandSpec.argv: must be a non-empty sequence of strings")
        if not self.argv[0].strip():
            raise ValueError("CommandSpec.argv: program must not be blank")
        if self.cwd is not None:
            self.cwd = os.fspath(self.cwd)
        self.env = {str(key): str(value) for key, value in sorted(self.env.items())}
        self.timeout_seconds = _positive_seconds(
            self.timeout_seconds, "CommandSpec.timeout_seconds"
        )

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)

    def to_dict(self) -> dict[str, object]:
        return {
            "argv": list(self.argv),
            "cwd": self.cwd,
            "env_keys": sorted(self.env),
            "stdin": self.stdin_text is not None,
            "timeout_seconds": self.timeout_seconds,
        }


@dataclass(slots=True)
class CommandResult:
    """What happened when a ``CommandSpec`` ran."""

    argv: tuple[str, ...]
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    error: str | None = None

    def __post_init__(self) -> None:
        self.argv = tuple(self.argv)
        if not self.argv:
            raise ValueError("CommandResult.argv: must not be empty")
        if self.duration_ms < 0:
            raise ValueError("CommandResult.duration_ms: must be >= 0")
        if self.timed_out and self.exit_code is not None:
            raise ValueError("CommandResult.exit_code: must be None when timed_out is true")

    @property
    def condition(self) -> ExitCondition:
        if self.timed_out:
            return ExitCondition.TIMEOUT
        if self.error is not None or self.exit_code is None:
            return ExitCondition.SPAWN_ERROR
        return ExitCondition.OK if self.exit_code == 0 else ExitCondition.NONZERO

    @property
    def succeeded(self) -> bool:
        return self.condition is ExitCondition.OK

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)

    @property
    def output(self) -> str:
        """Combined stdout/stderr, as a stage log would show it."""

        parts = (self.stdout, self.stderr, self.error or "")
        return "\n".join(part.rstrip("\n") for part in parts if part)

    def describe(self) -> str:
        command = f"`{self.command_line}`"
        condition = self.condition
        if condition is ExitCondition.OK:
            return f"{command} succeeded"
        if condition is ExitCondition.NONZERO:
            return f"{command} exited with code {self.exit_code}"
        if condition is ExitCondition.TIMEOUT:
            return f"{command} timed out"
        return f"{command} could not be started: {self.error}"

    def to_dict(self) -> dict[str, object]:
        return {
            "argv": list(self.argv),
            "exit_code": self.exit_code,
            "condition": self.condition.value,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
            "error": self.error,
        }


def render_transcript(results: Sequence[CommandResult]) -> str:
    """Shell-style log of several commands: header line, then combined output."""

    blocks: list[str] = []
    for result in results:
        header = f"$ {result.command_line}  [{result.condition.value}]"
        blocks.append(f"{header}\n{result.output}" if result.output else header)
    return "\n".join(blocks)


@runtime_checkable
class CommandExecutor(Protocol):
    """Anything that can run a ``CommandSpec``; tests substitute a scripted fake."""

    async def run(self, spec: CommandSpec) -> CommandResult: ...


class LocalSubprocessExecutor(CommandExecutor):
    """Runs commands as local child processes via ``asyncio`` subprocesses."""

    def __init__(
        self,
        *,
        default_timeout_seconds: float | None = None,
        default_cwd: str | os.PathLike[str] | None = None,
        max_output_chars: int | None = DEFAULT_MAX_OUTPUT_CHARS,
        redactor: TextRedactor | None = None,
    ) -> None:
        if max_output_chars is not None and max_output_chars <= 0:
            raise ValueError("LocalSubprocessExecutor.max_output_chars: must be > 0")
        self._default_timeout = _positive_seconds(
            default_timeout_seconds, "LocalSubprocessExecutor.default_timeout_seconds"
        )
        self._default_cwd = os.fspath(default_cwd) if default_cwd is not None else None
        self._max_output_chars = max_output_chars
        self._redact = redactor if redactor is not None else DEFAULT_SECRET_MASKER

    async def run(self, spec: CommandSpec) -> CommandResult:
        started_ns = time.monotonic_ns()
        # Transcripts and the run archive show this argv.
        shown_argv = tuple(self._redact(part) for part in spec.argv)
        timeout = spec.timeout_seconds
        if timeout is None:
            timeout = self._default_timeout
        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                cwd=spec.cwd if spec.cwd is not None else self._default_cwd,
                env={**os.environ, **spec.env},
                stdin=(
                    asyncio.subprocess.DEVNULL
                    if spec.stdin_text is None
                    else asyncio.subprocess.PIPE
                ),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return CommandResult(
                argv=shown_argv,
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=_elapsed_ms(started_ns),
                error=self._redact(str(exc)),
            )

        stdin = spec.stdin_text.encode("utf-8") if spec.stdin_text is not None else None
        timed_out = False
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(stdin), timeout=timeout)
        except TimeoutError:
            timed_out = True
            stdout, stderr = await _kill_and_drain(process)
        except asyncio.CancelledError:
            # The run ceiling fired while this command was in flight.
            await _kill_and_drain(process)
            raise

        return CommandResult(
            argv=shown_argv,
            exit_code=None if timed_out else process.returncode,
            stdout=self._capture(stdout),
            stderr=self._capture(stderr),
            duration_ms=_elapsed_ms(started_ns),
            timed_out=timed_out,
            error=f"command timed out after {timeout:.3f}s" if timed_out and timeout else None,
        )

    def _capture(self, raw: bytes | None) -> str:
        text = (raw or b"").decode("utf-8", errors="replace")
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        limit = self._max_output_chars
        if limit is not None and len(text) > limit:
            text = f"{text[:limit]}\n...[truncated {len(text) - limit} chars]"
        return self._redact(text)


async def _kill_and_drain(process: asyncio.subprocess.Process) -> tuple[bytes, bytes]:
    with suppress(ProcessLookupError):
        process.kill()
    return await process.communicate()


def _positive_seconds(value: object, path: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{path}: expected number, got {type(value).__name__}")
    seconds = float(value)
    if not math.isfinite(seconds) or seconds <= 0.0:
        raise ValueError(f"{path}: must be a finite number > 0")
    return seconds


def _elapsed_ms(started_ns: int) -> int:
    return max(time.monotonic_ns() - started_ns, 0) // 1_000_000


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "ExitCondition",
    "LocalSubprocessExecutor",
    "TextRedactor",
    "render_transcript",
]
