"""Shared fakes for offline pipeline tests: no docker, no network, no real sleeps."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from release_orchestrator.config.schema import assert_valid_config, default_config, merge_config
from release_orchestrator.config.settings import PipelineSettings
from release_orchestrator.execution.executor import CommandResult, CommandSpec


@dataclass(slots=True)
class _Rule:
    fragment: tuple[str, ...]
    exit_code: int | None = 0
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    error: str | None = None
    hang: bool = False
    remaining: int | None = None


class FakeExecutor:
    """Scripted ``CommandExecutor``.

    A rule matches when its fragment appears as a contiguous run inside argv.
    Newer rules win. Unmatched commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[CommandSpec] = []
        self._rules: list[_Rule] = []

    def on(
        self,
        *fragment: str,
        exit_code: int | None = 0,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
        error: str | None = None,
        hang: bool = False,
        times: int | None = None,
    ) -> FakeExecutor:
        self._rules.append(
            _Rule(
                fragment=tuple(fragment),
                exit_code=None if (timed_out or error is not None) else exit_code,
                stdout=stdout,
                stderr=stderr,
                timed_out=timed_out,
                error=error,
                hang=hang,
                remaining=times,
            )
        )
        return self

    async def run(self, spec: CommandSpec) -> CommandResult:
        self.calls.append(spec)
        rule = self._match(spec.argv)
        if rule is None:
            return CommandResult(argv=spec.argv, exit_code=0, stdout="", stderr="", duration_ms=1)
        if rule.remaining is not None:
            rule.remaining -= 1
        if rule.hang:
            await asyncio.Event().wait()
        return CommandResult(
            argv=spec.argv,
            exit_code=rule.exit_code,
            stdout=rule.stdout,
            stderr=rule.stderr,
            duration_ms=1,
            timed_out=rule.timed_out,
            error=rule.error,
        )

    def _match(self, argv: tuple[str, ...]) -> _Rule | None:
        for rule in reversed(self._rules):
            if rule.remaining is not None and rule.remaining <= 0:
                continue
            if _contains(argv, rule.fragment):
                return rule
        return None

    @property
    def argvs(self) -> list[tuple[str, ...]]:
        return [spec.argv for spec in self.calls]

    def called(self, *fragment: str) -> list[CommandSpec]:
        return [spec for spec in self.calls if _contains(spec.argv, fragment)]


def _contains(argv: tuple[str, ...], fragment: tuple[str, ...]) -> bool:
    if not fragment:
        return True
    width = len(fragment)
    return any(argv[index : index + width] == fragment for index in range(len(argv) - width + 1))


@dataclass
class RecordingSleep:
    delays: list[float] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@dataclass
class RecordingLogger:
    events: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)

    def _record(self, level: str) -> Callable[..., None]:
        def emit(event: str, **fields: Any) -> None:
            self.events.append((level, event, fields))

        return emit

    def __getattr__(self, level: str) -> Callable[..., None]:
        if level in {"debug", "info", "warning", "error", "exception", "critical"}:
            return self._record(level)
        raise AttributeError(level)

    def names(self) -> list[str]:
        return [event for _, event, _ in self.events]

    def find(self, event: str) -> list[dict[str, Any]]:
        return [fields for _, name, fields in self.events if name == event]


SettingsFactory = Callable[..., PipelineSettings]


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


def _nested(dotted: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key, value in dotted.items():
        cursor = payload
        parts = key.split(".")
        for part in parts[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[parts[-1]] = value
    return payload


@pytest.fixture
def settings_factory(tmp_path: Path) -> SettingsFactory:
    """Build validated settings rooted in ``tmp_path``; kwargs are dotted config keys."""

    def build(overrides: Mapping[str, object] | None = None, **kwargs: object) -> PipelineSettings:
        base = merge_config(
            default_config(),
            _nested(
                {
                    "pipeline.workspace": str(tmp_path),
                    "pipeline.artifacts_dir": str(tmp_path / "artifacts"),
                    "observability.log_dir": str(tmp_path / "logs"),
                }
            ),
        )
        dotted = dict(overrides or {})
        dotted.update({key.replace("__", "."): value for key, value in kwargs.items()})
        return PipelineSettings.from_config(assert_valid_config(merge_config(base, _nested(dotted))))

    return build


__all__ = ["FakeExecutor", "RecordingLogger", "RecordingSleep", "SettingsFactory"]
