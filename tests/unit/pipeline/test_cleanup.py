"""Unit tests for the cleanup guarantor: once-only, reverse-order teardown."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from release_orchestrator.domain.models import ServiceInstance, ServiceKind
from release_orchestrator.execution.executor import CommandResult
from release_orchestrator.pipeline.cleanup import CleanupGuarantor, CleanupStatus

if TYPE_CHECKING:
    from conftest import RecordingLogger


def _recorder(order: list[str], name: str):  # type: ignore[no-untyped-def]
    async def action() -> None:
        order.append(name)

    return action


async def test_run_all_is_lifo_and_once_only(recording_logger: RecordingLogger) -> None:
    guarantor = CleanupGuarantor(logger=recording_logger)
    order: list[str] = []
    for name in ("a", "b", "c"):
        guarantor.register(ServiceInstance(ServiceKind.CONTAINER, name), _recorder(order, name))

    first = await guarantor.run_all()
    second = await guarantor.run_all()

    assert order == ["c", "b", "a"]
    assert [report.resource for report in first] == ["c", "b", "a"]
    assert second == []
    assert guarantor.pending == ()


async def test_scope_runs_only_its_own_resources() -> None:
    guarantor = CleanupGuarantor()
    order: list[str] = []
    guarantor.register(ServiceInstance(ServiceKind.IMAGE_LAYERS, "run-level"), _recorder(order, "run"))
    guarantor.register(
        ServiceInstance(ServiceKind.CONTAINER, "c1"), _recorder(order, "stage"), scope="verify"
    )

    await guarantor.run_scope("verify")
    assert order == ["stage"]
    assert [item.name for item in guarantor.pending] == ["run-level"]

    await guarantor.run_all()
    assert order == ["stage", "run"]


async def test_failures_are_recorded_and_do_not_stop_later_actions(
    recording_logger: RecordingLogger,
) -> None:
    guarantor = CleanupGuarantor(logger=recording_logger)
    order: list[str] = []

    async def explode() -> None:
        order.append("explode")
        raise RuntimeError("daemon gone")

    async def nonzero() -> CommandResult:
        order.append("nonzero")
        return CommandResult(
            argv=("docker", "rm", "-f", "c1"), exit_code=1, stdout="", stderr="no such", duration_ms=1
        )

    guarantor.register(ServiceInstance(ServiceKind.ENV_FILE, "env"), _recorder(order, "env"))
    guarantor.register(ServiceInstance(ServiceKind.CONTAINER, "c1"), nonzero)
    guarantor.register(ServiceInstance(ServiceKind.COMPOSE_STACK, "stack"), explode)

    reports = await guarantor.run_all()

    assert order == ["explode", "nonzero", "env"]
    assert [report.status for report in reports] == [
        CleanupStatus.FAILED,
        CleanupStatus.FAILED,
        CleanupStatus.SUCCEEDED,
    ]
    assert "RuntimeError: daemon gone" in reports[0].detail
    assert "exited with code 1" in reports[1].detail
    assert len(recording_logger.find("cleanup_failed")) == 2


async def test_reports_accumulate_across_scopes() -> None:
    guarantor = CleanupGuarantor()
    guarantor.register(ServiceInstance(ServiceKind.CONTAINER, "c1"), _recorder([], "x"), scope="s")
    guarantor.register(ServiceInstance(ServiceKind.CONTAINER, "c2"), _recorder([], "y"))

    await guarantor.run_scope("s")
    await guarantor.run_all()

    assert [report.resource for report in guarantor.reports] == ["c1", "c2"]
    assert guarantor.reports[0].to_dict()["scope"] == "s"


async def test_cancelled_scope_completes_before_run_all_continues() -> None:
    guarantor = CleanupGuarantor()
    events: list[str] = []
    release = asyncio.Event()

    async def slow_teardown() -> None:
        events.append("rm started")
        await release.wait()
        events.append("rm finished")

    guarantor.register(ServiceInstance(ServiceKind.IMAGE_LAYERS, "layers"), _recorder(events, "prune"))
    guarantor.register(ServiceInstance(ServiceKind.CONTAINER, "c1"), slow_teardown, scope="verify")

    caller = asyncio.create_task(guarantor.run_scope("verify"))
    while not events:
        await asyncio.sleep(0)
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    remaining = asyncio.create_task(guarantor.run_all())
    for _ in range(5):
        await asyncio.sleep(0)
    assert events == ["rm started"]

    release.set()
    reports = await remaining

    assert events == ["rm started", "rm finished", "prune"]
    assert [report.resource for report in reports] == ["layers"]
    assert [(report.resource, report.status) for report in guarantor.reports] == [
        ("c1", CleanupStatus.SUCCEEDED),
        ("layers", CleanupStatus.SUCCEEDED),
    ]
