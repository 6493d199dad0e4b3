"""
release-orchestrator — cleanup guarantor

File: src/release_orchestrator/pipeline/cleanup.py

Purpose
- Tear down every ephemeral resource a run created, on every exit path.

Contract
- ``register`` records a teardown action for one ``ServiceInstance``, either
  bound to a stage scope or at run level (``scope=None``).
- ``run_scope(stage)`` runs the pending actions of that stage; ``run_all()``
  runs everything still pending. Both go in reverse registration order.
- Every action is attempted at most once. A raised exception or an
  unsuccessful ``CommandResult`` is recorded as a failed report and never
  stops later actions.
- A ``run_scope`` whose caller is cancelled (the run ceiling) still finishes
  in the background; ``run_all`` waits for it before starting, so teardowns
  never overlap and none is cut off halfway.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import structlog

from release_orchestrator.domain.models import ServiceInstance
from release_orchestrator.execution.executor import CommandResult

CleanupAction = Callable[[], Awaitable[object]]


class CleanupStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class CleanupReport:
    resource: str
    kind: str
    scope: str | None
    status: CleanupStatus
    detail: str = ""
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status is CleanupStatus.SUCCEEDED

    def to_dict(self) -> dict[str, object]:
        return {
            "resource": self.resource,
            "kind": self.kind,
            "scope": self.scope,
            "status": self.status.value,
            "detail": self.detail,
            "duration_ms": self.duration_ms,
        }


@dataclass(slots=True)
class _Registration:
    instance: ServiceInstance
    action: CleanupAction
    scope: str | None
    attempted: bool = False


class CleanupGuarantor:
    """Registry of teardown actions with once-only, reverse-order execution."""

    def __init__(self, *, logger: Any | None = None) -> None:
        self._registrations: list[_Registration] = []
        self._reports: list[CleanupReport] = []
        self._active: asyncio.Future[list[CleanupReport]] | None = None
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def register(
        self,
        instance: ServiceInstance,
        action: CleanupAction,
        *,
        scope: str | None = None,
    ) -> None:
        self._registrations.append(_Registration(instance=instance, action=action, scope=scope))
        self._logger.debug("cleanup_registered", resource=instance.label, scope=scope)

    @property
    def pending(self) -> tuple[ServiceInstance, ...]:
        return tuple(item.instance for item in self._registrations if not item.attempted)

    @property
    def reports(self) -> tuple[CleanupReport, ...]:
        return tuple(self._reports)

    async def run_scope(self, scope: str) -> list[CleanupReport]:
        await self._settle()
        selected = [item for item in self._registrations if item.scope == scope]
        self._active = asyncio.ensure_future(self._run(selected))
        return await asyncio.shield(self._active)

    async def run_all(self) -> list[CleanupReport]:
        await self._settle()
        return await self._run(list(self._registrations))

    async def _settle(self) -> None:
        active, self._active = self._active, None
        if active is not None and not active.done():
            self._logger.info("cleanup_waiting_for_interrupted_scope")
            await asyncio.wait({active})

    async def _run(self, registrations: list[_Registration]) -> list[CleanupReport]:
        reports: list[CleanupReport] = []
        for item in reversed(registrations):
            if item.attempted:
                continue
            item.attempted = True
            report = await self._attempt(item)
            reports.append(report)
            self._reports.append(report)
        return reports

    async def _attempt(self, item: _Registration) -> CleanupReport:
        started_ns = time.monotonic_ns()
        instance = item.instance
        try:
            outcome = await item.action()
        except Exception as exc:  # noqa: BLE001
            status = CleanupStatus.FAILED
            detail = f"{type(exc).__name__}: {exc}"
        else:
            if isinstance(outcome, CommandResult) and not outcome.succeeded:
                status = CleanupStatus.FAILED
                detail = outcome.describe()
            else:
                status = CleanupStatus.SUCCEEDED
                detail = ""

        duration_ms = max(0, (time.monotonic_ns() - started_ns) // 1_000_000)
        if status is CleanupStatus.SUCCEEDED:
            self._logger.info(
                "cleanup_succeeded", resource=instance.label, scope=item.scope
            )
        else:
            self._logger.warning(
                "cleanup_failed", resource=instance.label, scope=item.scope, detail=detail
            )
        return CleanupReport(
            resource=instance.name,
            kind=instance.kind.value,
            scope=item.scope,
            status=status,
            detail=detail,
            duration_ms=duration_ms,
        )


__all__ = ["CleanupAction", "CleanupGuarantor", "CleanupReport", "CleanupStatus"]
