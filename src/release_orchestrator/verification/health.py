"""
release-orchestrator — health verifier

File: src/release_orchestrator/verification/health.py

Purpose
- Poll a started service until it reports healthy or a fixed attempt budget
  is exhausted.

Contract
- Sleep ``settle_seconds``, then probe. Success returns ``ready`` at once.
  A failure sleeps ``interval_seconds`` only when attempts remain.
- After ``max_attempts`` failed probes the outcome is ``failed`` and carries
  the per-attempt diagnostics. The caller captures service logs.
- Waiting is ``asyncio.sleep`` (injectable), never a busy loop.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

import structlog

from release_orchestrator.execution.executor import CommandExecutor, CommandSpec

SleepFn = Callable[[float], Awaitable[None]]

_DIAGNOSTIC_MAX_CHARS = 400


class HealthStatus(StrEnum):
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class HealthPolicy:
    settle_seconds: float
    max_attempts: int
    interval_seconds: float

    def __post_init__(self) -> None:
        for name in ("settle_seconds", "interval_seconds"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"HealthPolicy.{name}: expected number")
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"HealthPolicy.{name}: must be finite and >= 0")
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int):
            raise ValueError("HealthPolicy.max_attempts: expected integer")
        if self.max_attempts < 1:
            raise ValueError("HealthPolicy.max_attempts: must be >= 1")

    @property
    def budget_seconds(self) -> float:
        """Upper bound on time spent sleeping plus the nominal attempt slots."""
        return self.settle_seconds + self.max_attempts * self.interval_seconds


CONTAINER_HEALTH_POLICY = HealthPolicy(settle_seconds=40.0, max_attempts=10, interval_seconds=5.0)
COMPOSE_HEALTH_POLICY = HealthPolicy(settle_seconds=30.0, max_attempts=15, interval_seconds=5.0)


@dataclass(frozen=True, slots=True)
class ProbeResult:
    healthy: bool
    detail: str = ""


@runtime_checkable
class Probe(Protocol):
    """One readiness check against a running service."""

    async def check(self) -> ProbeResult: ...


@dataclass(frozen=True, slots=True)
class HealthOutcome:
    status: HealthStatus
    attempts: int
    diagnostics: tuple[str, ...] = ()

    @property
    def ready(self) -> bool:
        return self.status is HealthStatus.READY

    def summary(self) -> str:
        if self.ready:
            return f"healthy after {self.attempts} attempt(s)"
        return f"not healthy after {self.attempts} attempt(s)"

    def render_diagnostics(self) -> str:
        return "\n".join(
            f"attempt {index}: {line}" for index, line in enumerate(self.diagnostics, start=1)
        )


class CommandProbe(Probe):
    """HTTP probe that shells out to ``curl -fsS`` through the command executor."""

    def __init__(
        self,
        executor: CommandExecutor,
        url: str,
        *,
        max_time_seconds: int = 5,
        curl_binary: str = "curl",
    ) -> None:
        if max_time_seconds < 1:
            raise ValueError("max_time_seconds must be >= 1")
        self._executor = executor
        self._url = url
        self._max_time_seconds = max_time_seconds
        self._curl_binary = curl_binary

    @property
    def url(self) -> str:
        return self._url

    def command(self) -> CommandSpec:
        return CommandSpec(
            argv=(
                self._curl_binary,
                "-fsS",
                "--max-time",
                str(self._max_time_seconds),
                self._url,
            ),
            # curl enforces its own limit; this one only catches a wedged process.
            timeout_seconds=float(self._max_time_seconds + 5),
        )

    async def check(self) -> ProbeResult:
        result = await self._executor.run(self.command())
        if result.succeeded:
            return ProbeResult(healthy=True, detail=result.stdout.strip()[:_DIAGNOSTIC_MAX_CHARS])
        detail = result.stderr.strip() or result.error or result.describe()
        return ProbeResult(healthy=False, detail=detail[:_DIAGNOSTIC_MAX_CHARS])


class HealthVerifier:
    """Bounded retry loop over a ``Probe``."""

    def __init__(self, *, sleep: SleepFn | None = None, logger: Any | None = None) -> None:
        self._sleep = sleep if sleep is not None else asyncio.sleep
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def await_healthy(
        self,
        probe: Probe,
        policy: HealthPolicy,
        *,
        target: str = "service",
    ) -> HealthOutcome:
        self._logger.info(
            "health_wait_started",
            target=target,
            settle_seconds=policy.settle_seconds,
            max_attempts=policy.max_attempts,
            interval_seconds=policy.interval_seconds,
        )
        await self._sleep(policy.settle_seconds)

        diagnostics: list[str] = []
        for attempt in range(1, policy.max_attempts + 1):
            try:
                result = await probe.check()
            except Exception as exc:  # noqa: BLE001
                result = ProbeResult(healthy=False, detail=f"probe error: {exc}")

            if result.healthy:
                self._logger.info("health_ready", target=target, attempt=attempt)
                return HealthOutcome(HealthStatus.READY, attempt, tuple(diagnostics))

            diagnostics.append(result.detail or "probe reported unhealthy")
            self._logger.info(
                "health_probe_failed",
                target=target,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                detail=result.detail,
            )
            if attempt < policy.max_attempts:
                await self._sleep(policy.interval_seconds)

        self._logger.warning("health_wait_exhausted", target=target, attempts=policy.max_attempts)
        return HealthOutcome(HealthStatus.FAILED, policy.max_attempts, tuple(diagnostics))


def health_url(host: str, port: int, path: str) -> str:
    return f"http://{host}:{port}{path}"


__all__ = [
    "COMPOSE_HEALTH_POLICY",
    "CONTAINER_HEALTH_POLICY",
    "CommandProbe",
    "HealthOutcome",
    "HealthPolicy",
    "HealthStatus",
    "HealthVerifier",
    "Probe",
    "ProbeResult",
    "SleepFn",
    "health_url",
]
