"""Frozen value objects and the ``PipelineRun`` aggregate."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from release_orchestrator.pipeline.gates import Gate


class RunStateError(RuntimeError):
    """Raised when a run's terminal state or stage log is misused."""


class StageStatus(StrEnum):
    SKIPPED = "skipped"
    PASSED = "passed"
    WARNING = "warning"
    FAILED = "failed"


class RunOutcome(StrEnum):
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ServiceKind(StrEnum):
    CONTAINER = "container"
    COMPOSE_STACK = "compose_stack"
    ENV_FILE = "env_file"
    IMAGE_LAYERS = "image_layers"
    STAGE_HOOK = "stage_hook"


def _utc_now() -> datetime:
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    """Render ``value`` as ``YYYY-MM-DDTHH:MM:SSZ``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True, slots=True)
class BuildMetadata:
    """Identifying values computed once per run and shared read-only."""

    image_name: str
    tag: str
    registry_host: str
    build_date: str
    vcs_ref: str
    branch: str
    build_number: str

    def __post_init__(self) -> None:
        for name in ("image_name", "tag", "registry_host", "build_date", "vcs_ref", "branch"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"BuildMetadata.{name}: must be a non-empty string")

    @property
    def image_ref(self) -> str:
        """Fully qualified reference for the immutable tag."""
        return f"{self.registry_host}/{self.image_name}:{self.tag}"

    def ref_for(self, tag: str) -> str:
        return f"{self.registry_host}/{self.image_name}:{tag}"

    @property
    def local_ref(self) -> str:
        """Reference the image is built under before any registry tagging."""
        return f"{self.image_name}:{self.tag}"

    def to_dict(self) -> dict[str, str]:
        return {
            "image_name": self.image_name,
            "tag": self.tag,
            "registry_host": self.registry_host,
            "build_date": self.build_date,
            "vcs_ref": self.vcs_ref,
            "branch": self.branch,
            "build_number": self.build_number,
        }


@dataclass(frozen=True, slots=True)
class RunParameters:
    push_image: bool = False
    deploy: bool = False
    compose_file: str = ""

    def as_mapping(self) -> dict[str, object]:
        """Parameter view consumed by gates, keyed by the external parameter names."""
        return {
            "PUSH_IMAGE": self.push_image,
            "DEPLOY": self.deploy,
            "COMPOSE_FILE": self.compose_file,
        }


@dataclass(frozen=True, slots=True)
class StageOutcome:
    """What a stage body reports back to the scheduler."""

    status: StageStatus
    message: str = ""
    exit_code: int | None = None
    output: str = ""
    timed_out: bool = False

    @classmethod
    def passed(
        cls, message: str = "", *, exit_code: int | None = None, output: str = ""
    ) -> StageOutcome:
        return cls(StageStatus.PASSED, message, exit_code, output)

    @classmethod
    def warning(
        cls, message: str, *, exit_code: int | None = None, output: str = ""
    ) -> StageOutcome:
        return cls(StageStatus.WARNING, message, exit_code, output)

    @classmethod
    def failed(
        cls,
        message: str,
        *,
        exit_code: int | None = None,
        output: str = "",
        timed_out: bool = False,
    ) -> StageOutcome:
        return cls(StageStatus.FAILED, message, exit_code, output, timed_out)

    @property
    def is_fatal(self) -> bool:
        return self.status is StageStatus.FAILED


StageAction = Callable[[Any], Awaitable[StageOutcome]]
StageCleanup = Callable[[], Awaitable[object]]


@dataclass(frozen=True, slots=True)
class StageDefinition:
    name: str
    ordinal: int
    gate: Gate
    action: StageAction
    cleanup: StageCleanup | None = None


@dataclass(frozen=True, slots=True)
class StageResult:
    stage: str
    ordinal: int
    status: StageStatus
    exit_code: int | None = None
    output: str = ""
    message: str = ""
    duration_ms: int = 0
    timed_out: bool = False

    @classmethod
    def from_outcome(
        cls,
        definition: StageDefinition,
        outcome: StageOutcome,
        *,
        duration_ms: int,
    ) -> StageResult:
        return cls(
            stage=definition.name,
            ordinal=definition.ordinal,
            status=outcome.status,
            exit_code=outcome.exit_code,
            output=outcome.output,
            message=outcome.message,
            duration_ms=duration_ms,
            timed_out=outcome.timed_out,
        )

    def to_dict(self, *, include_output: bool = False) -> dict[str, object]:
        payload: dict[str, object] = {
            "stage": self.stage,
            "ordinal": self.ordinal,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "message": self.message,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
        }
        if include_output:
            payload["output"] = self.output
        return payload


@dataclass(frozen=True, slots=True)
class ServiceInstance:
    """Ephemeral external resource that must be torn down exactly once."""

    kind: ServiceKind
    name: str
    detail: Mapping[str, str] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return f"{self.kind.value}:{self.name}"


class PipelineRun:
    """Aggregate for one pipeline execution.

    Stage results are append-only; the terminal outcome is set exactly once.
    """

    __slots__ = (
        "_failed_stage",
        "_finished_at",
        "_outcome",
        "_results",
        "metadata",
        "params",
        "run_id",
        "started_at",
    )

    def __init__(
        self,
        *,
        run_id: str,
        metadata: BuildMetadata,
        params: RunParameters,
        started_at: datetime | None = None,
    ) -> None:
        self.run_id = run_id
        self.metadata = metadata
        self.params = params
        self.started_at = started_at if started_at is not None else _utc_now()
        self._results: list[StageResult] = []
        self._outcome = RunOutcome.IN_PROGRESS
        self._failed_stage: str | None = None
        self._finished_at: datetime | None = None

    @property
    def branch(self) -> str:
        return self.metadata.branch

    @property
    def results(self) -> tuple[StageResult, ...]:
        return tuple(self._results)

    @property
    def outcome(self) -> RunOutcome:
        return self._outcome

    @property
    def failed_stage(self) -> str | None:
        return self._failed_stage

    @property
    def finished_at(self) -> datetime | None:
        return self._finished_at

    @property
    def is_finished(self) -> bool:
        return self._outcome is not RunOutcome.IN_PROGRESS

    def append(self, result: StageResult) -> None:
        if self.is_finished:
            raise RunStateError(
                f"run {self.run_id} already finished; cannot record stage {result.stage!r}"
            )
        self._results.append(result)

    def finish(self, outcome: RunOutcome, *, failed_stage: str | None = None) -> None:
        if outcome is RunOutcome.IN_PROGRESS:
            raise RunStateError("a run cannot finish as in_progress")
        if self.is_finished:
            raise RunStateError(f"run {self.run_id} already finished as {self._outcome.value}")
        if outcome is RunOutcome.FAILED and failed_stage is None:
            raise RunStateError("a failed run must name the failing stage")
        self._outcome = outcome
        self._failed_stage = failed_stage if outcome is RunOutcome.FAILED else None
        self._finished_at = _utc_now()

    def result_for(self, stage: str) -> StageResult | None:
        for result in self._results:
            if result.stage == stage:
                return result
        return None

    def duration_ms(self) -> int:
        end = self._finished_at if self._finished_at is not None else _utc_now()
        return max(0, int((end - self.started_at).total_seconds() * 1000))

    def to_dict(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "outcome": self._outcome.value,
            "failed_stage": self._failed_stage,
            "started_at": format_timestamp(self.started_at),
            "finished_at": (
                format_timestamp(self._finished_at) if self._finished_at is not None else None
            ),
            "duration_ms": self.duration_ms(),
            "metadata": self.metadata.to_dict(),
            "params": self.params.as_mapping(),
            "stages": [result.to_dict() for result in self._results],
        }


__all__ = [
    "BuildMetadata",
    "PipelineRun",
    "RunOutcome",
    "RunParameters",
    "RunStateError",
    "ServiceInstance",
    "ServiceKind",
    "StageAction",
    "StageCleanup",
    "StageDefinition",
    "StageOutcome",
    "StageResult",
    "StageStatus",
    "format_timestamp",
]
