"""Domain model for pipeline runs."""

from release_orchestrator.domain.ids import generate_run_id, short_id, validate_run_id
from release_orchestrator.domain.models import (
    BuildMetadata,
    PipelineRun,
    RunOutcome,
    RunParameters,
    RunStateError,
    ServiceInstance,
    ServiceKind,
    StageAction,
    StageCleanup,
    StageDefinition,
    StageOutcome,
    StageResult,
    StageStatus,
    format_timestamp,
)

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
    "generate_run_id",
    "short_id",
    "validate_run_id",
]
