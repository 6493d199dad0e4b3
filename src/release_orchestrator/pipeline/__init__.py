"""Stage sequencing, gating, publication, cleanup and reporting."""

from release_orchestrator.pipeline.archive import RunArchive, load_run_record
from release_orchestrator.pipeline.cleanup import CleanupGuarantor, CleanupReport, CleanupStatus
from release_orchestrator.pipeline.gates import (
    Always,
    BranchOrFlag,
    Gate,
    GateContext,
    ParameterPresent,
    default_gate_table,
    should_run,
)
from release_orchestrator.pipeline.metadata import (
    ParameterError,
    resolve_metadata,
    resolve_parameters,
)
from release_orchestrator.pipeline.notifier import (
    CallbackSink,
    FileSink,
    LogSink,
    Notifier,
    ReportSink,
)
from release_orchestrator.pipeline.publisher import (
    ArtifactPublisher,
    PublishOutcome,
    PublishStatus,
)
from release_orchestrator.pipeline.runner import PipelineRunner, RunRequest
from release_orchestrator.pipeline.scheduler import PlannedStage, RunReport, StageScheduler
from release_orchestrator.pipeline.stages import StageContext, build_stage_definitions

__all__ = [
    "Always",
    "ArtifactPublisher",
    "BranchOrFlag",
    "CallbackSink",
    "CleanupGuarantor",
    "CleanupReport",
    "CleanupStatus",
    "FileSink",
    "Gate",
    "GateContext",
    "LogSink",
    "Notifier",
    "ParameterError",
    "ParameterPresent",
    "PipelineRunner",
    "PlannedStage",
    "PublishOutcome",
    "PublishStatus",
    "ReportSink",
    "RunArchive",
    "RunReport",
    "RunRequest",
    "StageContext",
    "StageScheduler",
    "build_stage_definitions",
    "default_gate_table",
    "load_run_record",
    "resolve_metadata",
    "resolve_parameters",
    "should_run",
]
