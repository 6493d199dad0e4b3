"""Unit tests for the per-run archive layout."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from release_orchestrator.constants import RUN_ARCHIVE_SCHEMA_VERSION
from release_orchestrator.domain.models import (
    BuildMetadata,
    PipelineRun,
    RunOutcome,
    RunParameters,
    StageResult,
    StageStatus,
)
from release_orchestrator.pipeline.archive import RunArchive, load_run_record
from release_orchestrator.pipeline.cleanup import CleanupReport, CleanupStatus
from release_orchestrator.security.redaction import REDACTED_VALUE

if TYPE_CHECKING:
    from conftest import RecordingLogger


def _run() -> PipelineRun:
    run = PipelineRun(
        run_id="run-01J0000000000000000000ABCD",
        metadata=BuildMetadata(
            image_name="webapp",
            tag="7-abcdef0",
            registry_host="docker.io",
            build_date="2026-03-01T12:30:45Z",
            vcs_ref="abcdef0123",
            branch="main",
            build_number="7",
        ),
        params=RunParameters(push_image=True),
    )
    run.append(
        StageResult(stage="checkout", ordinal=1, status=StageStatus.PASSED, output="HEAD ok")
    )
    run.append(
        StageResult(
            stage="verify_compose",
            ordinal=6,
            status=StageStatus.SKIPPED,
            message="gate not satisfied: parameter COMPOSE_FILE is set",
        )
    )
    run.append(
        StageResult(
            stage="build",
            ordinal=4,
            status=StageStatus.FAILED,
            exit_code=1,
            output="step 3/9 failed\n",
        )
    )
    run.finish(RunOutcome.FAILED, failed_stage="build")
    return run


def test_archive_layout(tmp_path: Path) -> None:
    archive = RunArchive(tmp_path)
    run = _run()
    cleanup = [CleanupReport("dangling", "image_layers", None, CleanupStatus.SUCCEEDED)]

    run_dir = archive.write(run, cleanup)

    assert run_dir == tmp_path / run.run_id
    assert (run_dir / "stages" / "01-checkout.log").read_text(encoding="utf-8") == "HEAD ok\n"
    assert (run_dir / "stages" / "04-build.log").read_text(encoding="utf-8") == "step 3/9 failed\n"
    assert not (run_dir / "stages" / "06-verify_compose.log").exists()

    record = load_run_record(run_dir / "run.json")
    assert record["schema_version"] == RUN_ARCHIVE_SCHEMA_VERSION
    assert record["outcome"] == "failed"
    assert record["failed_stage"] == "build"
    assert record["params"]["PUSH_IMAGE"] is True
    assert [stage["stage"] for stage in record["stages"]] == ["checkout", "verify_compose", "build"]
    assert "output" not in record["stages"][0]
    assert record["cleanup"][0]["resource"] == "dangling"


def test_archive_redacts_secret_shaped_values(tmp_path: Path) -> None:
    run = PipelineRun(
        run_id="run-01J0000000000000000000ABCE",
        metadata=_run().metadata,
        params=RunParameters(),
    )
    run.append(
        StageResult(
            stage="deploy",
            ordinal=8,
            status=StageStatus.FAILED,
            message="deploy failed: password=hunter2",
        )
    )
    run.finish(RunOutcome.FAILED, failed_stage="deploy")

    run_dir = RunArchive(tmp_path).write(run)

    assert run_dir is not None
    text = (run_dir / "run.json").read_text(encoding="utf-8")
    assert "hunter2" not in text
    assert REDACTED_VALUE in text


def test_write_failure_is_reported_not_raised(
    tmp_path: Path, recording_logger: RecordingLogger
) -> None:
    blocker = tmp_path / "artifacts"
    blocker.write_text("not a directory", encoding="utf-8")

    assert RunArchive(blocker, logger=recording_logger).write(_run()) is None
    assert recording_logger.find("run_archive_failed")
