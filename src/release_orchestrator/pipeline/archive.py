"""
release-orchestrator — run archive

File: src/release_orchestrator/pipeline/archive.py

Purpose
- Persist what happened in a run under ``<artifacts>/<run_id>/`` whatever the
  outcome.

Layout
- ``run.json``: schema version, metadata, parameters, outcome, stage results
  without output bodies, cleanup reports.
- ``stages/NN-<stage>.log``: captured output of each stage that ran.

Failures to write are logged and reported through the return value, never
raised.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import structlog

from release_orchestrator.constants import RUN_ARCHIVE_SCHEMA_VERSION
from release_orchestrator.domain.models import PipelineRun, StageStatus
from release_orchestrator.pipeline.cleanup import CleanupReport
from release_orchestrator.security.redaction import redact_structure
from release_orchestrator.utils.fs import atomic_write

RUN_FILE_NAME = "run.json"
STAGES_DIR_NAME = "stages"


class RunArchive:
    def __init__(self, artifacts_root: Path, *, logger: Any | None = None) -> None:
        self._artifacts_root = artifacts_root
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def run_dir(self, run_id: str) -> Path:
        return self._artifacts_root / run_id

    def stage_log_path(self, run_id: str, ordinal: int, stage: str) -> Path:
        return self.run_dir(run_id) / STAGES_DIR_NAME / f"{ordinal:02d}-{stage}.log"

    def write(self, run: PipelineRun, cleanup_reports: Sequence[CleanupReport] = ()) -> Path | None:
        """Write the archive; return the run directory, or ``None`` when writing failed."""

        run_dir = self.run_dir(run.run_id)
        try:
            for result in run.results:
                if result.status is StageStatus.SKIPPED:
                    continue
                body = result.output
                if body and not body.endswith("\n"):
                    body += "\n"
                atomic_write(
                    self.stage_log_path(run.run_id, result.ordinal, result.stage),
                    body,
                    encoding="utf-8",
                )
            payload = {
                "schema_version": RUN_ARCHIVE_SCHEMA_VERSION,
                **run.to_dict(),
                "cleanup": [report.to_dict() for report in cleanup_reports],
            }
            atomic_write(
                run_dir / RUN_FILE_NAME,
                json.dumps(redact_structure(payload), sort_keys=True, indent=2) + "\n",
                encoding="utf-8",
            )
        except (OSError, TypeError, ValueError) as exc:
            self._logger.error("run_archive_failed", run_id=run.run_id, error=str(exc))
            return None

        self._logger.info("run_archived", run_id=run.run_id, path=run_dir.as_posix())
        return run_dir


def load_run_record(path: Path) -> dict[str, Any]:
    """Read back a ``run.json`` written by ``RunArchive``."""

    with path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"run record root must be an object: {path}")
    return payload


__all__ = ["RUN_FILE_NAME", "STAGES_DIR_NAME", "RunArchive", "load_run_record"]
