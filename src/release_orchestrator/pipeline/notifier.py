"""
release-orchestrator — terminal run notifier

File: src/release_orchestrator/pipeline/notifier.py

Purpose
- Render the end-of-run summary and deliver it to every configured sink.

Contract
- ``report(run, cleanup_reports)`` is called once per run, after the terminal
  state is set. A second call for the same run returns the first rendering
  without delivering again.
- The summary states Succeeded/Failed, names the failing stage, and lists
  every stage with its own status.
- Rendering or delivery problems are logged; ``report`` never raises.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog
from jinja2 import Environment, StrictUndefined, TemplateError

from release_orchestrator.domain.models import PipelineRun, RunOutcome, format_timestamp
from release_orchestrator.pipeline.cleanup import CleanupReport
from release_orchestrator.utils.fs import atomic_write

REPORT_FILE_NAME = "report.txt"

DEFAULT_REPORT_TEMPLATE = """\
Pipeline {{ outcome_label }}{{ " at stage '%s'"|format(failed_stage) if failed_stage else "" }}
run:        {{ run_id }}
branch:     {{ metadata.branch }}
revision:   {{ metadata.vcs_ref }}
image:      {{ image_ref }}
built:      {{ metadata.build_date }}
finished:   {{ finished_at }}
duration:   {{ "%.1f"|format(duration_ms / 1000) }}s

Stages
{% for stage in stages %}
  {{ "%-18s"|format(stage.stage) }} {{ "%-8s"|format(stage.status) }} {{ stage.message }}
{% endfor %}
{% if cleanup %}

Cleanup
{% for item in cleanup %}
  {{ "%-14s"|format(item.kind) }} {{ item.resource }}: {{ item.status }}{{ " (%s)"|format(item.detail) if item.detail else "" }}
{% endfor %}
{% endif %}"""


@runtime_checkable
class ReportSink(Protocol):
    """Destination for a rendered run report."""

    name: str

    def deliver(self, run: PipelineRun, text: str) -> None: ...


class LogSink:
    """Writes the summary to the structured log, one event per run."""

    name = "log"

    def __init__(self, logger: Any | None = None) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def deliver(self, run: PipelineRun, text: str) -> None:
        log = self._logger.info if run.outcome is RunOutcome.SUCCEEDED else self._logger.error
        log(
            "run_report",
            run_id=run.run_id,
            outcome=run.outcome.value,
            failed_stage=run.failed_stage,
            report=text,
        )


class FileSink:
    """Writes ``report.txt`` under the run's artifact directory."""

    name = "file"

    def __init__(self, artifacts_root: Path) -> None:
        self._artifacts_root = artifacts_root

    def path_for(self, run: PipelineRun) -> Path:
        return self._artifacts_root / run.run_id / REPORT_FILE_NAME

    def deliver(self, run: PipelineRun, text: str) -> None:
        atomic_write(self.path_for(run), text, encoding="utf-8")


class CallbackSink:
    """Hands the rendered text to a callable, e.g. the CLI printer."""

    def __init__(self, callback: Callable[[str], None], *, name: str = "callback") -> None:
        self._callback = callback
        self.name = name

    def deliver(self, run: PipelineRun, text: str) -> None:
        self._callback(text)


class Notifier:
    def __init__(
        self,
        sinks: Sequence[ReportSink],
        *,
        template: str = DEFAULT_REPORT_TEMPLATE,
        logger: Any | None = None,
    ) -> None:
        self._sinks = tuple(sinks)
        self._environment = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )
        self._template_source = template
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._rendered: dict[str, str] = {}

    @property
    def sinks(self) -> tuple[ReportSink, ...]:
        return self._sinks

    def rendered(self, run_id: str) -> str | None:
        return self._rendered.get(run_id)

    def render(self, run: PipelineRun, cleanup_reports: Sequence[CleanupReport] = ()) -> str:
        template = self._environment.from_string(self._template_source)
        finished = run.finished_at
        return template.render(
            outcome_label="SUCCEEDED" if run.outcome is RunOutcome.SUCCEEDED else "FAILED",
            failed_stage=run.failed_stage,
            run_id=run.run_id,
            metadata=run.metadata.to_dict(),
            image_ref=run.metadata.image_ref,
            finished_at=format_timestamp(finished) if finished is not None else "-",
            duration_ms=run.duration_ms(),
            stages=[result.to_dict() for result in run.results],
            cleanup=[report.to_dict() for report in cleanup_reports],
        )

    def report(self, run: PipelineRun, cleanup_reports: Sequence[CleanupReport] = ()) -> str:
        previous = self._rendered.get(run.run_id)
        if previous is not None:
            self._logger.warning("notifier_duplicate_report", run_id=run.run_id)
            return previous

        try:
            text = self.render(run, cleanup_reports)
        except (TemplateError, TypeError, ValueError) as exc:
            self._logger.error("notifier_render_failed", run_id=run.run_id, error=str(exc))
            text = _fallback_text(run)
        self._rendered[run.run_id] = text

        for sink in self._sinks:
            try:
                sink.deliver(run, text)
            except Exception as exc:  # noqa: BLE001
                self._logger.error(
                    "notifier_delivery_failed",
                    run_id=run.run_id,
                    sink=sink.name,
                    error=f"{type(exc).__name__}: {exc}",
                )
        return text


def _fallback_text(run: PipelineRun) -> str:
    outcome = "SUCCEEDED" if run.outcome is RunOutcome.SUCCEEDED else "FAILED"
    suffix = f" at stage '{run.failed_stage}'" if run.failed_stage else ""
    return f"Pipeline {outcome}{suffix}\nrun: {run.run_id}\n"


__all__ = [
    "DEFAULT_REPORT_TEMPLATE",
    "REPORT_FILE_NAME",
    "CallbackSink",
    "FileSink",
    "LogSink",
    "Notifier",
    "ReportSink",
]
