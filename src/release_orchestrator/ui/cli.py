"""Command-line interface router for release-orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
import tomllib
from collections.abc import Mapping, Sequence
from contextlib import suppress
from typing import Any

from release_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    PipelineSettings,
    effective_config,
    load_config,
)
from release_orchestrator.domain.ids import generate_run_id
from release_orchestrator.domain.models import PipelineRun
from release_orchestrator.observability import setup_logging, shutdown_logging
from release_orchestrator.pipeline import (
    ParameterError,
    PipelineRunner,
    PlannedStage,
    RunReport,
    RunRequest,
)
from release_orchestrator.ui.render import CLIRenderer, create_renderer
from release_orchestrator.utils.concurrency import CancellationToken


class CLIError(RuntimeError):
    """A handler failure the router reports as one line on stderr."""

    def __init__(self, message: str, *, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="release-pipeline",
        description=(
            "release-orchestrator — build, verify and publish a containerized service.\n\n"
            "Common workflows:\n"
            "  release-pipeline run                      Run every gated stage\n"
            "  release-pipeline run --push-image         Also publish off the release branches\n"
            "  release-pipeline plan --branch feature/x  Show which stages would run\n"
            "  release-pipeline config --json            Print the redacted effective config\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to release TOML config (default: ./release.toml if present).",
    )
    common.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override one config value by dotted key, e.g. pipeline.timeout_minutes=10.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output and mirror logs to stderr.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    run_inputs = argparse.ArgumentParser(add_help=False)
    run_inputs.add_argument("--branch", default=None, help="Branch name (overrides BRANCH_NAME)")
    run_inputs.add_argument("--commit", default=None, help="Revision (overrides GIT_COMMIT)")
    run_inputs.add_argument(
        "--build-number", default=None, help="CI build number (overrides BUILD_NUMBER)"
    )
    run_inputs.add_argument(
        "--push-image",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Publish the image regardless of branch (overrides PUSH_IMAGE).",
    )
    run_inputs.add_argument(
        "--deploy",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Deploy regardless of branch (overrides DEPLOY).",
    )
    run_inputs.add_argument(
        "--compose-file",
        default=None,
        help="Compose topology for integration verification (overrides COMPOSE_FILE).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common, run_inputs],
        help="Execute the release pipeline",
        description=(
            "Resolve build metadata, evaluate stage gates and execute every enabled stage.\n"
            "Cleanup and the run report happen whatever the outcome."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.set_defaults(handler=_cmd_run)

    # plan ----------------------------------------------------------------
    plan_parser = subparsers.add_parser(
        "plan",
        parents=[common, run_inputs],
        help="Show which stages would run, without executing anything",
    )
    plan_parser.set_defaults(handler=_cmd_plan)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the redacted effective configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    args = build_parser().parse_args(None if argv is None else list(argv))
    try:
        return int(args.handler(args))
    except CLIError as exc:
        sys.stderr.write(f"error: {exc}\n")
        return exc.exit_code


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    settings = PipelineSettings.from_config(config)
    run_id = generate_run_id()
    verbose = args.verbose

    runner = PipelineRunner(settings)
    run = _prepare_run(runner, args, run_id=run_id)

    handle = setup_logging(
        config.get("observability") if isinstance(config.get("observability"), Mapping) else None,
        run_id=run_id,
        log_to_stdout=True if verbose else None,
        level="DEBUG" if verbose else None,
    )
    try:
        try:
            report = asyncio.run(_run_until_terminated(runner, run))
        except KeyboardInterrupt:
            print("error: interrupted; cleanup was attempted", file=sys.stderr)
            return 1
    finally:
        shutdown_logging(handle)

    exit_code = 0 if report.succeeded else 1
    if args.json:
        _emit_json(_run_payload(report))
        return exit_code

    renderer = _get_renderer(args)
    _render_run(renderer, report)
    if verbose:
        renderer.kv("Log file", handle.log_path.as_posix())
    return exit_code


async def _run_until_terminated(runner: PipelineRunner, run: PipelineRun) -> RunReport:
    """Run the pipeline; SIGTERM cancels it cooperatively so cleanup and the report still happen."""

    token = CancellationToken()
    loop = asyncio.get_running_loop()
    # add_signal_handler is unavailable on Windows event loops.
    with suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGTERM, token.cancel, "terminated by SIGTERM")
    try:
        return await runner.run(run, cancel_token=token)
    finally:
        with suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGTERM)


def _cmd_plan(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    settings = PipelineSettings.from_config(config)
    runner = PipelineRunner(settings)
    run = _prepare_run(runner, args, run_id=generate_run_id())
    planned = runner.plan(run)

    if args.json:
        _emit_json(
            {
                "command": "plan",
                "metadata": run.metadata.to_dict(),
                "params": run.params.as_mapping(),
                "stages": [stage.to_dict() for stage in planned],
            }
        )
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Branch", run.branch)
    renderer.kv("Image", run.metadata.image_ref)
    renderer.kv("Parameters", _format_params(run))
    _render_plan(renderer, planned)
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    redacted = effective_config(config)

    if args.json:
        _emit_json({"command": "config", "config": redacted})
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Config file", _clean(args.config_path) or "(default)")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _render_run(renderer: CLIRenderer, report: RunReport) -> None:
    run = report.run
    renderer.text(report.report_text.rstrip("\n"))
    if report.warnings:
        renderer.section("Warnings:")
        renderer.items(list(report.warnings))
    failed_cleanup = [item for item in report.cleanup_reports if not item.succeeded]
    if failed_cleanup:
        renderer.section("Cleanup problems:")
        renderer.items([f"{item.kind} {item.resource}: {item.detail}" for item in failed_cleanup])
    if report.archive_dir is not None:
        renderer.blank()
        renderer.kv("Artifacts", report.archive_dir.as_posix())
    if renderer.verbose:
        renderer.table(
            ("#", "STAGE", "STATUS", "MS"),
            [
                (str(result.ordinal), result.stage, result.status.value, str(result.duration_ms))
                for result in run.results
            ],
            title="Timings:",
            status_column=2,
        )


def _render_plan(renderer: CLIRenderer, planned: Sequence[PlannedStage]) -> None:
    renderer.table(
        ("#", "STAGE", "RUNS", "GATE"),
        [
            (
                str(stage.ordinal),
                stage.name,
                "yes" if stage.will_run else "skipped",
                stage.gate.describe(),
            )
            for stage in planned
        ],
        title="Stages:",
        status_column=2,
    )


def _run_payload(report: RunReport) -> dict[str, object]:
    run = report.run
    payload: dict[str, object] = {"command": "run", **run.to_dict()}
    payload["cleanup"] = [item.to_dict() for item in report.cleanup_reports]
    payload["warnings"] = list(report.warnings)
    payload["artifacts"] = report.archive_dir.as_posix() if report.archive_dir else None
    return payload


def _format_params(run: PipelineRun) -> str:
    params = run.params.as_mapping()
    return " ".join(f"{key}={json.dumps(value)}" for key, value in params.items())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=args.no_color, verbose=args.verbose)


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path = _clean(args.config_path)
    overrides = _parse_overrides(args.overrides)

    try:
        return load_config(config_path, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _prepare_run(runner: PipelineRunner, args: argparse.Namespace, *, run_id: str) -> PipelineRun:
    request = RunRequest(
        branch=_clean(args.branch),
        commit=_clean(args.commit),
        build_number=_clean(args.build_number),
        push_image=args.push_image,
        deploy=args.deploy,
        compose_file=args.compose_file,
        run_id=run_id,
    )
    try:
        return runner.prepare(request)
    except ParameterError as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _parse_overrides(raw_items: Sequence[str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for item in raw_items:
        key, sep, raw_value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise CLIError(f"invalid --set value {item!r}; expected KEY=VALUE", exit_code=2)
        overrides[key] = _parse_override_value(raw_value.strip())
    return overrides


def _parse_override_value(raw: str) -> object:
    """Interpret ``raw`` as a TOML value; bare words stay strings."""

    try:
        return tomllib.loads(f"value = {raw}")["value"]
    except tomllib.TOMLDecodeError:
        return raw


def _clean(value: str | None) -> str | None:
    return (value or "").strip() or None


__all__ = ["CLIError", "build_parser", "run_cli"]
