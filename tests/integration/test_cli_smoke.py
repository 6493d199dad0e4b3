"""
release-orchestrator — CLI smoke contracts

File: tests/integration/test_cli_smoke.py

Purpose
- Enforce CLI behavior for ``release-pipeline`` config/plan/run: exit codes,
  JSON output shape, and persistent run artifacts.
- Runs real subprocesses only for commands that need no container engine.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from release_orchestrator.main import ExitCode, cli_entrypoint
from release_orchestrator.ui.cli import run_cli

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"

_AMBIENT = ("BRANCH_NAME", "GIT_COMMIT", "BUILD_NUMBER", "PUSH_IMAGE", "DEPLOY", "COMPOSE_FILE")


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in _AMBIENT:
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("RELEASE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()


def _write_config(root: Path, extra: str = "") -> Path:
    path = root / "release.toml"
    path.write_text(
        '[pipeline]\nworkspace = "."\nartifacts_dir = "artifacts"\n\n'
        '[observability]\nlog_dir = "logs"\n\n' + extra,
        encoding="utf-8",
    )
    return path


def _run_module(cwd: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = str(SRC_PATH) if not existing else f"{SRC_PATH}:{existing}"
    return subprocess.run(
        [sys.executable, "-m", "release_orchestrator", *args],
        cwd=cwd,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def test_config_json_is_redacted(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_path = _write_config(tmp_path, '[test_env]\nAPP_SECRET_KEY = "do-not-print"\n')

    code = run_cli(["config", "--json", "--config", str(config_path)])

    out = capsys.readouterr().out
    assert code == 0
    payload = json.loads(out)
    assert payload["command"] == "config"
    assert payload["config"]["test_env"]["APP_SECRET_KEY"] == "<redacted>"
    assert "do-not-print" not in out


def test_plan_json_for_feature_branch(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_path = _write_config(tmp_path)

    code = run_cli(
        ["plan", "--json", "--config", str(config_path), "--branch", "feature/x", "--commit", "abc1234"]
    )

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    runs = {stage["stage"]: stage["will_run"] for stage in payload["stages"]}
    assert runs["build"] is True
    assert runs["verify_compose"] is False
    assert runs["publish"] is False
    assert payload["metadata"]["tag"] == "0-abc1234"


def test_plan_with_push_flag_and_topology(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_path = _write_config(tmp_path)

    code = run_cli(
        [
            "plan",
            "--json",
            "--config",
            str(config_path),
            "--branch",
            "feature/x",
            "--push-image",
            "--compose-file",
            "docker-compose.yml",
        ]
    )

    assert code == 0
    runs = {stage["stage"]: stage["will_run"] for stage in json.loads(capsys.readouterr().out)["stages"]}
    assert runs["publish"] is True
    assert runs["verify_compose"] is True
    assert runs["deploy"] is False


def test_unknown_topology_is_a_parameter_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    config_path = _write_config(tmp_path)

    code = run_cli(["plan", "--config", str(config_path), "--compose-file", "prod.yml"])

    assert code == ExitCode.CONFIG_ERROR
    assert "not a known topology" in capsys.readouterr().err


def test_invalid_override_is_a_config_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    config_path = _write_config(tmp_path)

    assert run_cli(["config", "--config", str(config_path), "--set", "verification.port=0"]) == 2
    assert "verification.port" in capsys.readouterr().err
    assert run_cli(["config", "--config", str(config_path), "--set", "novalue"]) == 2


def test_missing_config_file_routes_to_exit_2(tmp_path: Path) -> None:
    assert cli_entrypoint(["config", "--config", str(tmp_path / "missing.toml")]) == 2


def test_failed_run_exits_1_and_writes_artifacts(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    config_path = _write_config(tmp_path, '[commands]\ncheckout = ["false"]\n')

    code = run_cli(["run", "--json", "--config", str(config_path), "--branch", "feature/x"])

    assert code == ExitCode.RUN_FAILED
    payload = json.loads(capsys.readouterr().out)
    assert payload["outcome"] == "failed"
    assert payload["failed_stage"] == "checkout"
    assert [stage["stage"] for stage in payload["stages"]] == ["checkout"]

    run_dir = Path(payload["artifacts"])
    assert (run_dir / "run.json").exists()
    assert (run_dir / "report.txt").read_text(encoding="utf-8").startswith(
        "Pipeline FAILED at stage 'checkout'"
    )
    log_path = tmp_path / "logs" / payload["run_id"] / "pipeline.jsonl"
    events = [json.loads(line)["message"] for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert "run_started" in events
    assert "run_finished" in events


def test_module_entrypoint_subprocess(tmp_path: Path) -> None:
    _write_config(tmp_path)

    completed = _run_module(tmp_path, "config", "--json")

    assert completed.returncode == 0, completed.stderr
    assert json.loads(completed.stdout)["config"]["registry"]["image_name"] == "webapp"


def test_missing_subcommand_is_a_usage_error(tmp_path: Path) -> None:
    completed = _run_module(tmp_path)
    assert completed.returncode == 2
