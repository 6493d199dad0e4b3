"""
release-orchestrator — unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Redacted effective config dumping.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from release_orchestrator.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_var_for,
    load_config,
    parse_bool,
)
from release_orchestrator.config.schema import ConfigValidationError


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "release.toml"
    _write_config(
        config_path,
        """
[pipeline]
timeout_minutes = 20

[registry]
image_name = "team/webapp"
host = "registry.example.com"
""".strip(),
    )

    loaded = load_config(
        config_path,
        environ={"RELEASE_PIPELINE_TIMEOUT_MINUTES": "25", "RELEASE_REGISTRY_PUSH_LATEST": "no"},
        cli_overrides={"pipeline.timeout_minutes": 40},
    )

    assert loaded["pipeline"]["timeout_minutes"] == 40
    assert loaded["registry"]["push_latest"] is False
    assert loaded["registry"]["image_name"] == "team/webapp"
    assert loaded["registry"]["host"] == "registry.example.com"
    assert loaded["commands"]["build_timeout_seconds"] == 1200


def test_env_override_coercion(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    loaded = load_config(
        None,
        environ={
            "RELEASE_COMMANDS_LINT": "flake8, --max-line-length=100",
            "RELEASE_HEALTH_CONTAINER_INTERVAL_SECONDS": "2.5",
            "RELEASE_COMMANDS_LINT_REQUIRED": "on",
        },
    )
    assert loaded["commands"]["lint"] == ["flake8", "--max-line-length=100"]
    assert loaded["health"]["container"]["interval_seconds"] == 2.5
    assert loaded["commands"]["lint_required"] is True


@pytest.mark.parametrize(
    ("name", "raw"),
    [
        ("RELEASE_PIPELINE_TIMEOUT_MINUTES", "soon"),
        ("RELEASE_HEALTH_COMPOSE_SETTLE_SECONDS", "a while"),
        ("RELEASE_REGISTRY_PUSH_LATEST", "maybe"),
    ],
)
def test_env_override_coercion_errors(
    name: str, raw: str, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigLoadError, match=name):
        load_config(None, environ={name: raw})


def test_paths_normalized_relative_to_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "ci" / "release.toml"
    _write_config(config_path, '[pipeline]\nworkspace = ".."\nartifacts_dir = "out/artifacts"\n')

    loaded = load_config(config_path, environ={})

    root = tmp_path.resolve()
    assert loaded["pipeline"]["workspace"] == root.as_posix()
    assert loaded["pipeline"]["artifacts_dir"] == (root / "ci" / "out" / "artifacts").as_posix()


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "missing.toml", environ={})


def test_invalid_toml_is_an_error(tmp_path: Path) -> None:
    config_path = tmp_path / "release.toml"
    _write_config(config_path, "[pipeline\n")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(config_path, environ={})


def test_cli_override_is_validated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(None, environ={}, cli_overrides={"verification.port": 0})
    assert "verification.port" in str(excinfo.value)


def test_effective_config_dump_is_redacted_and_deterministic(tmp_path: Path) -> None:
    config_path = tmp_path / "release.toml"
    _write_config(config_path, '[test_env]\nAPP_SECRET_KEY = "do-not-print"\n')

    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))

    assert first == second
    assert "do-not-print" not in first
    assert json.loads(first)["test_env"]["APP_SECRET_KEY"] == "<redacted>"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("true", True), ("YES", True), ("1", True), ("", False), ("off", False), (" no ", False)],
)
def test_parse_bool(raw: str, expected: bool) -> None:
    assert parse_bool(raw, name="PUSH_IMAGE") is expected


def test_parse_bool_rejects_other_text() -> None:
    with pytest.raises(ConfigLoadError, match="PUSH_IMAGE"):
        parse_bool("sometimes", name="PUSH_IMAGE")


def test_env_var_names_join_nested_tables() -> None:
    assert env_var_for(("health", "compose", "settle_seconds")) == (
        "RELEASE_HEALTH_COMPOSE_SETTLE_SECONDS"
    )
    assert env_var_for(("pipeline", "timeout_minutes")) == "RELEASE_PIPELINE_TIMEOUT_MINUTES"


def test_meta_section_is_not_overridable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    loaded = load_config(None, environ={"RELEASE_META_SCHEMA_VERSION": "99"})
    assert loaded["meta"]["schema_version"] == 1
