"""
release-orchestrator — configuration schema and validation.

File: src/release_orchestrator/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules for
  ``release.toml``.

Design
- The schema is one nested table of field checks (``_SCHEMA``). Every table
  rejects unknown keys and requires all of its declared keys; defaults are
  merged in before validation, so "required" only bites on explicit removal.
- A check returns the normalized value, or ``None`` after recording an issue.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject embedded secrets everywhere except the test-only ``[test_env]`` table.
- Reject a health polling budget that does not fit under the pipeline ceiling.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from release_orchestrator.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_REGISTRY_HOST,
    DEPLOY_BRANCHES,
    PUBLISH_BRANCHES,
    RELEASE_BRANCHES,
)
from release_orchestrator.security.redaction import is_sensitive_key

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

CONFIG_REDACTED: Final[str] = "<redacted>"

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_IMAGE_NAME_PATTERN = re.compile(
    r"^[a-z0-9]+(?:[._-][a-z0-9]+)*(?:/[a-z0-9]+(?:[._-][a-z0-9]+)*)*$"
)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("pipeline", "workspace"),
    ("pipeline", "artifacts_dir"),
    ("observability", "log_dir"),
)

COMMAND_NAMES: Final[tuple[str, ...]] = ("checkout", "install", "lint", "deploy")
HEALTH_SCOPES: Final[tuple[str, ...]] = ("container", "compose")


class MetaConfig(TypedDict):
    schema_version: int


class PipelineConfig(TypedDict):
    timeout_minutes: int
    workspace: str
    artifacts_dir: str
    publish_branches: list[str]
    deploy_branches: list[str]
    latest_branches: list[str]


class RegistryConfig(TypedDict):
    host: str
    image_name: str
    username_env: str
    password_env: str
    push_latest: bool


class RuntimeConfig(TypedDict):
    docker_binary: str
    compose_command: list[str]
    dockerfile: str
    build_context: str
    prune_images: bool


class CommandsConfig(TypedDict):
    checkout: list[str]
    install: list[str]
    lint: list[str]
    deploy: list[str]
    timeout_seconds: int
    build_timeout_seconds: int
    lint_required: bool


class VerificationConfig(TypedDict):
    host: str
    port: int
    container_port: int
    health_path: str
    probe_timeout_seconds: int
    log_tail_lines: int
    container_name_prefix: str


class HealthPolicyConfig(TypedDict):
    settle_seconds: float
    max_attempts: int
    interval_seconds: float


class ComposeConfig(TypedDict):
    topologies: list[str]
    project_prefix: str
    env_file_name: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "text"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool
    report_file: bool


class ReleaseConfig(TypedDict):
    meta: MetaConfig
    pipeline: PipelineConfig
    registry: RegistryConfig
    runtime: RuntimeConfig
    commands: CommandsConfig
    verification: VerificationConfig
    health: dict[str, HealthPolicyConfig]
    compose: ComposeConfig
    test_env: dict[str, str]
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[ReleaseConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "pipeline": {
        "timeout_minutes": 30,
        "workspace": ".",
        "artifacts_dir": "artifacts/",
        "publish_branches": sorted(PUBLISH_BRANCHES),
        "deploy_branches": sorted(DEPLOY_BRANCHES),
        "latest_branches": sorted(RELEASE_BRANCHES),
    },
    "registry": {
        "host": DEFAULT_REGISTRY_HOST,
        "image_name": "webapp",
        "username_env": "REGISTRY_USERNAME",
        "password_env": "REGISTRY_PASSWORD",
        "push_latest": True,
    },
    "runtime": {
        "docker_binary": "docker",
        "compose_command": ["docker", "compose"],
        "dockerfile": "Dockerfile",
        "build_context": ".",
        "prune_images": True,
    },
    "commands": {
        "checkout": ["git", "rev-parse", "--verify", "HEAD"],
        "install": [],
        "lint": [],
        "deploy": [],
        "timeout_seconds": 900,
        "build_timeout_seconds": 1200,
        "lint_required": False,
    },
    "verification": {
        "host": "localhost",
        "port": 8080,
        "container_port": 8080,
        "health_path": "/health",
        "probe_timeout_seconds": 5,
        "log_tail_lines": 100,
        "container_name_prefix": "release-verify",
    },
    "health": {
        "container": {
            "settle_seconds": 40.0,
            "max_attempts": 10,
            "interval_seconds": 5.0,
        },
        "compose": {
            "settle_seconds": 30.0,
            "max_attempts": 15,
            "interval_seconds": 5.0,
        },
    },
    "compose": {
        "topologies": ["docker-compose.yml"],
        "project_prefix": "release",
        "env_file_name": ".env.release-test",
    },
    "test_env": {
        "APP_SECRET_KEY": "test-only-secret-key",
        "APP_STORAGE_BACKEND": "sqlite",
        "APP_STORAGE_PATH": "/tmp/release-test.db",
        "APP_DISABLE_TELEMETRY": "true",
        "APP_DISABLE_SIGNUP": "true",
    },
    "observability": {
        "log_level": "INFO",
        "log_format": "json",
        "log_dir": "logs/",
        "log_to_stdout": False,
        "redact_secrets": True,
        "report_file": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered or 'unknown validation failure'}")


class _Issues:
    __slots__ = ("found",)

    def __init__(self) -> None:
        self.found: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self.found.append(ConfigValidationIssue(path=path or "<root>", message=message))


_Check = Callable[[object, str, _Issues], Any]


def default_config() -> ReleaseConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade release.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the release-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``.

    Tables merge key by key (``test_env`` included); any other value,
    lists among them, replaces what was there.
    """

    merged = _plain(base)
    for key in sorted(overlay):
        value = overlay[key]
        current = merged.get(key)
        if isinstance(value, Mapping):
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = _plain(value)
    return merged  # type: ignore[no-any-return]


def health_budget_seconds(policy: Mapping[str, object]) -> float:
    """Worst-case wall time spent polling under ``policy``."""

    settle = float(policy.get("settle_seconds", 0.0))  # type: ignore[arg-type]
    attempts = int(policy.get("max_attempts", 0))  # type: ignore[call-overload]
    interval = float(policy.get("interval_seconds", 0.0))  # type: ignore[arg-type]
    return settle + attempts * interval


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _Issues()
    normalized = _SCHEMA(config, "", issues)
    if normalized is not None:
        _check_health_budget(normalized, issues)
    if issues.found or normalized is None:
        return ConfigValidationResult(config=None, issues=tuple(issues.found))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Copy of ``config`` with every sensitive-looking key's value replaced."""

    if not isinstance(config, Mapping):
        return {}
    return _redacted(config)  # type: ignore[no-any-return]


# ---------------------------------------------------------------------------
# Field checks
# ---------------------------------------------------------------------------


def _type_name(value: object) -> str:
    return type(value).__name__


def _text(
    *,
    pattern: re.Pattern[str] | None = None,
    hint: str = "",
    rule: Callable[[str], str | None] | None = None,
) -> _Check:
    def check(value: object, path: str, issues: _Issues) -> str | None:
        if not isinstance(value, str):
            issues.add(path, f"expected string, got {_type_name(value)}")
            return None
        text = value.strip()
        problem: str | None = None
        if not text:
            problem = "must not be empty"
        elif "\x00" in text:
            problem = "must not contain NUL bytes"
        elif pattern is not None and not pattern.fullmatch(text):
            problem = hint
        elif rule is not None:
            problem = rule(text)
        if problem:
            issues.add(path, problem)
            return None
        return text

    return check


def _choice(*allowed: str) -> _Check:
    as_text = _text()

    def check(value: object, path: str, issues: _Issues) -> str | None:
        text = as_text(value, path, issues)
        if text is not None and text not in allowed:
            expected = ", ".join(sorted(allowed))
            issues.add(path, f"invalid value {text!r}; expected one of: {expected}")
            return None
        return text  # type: ignore[no-any-return]

    return check


def _integer(*, minimum: int = 1, maximum: int | None = None) -> _Check:
    def check(value: object, path: str, issues: _Issues) -> int | None:
        if isinstance(value, bool) or not isinstance(value, int):
            issues.add(path, f"expected integer, got {_type_name(value)}")
        elif value < minimum:
            issues.add(path, f"must be >= {minimum}")
        elif maximum is not None and value > maximum:
            issues.add(path, f"must be <= {maximum}")
        else:
            return value
        return None

    return check


def _number(*, minimum: float = 0.0) -> _Check:
    def check(value: object, path: str, issues: _Issues) -> float | None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            issues.add(path, f"expected number, got {_type_name(value)}")
        elif not math.isfinite(value):
            issues.add(path, "must be finite")
        elif value < minimum:
            issues.add(path, f"must be >= {minimum}")
        else:
            return float(value)
        return None

    return check


def _flag(value: object, path: str, issues: _Issues) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {_type_name(value)}")
    return None


def _words(*, allow_empty: bool = True, unique: bool = False) -> _Check:
    as_text = _text()

    def check(value: object, path: str, issues: _Issues) -> list[str] | None:
        if not isinstance(value, (list, tuple)):
            issues.add(path, f"expected array, got {_type_name(value)}")
            return None
        items = [as_text(item, f"{path}[{index}]", issues) for index, item in enumerate(value)]
        if any(item is None for item in items):
            return None
        if not items and not allow_empty:
            issues.add(path, "must not be empty")
            return None
        if unique and len(set(items)) != len(items):
            issues.add(path, "must not contain duplicates")
            return None
        return items

    return check


def _table(fields: Mapping[str, _Check]) -> _Check:
    """Check a mapping whose keys are exactly ``fields``."""

    def check(value: object, path: str, issues: _Issues) -> dict[str, Any] | None:
        if not isinstance(value, Mapping):
            issues.add(path, f"expected object, got {_type_name(value)}")
            return None
        for key in sorted(set(value) - set(fields), key=str):
            issues.add(
                _join(path, str(key)),
                "embedded secret values are forbidden; use an *_env key with an env var name"
                if is_sensitive_key(str(key))
                else "unknown field",
            )
        out: dict[str, Any] = {}
        for key, field_check in fields.items():
            key_path = _join(path, key)
            if key not in value:
                issues.add(key_path, "missing required field")
                continue
            parsed = field_check(value[key], key_path, issues)
            if parsed is not None:
                out[key] = parsed
        return out

    return check


def _schema_version(value: object, path: str, issues: _Issues) -> int | None:
    version = _integer()(value, path, issues)
    if version is not None and version != ConfigSchemaVersion:
        issues.add(path, migration_guidance(version))
        return None
    return version  # type: ignore[no-any-return]


def _test_env(value: object, path: str, issues: _Issues) -> dict[str, str] | None:
    # Test-only values; the embedded-secret rule does not apply to this table.
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {_type_name(value)}")
        return None
    out: dict[str, str] = {}
    for key in sorted(value, key=str):
        key_path = _join(path, str(key))
        item = value[key]
        if not isinstance(key, str) or not _ENV_NAME_PATTERN.fullmatch(key):
            issues.add(key_path, "must be an env var name (example: APP_STORAGE_PATH)")
        elif isinstance(item, bool):
            out[key] = "true" if item else "false"
        elif isinstance(item, (str, int)):
            out[key] = str(item)
        else:
            issues.add(key_path, f"expected string, got {_type_name(item)}")
    return out


def _bare_host(text: str) -> str | None:
    return "must be a bare host[:port]" if "/" in text or " " in text else None


def _absolute_url_path(text: str) -> str | None:
    return None if text.startswith("/") else "must start with '/'"


def _bare_file_name(text: str) -> str | None:
    return "must be a bare file name" if "/" in text or "\\" in text else None


_env_name = _text(
    pattern=_ENV_NAME_PATTERN, hint="must be an env var name (example: REGISTRY_PASSWORD)"
)
_health_policy = _table(
    {
        "settle_seconds": _number(),
        "max_attempts": _integer(),
        "interval_seconds": _number(),
    }
)

_SCHEMA: Final[_Check] = _table(
    {
        "meta": _table({"schema_version": _schema_version}),
        "pipeline": _table(
            {
                "timeout_minutes": _integer(),
                "workspace": _text(),
                "artifacts_dir": _text(),
                "publish_branches": _words(),
                "deploy_branches": _words(),
                "latest_branches": _words(),
            }
        ),
        "registry": _table(
            {
                "host": _text(rule=_bare_host),
                "image_name": _text(
                    pattern=_IMAGE_NAME_PATTERN,
                    hint="must be a lowercase repository name (example: team/webapp)",
                ),
                "username_env": _env_name,
                "password_env": _env_name,
                "push_latest": _flag,
            }
        ),
        "runtime": _table(
            {
                "docker_binary": _text(),
                "compose_command": _words(allow_empty=False),
                "dockerfile": _text(),
                "build_context": _text(),
                "prune_images": _flag,
            }
        ),
        "commands": _table(
            {
                **{name: _words() for name in COMMAND_NAMES},
                "timeout_seconds": _integer(),
                "build_timeout_seconds": _integer(),
                "lint_required": _flag,
            }
        ),
        "verification": _table(
            {
                "host": _text(rule=_bare_host),
                "port": _integer(maximum=65535),
                "container_port": _integer(maximum=65535),
                "health_path": _text(rule=_absolute_url_path),
                "probe_timeout_seconds": _integer(),
                "log_tail_lines": _integer(),
                "container_name_prefix": _text(),
            }
        ),
        "health": _table({scope: _health_policy for scope in HEALTH_SCOPES}),
        "compose": _table(
            {
                "topologies": _words(unique=True),
                "project_prefix": _text(),
                "env_file_name": _text(rule=_bare_file_name),
            }
        ),
        "test_env": _test_env,
        "observability": _table(
            {
                "log_level": _choice("DEBUG", "INFO", "WARNING", "ERROR"),
                "log_format": _choice("json", "text"),
                "log_dir": _text(),
                "log_to_stdout": _flag,
                "redact_secrets": _flag,
                "report_file": _flag,
            }
        ),
    }
)


def _check_health_budget(config: Mapping[str, Any], issues: _Issues) -> None:
    timeout_minutes = config.get("pipeline", {}).get("timeout_minutes")
    if not isinstance(timeout_minutes, int):
        return
    ceiling = timeout_minutes * 60.0
    for scope, policy in config.get("health", {}).items():
        if not isinstance(policy, Mapping) or len(policy) != 3:
            continue
        budget = health_budget_seconds(policy)
        if budget >= ceiling:
            issues.add(
                _join("health", scope),
                f"polling budget {budget:g}s must be below pipeline.timeout_minutes "
                f"({ceiling:g}s)",
            )


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _plain(value: object) -> Any:
    if isinstance(value, Mapping):
        return {str(key): _plain(value[key]) for key in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return copy.deepcopy(value)


def _redacted(value: object) -> object:
    if isinstance(value, Mapping):
        return {
            key: CONFIG_REDACTED if is_sensitive_key(str(key)) else _redacted(item)
            for key, item in sorted(value.items(), key=lambda pair: str(pair[0]))
        }
    if isinstance(value, (list, tuple)):
        return [_redacted(item) for item in value]
    return value


__all__ = [
    "COMMAND_NAMES",
    "CONFIG_REDACTED",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "HEALTH_SCOPES",
    "PATH_FIELDS",
    "ReleaseConfig",
    "assert_valid_config",
    "default_config",
    "health_budget_seconds",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
