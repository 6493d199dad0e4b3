"""
release-orchestrator — runtime config loader.

File: src/release_orchestrator/config/loader.py

Purpose
- Load effective runtime config from defaults, ``release.toml``, ``RELEASE_*``
  environment variables, and CLI ``--set`` overrides.

Precedence
- CLI > env > file > defaults. Every layer is validated by the schema; the
  file alone is validated first so a bad file is reported as such and not as
  a confusing override error.

Environment mapping
- Each leaf of the validated config maps to ``RELEASE_<SECTION>_<KEY>``
  (nested tables join with ``_``), e.g. ``health.compose.settle_seconds`` ->
  ``RELEASE_HEALTH_COMPOSE_SETTLE_SECONDS``. The leaf's current value decides
  how the string is coerced; lists are comma-separated. ``[meta]`` is not
  overridable.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from release_orchestrator.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "release.toml"
ENV_PREFIX: Final[str] = "RELEASE_"

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})
_BOOL_HINT: Final[str] = "true/false/1/0/yes/no/on/off"

ConfigPath = tuple[str, ...]


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    ``config_path=None`` looks for ``release.toml`` in the working directory
    and tolerates its absence; an explicit path must exist.
    """

    source = (
        Path.cwd() / DEFAULT_CONFIG_FILE
        if config_path is None
        else Path(config_path).expanduser()
    ).resolve()
    from_file = assert_valid_config(
        merge_config(default_config(), _read_toml(source, required=config_path is not None))
    )

    layered = merge_config(
        from_file, _env_layer(from_file, os.environ if environ is None else environ)
    )
    layered = assert_valid_config(merge_config(layered, _cli_layer(cli_overrides or {})))
    return assert_valid_config(normalize_paths(layered, base_dir=source.parent))


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve every configured path field against ``base_dir``.

    ``~`` and ``$VARS`` are expanded; the result is a normalized POSIX string.
    """

    result = merge_config({}, config)
    for field_path in PATH_FIELDS:
        *parents, leaf = field_path
        table: Any = result
        for part in parents:
            table = table.get(part) if isinstance(table, dict) else None
        if not isinstance(table, dict) or not isinstance(table.get(leaf), str):
            continue
        candidate = Path(os.path.expandvars(table[leaf])).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        table[leaf] = Path(os.path.normpath(candidate)).as_posix()
    return result


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Return a redacted effective config representation suitable for logging."""

    return redact_config(config)


def dump_effective_config(config: Mapping[str, object], *, indent: int | None = None) -> str:
    """Return deterministic JSON dump of redacted effective config."""

    return json.dumps(
        effective_config(config),
        sort_keys=True,
        separators=(",", ":") if indent is None else (",", ": "),
        ensure_ascii=False,
        indent=indent,
    )


def parse_bool(raw: str, *, name: str) -> bool:
    """Coerce a run parameter string. Blank means ``False``."""

    word = raw.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if not word or word in _FALSE_WORDS:
        return False
    raise ConfigLoadError(f"{name} must be a boolean ({_BOOL_HINT})")


def env_var_for(path: ConfigPath) -> str:
    """Environment variable that overrides the config leaf at ``path``."""

    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for path, current in _leaves(config):
        if path[0] == "meta":
            continue
        name = env_var_for(path)
        raw = environ.get(name)
        if raw is None:
            continue
        coerce = _coercer_for(current)
        if coerce is None:
            continue
        try:
            value = coerce(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {'.'.join(path)} {exc}") from exc
        _assign(layer, path, value)
    return layer


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted in sorted(overrides):
        path = tuple(part for part in dotted.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        _assign(layer, path, overrides[dotted])
    return layer


def _leaves(
    table: Mapping[str, object], prefix: ConfigPath = ()
) -> Iterator[tuple[ConfigPath, object]]:
    for key in sorted(table):
        value = table[key]
        if isinstance(value, Mapping):
            yield from _leaves(value, (*prefix, key))
        else:
            yield (*prefix, key), value


def _coercer_for(current: object) -> Callable[[str], object] | None:
    # bool first: it is also an int.
    if isinstance(current, bool):
        return _to_bool
    if isinstance(current, int):
        return _to_int
    if isinstance(current, float):
        return _to_float
    if isinstance(current, str):
        return str
    if isinstance(current, list):
        return _to_list
    return None


def _to_bool(raw: str) -> bool:
    word = raw.lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ValueError(f"must be a boolean ({_BOOL_HINT})")


def _to_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError("must be an integer") from None


def _to_float(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError("must be a number") from None


def _to_list(raw: str) -> list[str]:
    # An empty string clears the list.
    return [item.strip() for item in raw.split(",") if item.strip()]


def _assign(target: dict[str, Any], path: ConfigPath, value: object) -> None:
    for part in path[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = target[part] = {}
        target = child
    target[path[-1]] = value


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "effective_config",
    "env_var_for",
    "load_config",
    "normalize_paths",
    "parse_bool",
]
