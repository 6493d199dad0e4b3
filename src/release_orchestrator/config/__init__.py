"""Configuration loading, validation, and typed settings."""

from release_orchestrator.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    effective_config,
    env_var_for,
    load_config,
    normalize_paths,
    parse_bool,
)
from release_orchestrator.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)
from release_orchestrator.config.settings import PipelineSettings

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PipelineSettings",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "effective_config",
    "env_var_for",
    "load_config",
    "merge_config",
    "normalize_paths",
    "parse_bool",
    "redact_config",
    "validate_config",
]
