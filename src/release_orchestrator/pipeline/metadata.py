"""Build metadata and run parameters resolved once at pipeline start."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime

from release_orchestrator.config.loader import ConfigLoadError, parse_bool
from release_orchestrator.constants import (
    DEFAULT_BUILD_NUMBER,
    DEFAULT_REGISTRY_HOST,
    ENV_BRANCH_NAME,
    ENV_BUILD_NUMBER,
    ENV_GIT_COMMIT,
    ENV_REGISTRY_HOST,
    LOCAL_BRANCH,
    LOCAL_COMMIT_SUFFIX,
    LOCAL_VCS_REF,
    PARAM_COMPOSE_FILE,
    PARAM_DEPLOY,
    PARAM_PUSH_IMAGE,
    SHORT_COMMIT_LENGTH,
)
from release_orchestrator.domain.models import BuildMetadata, RunParameters, format_timestamp

Clock = Callable[[], datetime]


class ParameterError(ValueError):
    """Raised when a run parameter is malformed or names an unknown topology."""


def resolve_metadata(
    env: Mapping[str, str],
    *,
    image_name: str,
    registry_host: str | None = None,
    clock: Clock | None = None,
) -> BuildMetadata:
    """Compute identifying values for this run. Missing context falls back to local sentinels."""

    commit = _clean(env.get(ENV_GIT_COMMIT))
    build_number = _clean(env.get(ENV_BUILD_NUMBER)) or DEFAULT_BUILD_NUMBER
    branch = _clean(env.get(ENV_BRANCH_NAME)) or LOCAL_BRANCH
    host = _clean(env.get(ENV_REGISTRY_HOST)) or _clean(registry_host) or DEFAULT_REGISTRY_HOST
    now = clock() if clock is not None else datetime.now(UTC)

    suffix = commit[:SHORT_COMMIT_LENGTH] if commit else LOCAL_COMMIT_SUFFIX
    return BuildMetadata(
        image_name=image_name,
        tag=f"{build_number}-{suffix}",
        registry_host=host,
        build_date=format_timestamp(now),
        vcs_ref=commit or LOCAL_VCS_REF,
        branch=branch,
        build_number=build_number,
    )


def resolve_parameters(
    env: Mapping[str, str],
    *,
    topologies: Sequence[str],
    push_image: bool | None = None,
    deploy: bool | None = None,
    compose_file: str | None = None,
) -> RunParameters:
    """Read run parameters from ``env``; explicit arguments (CLI flags) win."""

    try:
        resolved_push = (
            push_image
            if push_image is not None
            else parse_bool(env.get(PARAM_PUSH_IMAGE, ""), name=PARAM_PUSH_IMAGE)
        )
        resolved_deploy = (
            deploy
            if deploy is not None
            else parse_bool(env.get(PARAM_DEPLOY, ""), name=PARAM_DEPLOY)
        )
    except ConfigLoadError as exc:
        raise ParameterError(str(exc)) from exc

    raw_compose = compose_file if compose_file is not None else env.get(PARAM_COMPOSE_FILE, "")
    resolved_compose = raw_compose.strip()
    if resolved_compose and resolved_compose not in topologies:
        known = ", ".join(topologies) or "<none configured>"
        raise ParameterError(
            f"{PARAM_COMPOSE_FILE}={resolved_compose!r} is not a known topology; "
            f"expected one of: {known}"
        )

    return RunParameters(
        push_image=resolved_push,
        deploy=resolved_deploy,
        compose_file=resolved_compose,
    )


def _clean(value: str | None) -> str:
    if value is None:
        return ""
    return value.strip()


__all__ = ["Clock", "ParameterError", "resolve_metadata", "resolve_parameters"]
