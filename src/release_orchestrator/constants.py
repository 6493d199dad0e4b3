"""Stable constants shared across the pipeline engine."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Stage identifiers in declared execution order.
CHECKOUT_STAGE: Final[str] = "checkout"
INSTALL_STAGE: Final[str] = "install"
LINT_STAGE: Final[str] = "lint"
BUILD_STAGE: Final[str] = "build"
VERIFY_CONTAINER_STAGE: Final[str] = "verify_container"
VERIFY_COMPOSE_STAGE: Final[str] = "verify_compose"
PUBLISH_STAGE: Final[str] = "publish"
DEPLOY_STAGE: Final[str] = "deploy"

STAGE_IDS_IN_ORDER: Final[tuple[str, ...]] = (
    CHECKOUT_STAGE,
    INSTALL_STAGE,
    LINT_STAGE,
    BUILD_STAGE,
    VERIFY_CONTAINER_STAGE,
    VERIFY_COMPOSE_STAGE,
    PUBLISH_STAGE,
    DEPLOY_STAGE,
)

# Run parameter names supplied by the caller.
PARAM_PUSH_IMAGE: Final[str] = "PUSH_IMAGE"
PARAM_DEPLOY: Final[str] = "DEPLOY"
PARAM_COMPOSE_FILE: Final[str] = "COMPOSE_FILE"

# Ambient context variables consumed from the CI host.
ENV_BRANCH_NAME: Final[str] = "BRANCH_NAME"
ENV_GIT_COMMIT: Final[str] = "GIT_COMMIT"
ENV_BUILD_NUMBER: Final[str] = "BUILD_NUMBER"
ENV_REGISTRY_HOST: Final[str] = "REGISTRY_HOST"

# Sentinels used when ambient context is absent.
LOCAL_BRANCH: Final[str] = "local"
LOCAL_COMMIT_SUFFIX: Final[str] = "local"
LOCAL_VCS_REF: Final[str] = "local-build"
DEFAULT_BUILD_NUMBER: Final[str] = "0"
DEFAULT_REGISTRY_HOST: Final[str] = "docker.io"
SHORT_COMMIT_LENGTH: Final[int] = 7

# Branch sets used by the default gates.
RELEASE_BRANCHES: Final[frozenset[str]] = frozenset({"main", "master"})
PUBLISH_BRANCHES: Final[frozenset[str]] = RELEASE_BRANCHES | frozenset({"develop"})
DEPLOY_BRANCHES: Final[frozenset[str]] = RELEASE_BRANCHES
LATEST_TAG: Final[str] = "latest"

# Schema version for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
RUN_ARCHIVE_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the config file unless overridden).
LOGS_DIR: Final[PurePosixPath] = PurePosixPath("logs")
ARTIFACTS_DIR: Final[PurePosixPath] = PurePosixPath("artifacts")

__all__ = [
    "ARTIFACTS_DIR",
    "BUILD_STAGE",
    "CHECKOUT_STAGE",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BUILD_NUMBER",
    "DEFAULT_REGISTRY_HOST",
    "DEPLOY_BRANCHES",
    "DEPLOY_STAGE",
    "ENV_BRANCH_NAME",
    "ENV_BUILD_NUMBER",
    "ENV_GIT_COMMIT",
    "ENV_REGISTRY_HOST",
    "INSTALL_STAGE",
    "LATEST_TAG",
    "LINT_STAGE",
    "LOCAL_BRANCH",
    "LOCAL_COMMIT_SUFFIX",
    "LOCAL_VCS_REF",
    "LOGS_DIR",
    "PARAM_COMPOSE_FILE",
    "PARAM_DEPLOY",
    "PARAM_PUSH_IMAGE",
    "PUBLISH_BRANCHES",
    "PUBLISH_STAGE",
    "RELEASE_BRANCHES",
    "RUN_ARCHIVE_SCHEMA_VERSION",
    "SHORT_COMMIT_LENGTH",
    "STAGE_IDS_IN_ORDER",
    "VERIFY_COMPOSE_STAGE",
    "VERIFY_CONTAINER_STAGE",
]
