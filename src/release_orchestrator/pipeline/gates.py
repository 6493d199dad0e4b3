"""Stage gates: pure predicates over branch name and run parameters."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from release_orchestrator.constants import (
    BUILD_STAGE,
    CHECKOUT_STAGE,
    DEPLOY_BRANCHES,
    DEPLOY_STAGE,
    INSTALL_STAGE,
    LINT_STAGE,
    PARAM_COMPOSE_FILE,
    PARAM_DEPLOY,
    PARAM_PUSH_IMAGE,
    PUBLISH_BRANCHES,
    PUBLISH_STAGE,
    VERIFY_COMPOSE_STAGE,
    VERIFY_CONTAINER_STAGE,
)


@dataclass(frozen=True, slots=True)
class GateContext:
    branch: str
    params: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))


@dataclass(frozen=True, slots=True)
class Always:
    def describe(self) -> str:
        return "always"


@dataclass(frozen=True, slots=True)
class ParameterPresent:
    name: str

    def describe(self) -> str:
        return f"{self.name} is set"


@dataclass(frozen=True, slots=True)
class BranchOrFlag:
    branches: frozenset[str]
    flag: str

    def __init__(self, branches: Iterable[str], flag: str) -> None:
        object.__setattr__(self, "branches", frozenset(branches))
        object.__setattr__(self, "flag", flag)

    def describe(self) -> str:
        return f"branch in {{{', '.join(sorted(self.branches))}}} or {self.flag}=true"


Gate = Always | ParameterPresent | BranchOrFlag


def should_run(gate: Gate, context: GateContext) -> bool:
    """Decide whether a stage runs. Same inputs always give the same answer."""

    if isinstance(gate, Always):
        return True
    if isinstance(gate, ParameterPresent):
        value = context.params.get(gate.name)
        if value is None:
            return False
        return bool(str(value).strip())
    if isinstance(gate, BranchOrFlag):
        return context.branch in gate.branches or context.params.get(gate.flag) is True
    raise TypeError(f"unsupported gate type: {type(gate).__name__}")


def default_gate_table(
    *,
    publish_branches: Iterable[str] = PUBLISH_BRANCHES,
    deploy_branches: Iterable[str] = DEPLOY_BRANCHES,
) -> dict[str, Gate]:
    return {
        CHECKOUT_STAGE: Always(),
        INSTALL_STAGE: Always(),
        LINT_STAGE: Always(),
        BUILD_STAGE: Always(),
        VERIFY_CONTAINER_STAGE: Always(),
        VERIFY_COMPOSE_STAGE: ParameterPresent(PARAM_COMPOSE_FILE),
        PUBLISH_STAGE: BranchOrFlag(publish_branches, PARAM_PUSH_IMAGE),
        DEPLOY_STAGE: BranchOrFlag(deploy_branches, PARAM_DEPLOY),
    }


__all__ = [
    "Always",
    "BranchOrFlag",
    "Gate",
    "GateContext",
    "ParameterPresent",
    "default_gate_table",
    "should_run",
]
