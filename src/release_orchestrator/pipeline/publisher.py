"""
release-orchestrator — artifact publisher

File: src/release_orchestrator/pipeline/publisher.py

Purpose
- Tag and push the built image to its registry when credentials exist.

Contract
- Absent credentials: ``skipped``, with the reason logged. No registry call.
- Login failure: ``failed``. Tag or push failure: ``failed``.
- ``{registry}/{image}:{tag}`` is always pushed on success; ``latest`` only on
  the configured release branches.
- Logout is attempted after every login attempt, whatever happened in between.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

import structlog

from release_orchestrator.constants import LATEST_TAG, RELEASE_BRANCHES
from release_orchestrator.domain.models import BuildMetadata
from release_orchestrator.execution.docker import DockerCli
from release_orchestrator.execution.executor import CommandResult, render_transcript
from release_orchestrator.security.credentials import ScopedCredentials
from release_orchestrator.security.redaction import REDACTED_VALUE


class PublishStatus(StrEnum):
    PUSHED = "pushed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PublishOutcome:
    status: PublishStatus
    message: str
    pushed_refs: tuple[str, ...] = ()
    commands: tuple[CommandResult, ...] = ()

    @property
    def transcript(self) -> str:
        return render_transcript(self.commands)


class ArtifactPublisher:
    def __init__(
        self,
        docker: DockerCli,
        *,
        username_name: str,
        password_name: str,
        latest_branches: Iterable[str] = RELEASE_BRANCHES,
        push_latest: bool = True,
        logger: Any | None = None,
    ) -> None:
        self._docker = docker
        self._username_name = username_name
        self._password_name = password_name
        self._latest_branches = frozenset(latest_branches)
        self._push_latest = push_latest
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def credential_names(self) -> tuple[str, str]:
        return (self._username_name, self._password_name)

    def target_refs(self, metadata: BuildMetadata) -> tuple[str, ...]:
        refs = [metadata.image_ref]
        if self._push_latest and metadata.branch in self._latest_branches:
            refs.append(metadata.ref_for(LATEST_TAG))
        return tuple(refs)

    async def publish(
        self, metadata: BuildMetadata, credentials: ScopedCredentials
    ) -> PublishOutcome:
        if not credentials.present:
            reason = (
                f"registry credentials not configured "
                f"({self._username_name}/{self._password_name}); push skipped"
            )
            self._logger.warning("publish_skipped", reason=reason, branch=metadata.branch)
            return PublishOutcome(PublishStatus.SKIPPED, reason)

        registry = metadata.registry_host
        commands: list[CommandResult] = []
        pushed: list[str] = []
        try:
            status, message = await self._login_and_push(
                metadata, credentials, commands=commands, pushed=pushed
            )
        finally:
            logout = await self._docker.logout(registry)
            commands.append(logout)
            if not logout.succeeded:
                self._logger.warning("publish_logout_failed", registry=registry)

        if status is PublishStatus.FAILED:
            self._logger.error("publish_failed", detail=message, pushed=list(pushed))
        return PublishOutcome(status, message, tuple(pushed), tuple(commands))

    async def _login_and_push(
        self,
        metadata: BuildMetadata,
        credentials: ScopedCredentials,
        *,
        commands: list[CommandResult],
        pushed: list[str],
    ) -> tuple[PublishStatus, str]:
        registry = metadata.registry_host
        username = credentials.get(self._username_name)
        login = _without_value(
            await self._docker.login(
                registry,
                username=username,
                password=credentials.get(self._password_name),
            ),
            username,
        )
        commands.append(login)
        if not login.succeeded:
            return PublishStatus.FAILED, f"registry login to {registry} failed: {login.describe()}"

        for ref in self.target_refs(metadata):
            tagged = await self._docker.tag(metadata.local_ref, ref)
            commands.append(tagged)
            if not tagged.succeeded:
                return PublishStatus.FAILED, f"tagging {ref} failed: {tagged.describe()}"
            push = await self._docker.push(ref)
            commands.append(push)
            if not push.succeeded:
                return PublishStatus.FAILED, f"pushing {ref} failed: {push.describe()}"
            pushed.append(ref)
            self._logger.info("publish_pushed", ref=ref)

        return PublishStatus.PUSHED, f"pushed {', '.join(pushed)}"


def _without_value(result: CommandResult, value: str) -> CommandResult:
    """Copy of ``result`` with every occurrence of ``value`` masked.

    The login argv carries the username, and the recorded result outlives the
    credential scope (stage output, run archive).
    """

    def scrub(text: str) -> str:
        return text.replace(value, REDACTED_VALUE) if value else text

    return replace(
        result,
        argv=tuple(REDACTED_VALUE if part == value else part for part in result.argv),
        stdout=scrub(result.stdout),
        stderr=scrub(result.stderr),
        error=scrub(result.error) if result.error is not None else None,
    )


__all__ = ["ArtifactPublisher", "PublishOutcome", "PublishStatus"]
