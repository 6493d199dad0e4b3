"""
release-orchestrator — scoped credential accessor

File: src/release_orchestrator/security/credentials.py

Purpose
- Expose named secrets to exactly one bounded block of execution.

Contract
- ``CredentialAccessor.scope(names)`` yields a ``ScopedCredentials`` capability.
  Values are read on entry, registered with the secret masker, and cleared on
  exit however the block ends. Reading through a closed capability raises
  ``CredentialScopeError``.
- When the named set is not fully configured and ``required`` is false, the
  block still runs with an absent capability (``present is False``); no value
  is ever fabricated. ``required=True`` raises ``CredentialUnavailableError``.
- Capabilities refuse copying and pickling so values cannot be moved into
  longer-lived state.
"""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any, TypeVar

import structlog

from release_orchestrator.security.redaction import DEFAULT_SECRET_MASKER, SecretMasker

T = TypeVar("T")


class CredentialError(RuntimeError):
    """Base error for credential scoping failures."""


class CredentialScopeError(CredentialError):
    """Raised when a credential is read outside its scope."""


class CredentialUnavailableError(CredentialError):
    """Raised when a required credential set is not configured."""


class ScopedCredentials:
    """Capability granting read access to a credential set while its scope is open."""

    __slots__ = ("_names", "_open", "_values")

    def __init__(self, names: tuple[str, ...], values: Mapping[str, str] | None) -> None:
        self._names = names
        self._values: dict[str, str] = dict(values) if values is not None else {}
        self._open = True

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    @property
    def present(self) -> bool:
        """True when every named credential was configured at scope entry."""

        self._require_open()
        return bool(self._values)

    @property
    def is_open(self) -> bool:
        return self._open

    def get(self, name: str) -> str:
        self._require_open()
        if name not in self._names:
            raise CredentialScopeError(f"credential {name!r} was not requested by this scope")
        value = self._values.get(name)
        if value is None:
            raise CredentialUnavailableError(f"credential {name!r} is not configured")
        return value

    def _close(self) -> None:
        self._values.clear()
        self._open = False

    def _require_open(self) -> None:
        if not self._open:
            raise CredentialScopeError("credential scope has closed; values are unavailable")

    def __repr__(self) -> str:
        state = "open" if self._open else "closed"
        return f"ScopedCredentials(names={list(self._names)!r}, {state})"

    def __copy__(self) -> ScopedCredentials:
        raise TypeError("ScopedCredentials cannot be copied")

    def __deepcopy__(self, memo: dict[int, Any]) -> ScopedCredentials:
        raise TypeError("ScopedCredentials cannot be copied")

    def __reduce_ex__(self, protocol: object) -> Any:
        raise TypeError("ScopedCredentials cannot be pickled")


class CredentialAccessor:
    """Hands out credential scopes backed by an environment-like mapping."""

    def __init__(
        self,
        source: Mapping[str, str] | None = None,
        *,
        masker: SecretMasker | None = None,
        logger: Any | None = None,
    ) -> None:
        self._source = source if source is not None else os.environ
        self._masker = masker if masker is not None else DEFAULT_SECRET_MASKER
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def is_configured(self, names: Sequence[str]) -> bool:
        """Report presence without exposing any value."""

        return self._read(_normalize_names(names)) is not None

    @contextmanager
    def scope(
        self,
        names: Sequence[str],
        *,
        required: bool = False,
    ) -> Iterator[ScopedCredentials]:
        normalized = _normalize_names(names)
        values = self._read(normalized)
        if values is None and required:
            raise CredentialUnavailableError(
                f"required credentials not configured: {', '.join(normalized)}"
            )

        capability = ScopedCredentials(normalized, values)
        registered = tuple(values.values()) if values is not None else ()
        self._masker.register(registered)
        self._logger.info(
            "credential_scope_opened",
            names=list(normalized),
            present=values is not None,
        )
        try:
            yield capability
        finally:
            capability._close()
            self._masker.unregister(registered)
            self._logger.info("credential_scope_closed", names=list(normalized))

    async def with_credentials(
        self,
        names: Sequence[str],
        block: Callable[[ScopedCredentials], Awaitable[T]],
        *,
        required: bool = False,
    ) -> T:
        """Run ``block`` with the named credentials injected for its duration only."""

        with self.scope(names, required=required) as credentials:
            return await block(credentials)

    def _read(self, names: tuple[str, ...]) -> dict[str, str] | None:
        values: dict[str, str] = {}
        for name in names:
            raw = self._source.get(name)
            if raw is None or not raw.strip():
                return None
            values[name] = raw
        return values


def _normalize_names(names: Sequence[str]) -> tuple[str, ...]:
    if isinstance(names, str):
        names = (names,)
    normalized: list[str] = []
    for name in names:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("credential names must be non-empty strings")
        candidate = name.strip()
        if candidate not in normalized:
            normalized.append(candidate)
    if not normalized:
        raise ValueError("at least one credential name is required")
    return tuple(normalized)


__all__ = [
    "CredentialAccessor",
    "CredentialError",
    "CredentialScopeError",
    "CredentialUnavailableError",
    "ScopedCredentials",
]
