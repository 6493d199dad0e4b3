"""
release-orchestrator — security redaction utilities

File: src/release_orchestrator/security/redaction.py

Purpose
- Redaction rules applied to captured command output, log records, and
  archived run data.

What should be included in this file
- Secret-like text patterns and sensitive-key detection.
- ``SecretMasker``: literal values registered by live credential scopes are
  replaced wherever they appear.

Functional requirements
- A credential value must never reach logs or archived output while its scope
  is open, nor after it (the value is simply gone then).
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Final

REDACTED_VALUE: Final[str] = "***REDACTED***"

# Literal values shorter than this are not masked; masking "1" or "ab" would
# shred unrelated output.
MIN_MASKED_VALUE_LENGTH: Final[int] = 4

SENSITIVE_KEY_DENYLIST: Final[frozenset[str]] = frozenset(
    {
        "access_token",
        "api_key",
        "apikey",
        "auth_token",
        "authorization",
        "credential",
        "credentials",
        "password",
        "passwd",
        "private_key",
        "secret",
        "secret_key",
        "token",
    }
)

_SENSITIVE_KEY_SUFFIXES: Final[tuple[str, ...]] = (
    "_api_key",
    "_access_token",
    "_auth_token",
    "_password",
    "_passwd",
    "_secret",
    "_secret_key",
    "_token",
)

_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class _TextRule:
    name: str
    pattern: re.Pattern[str]
    sensitive_group: int | None = None


_TEXT_RULES: Final[tuple[_TextRule, ...]] = (
    _TextRule(
        name="private_key_block",
        pattern=re.compile(
            r"-----BEGIN(?: [A-Z0-9]+)* PRIVATE KEY-----"
            r"[\s\S]+?"
            r"-----END(?: [A-Z0-9]+)* PRIVATE KEY-----"
        ),
    ),
    _TextRule(
        name="authorization_bearer",
        pattern=re.compile(r"(?i)(\bauthorization\s*:\s*bearer\s+)([A-Za-z0-9\-._~+/=]{8,})"),
        sensitive_group=2,
    ),
    _TextRule(
        name="explicit_secret_assignment",
        pattern=re.compile(
            r"(?i)(\b(?:password|passwd|secret|secret[_-]?key|api[_-]?key|"
            r"access[_-]?token|auth[_-]?token)\b\s*[:=]\s*[\"']?)"
            r"([A-Za-z0-9._~+/=-]{6,})"
        ),
        sensitive_group=2,
    ),
    _TextRule(name="aws_access_key", pattern=re.compile(r"\b(?:AKIA|ASIA)[A-Z0-9]{16}\b")),
    _TextRule(name="github_token", pattern=re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,255}\b")),
    _TextRule(name="docker_hub_token", pattern=re.compile(r"\bdckr_pat_[A-Za-z0-9_-]{20,255}\b")),
    _TextRule(
        name="jwt",
        pattern=re.compile(r"\beyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\b"),
    ),
)


class SecretMasker:
    """Thread-safe registry of live secret values plus pattern redaction.

    Values are reference counted so nested scopes that expose the same value
    keep it masked until the outermost scope closes.
    """

    __slots__ = ("_lock", "_values")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[str, int] = {}

    def register(self, values: Iterable[str]) -> None:
        with self._lock:
            for value in values:
                if isinstance(value, str) and len(value) >= MIN_MASKED_VALUE_LENGTH:
                    self._values[value] = self._values.get(value, 0) + 1

    def unregister(self, values: Iterable[str]) -> None:
        with self._lock:
            for value in values:
                count = self._values.get(value)
                if count is None:
                    continue
                if count <= 1:
                    del self._values[value]
                else:
                    self._values[value] = count - 1

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._values)

    def mask(self, text: str) -> str:
        """Replace registered literal values, then apply pattern rules."""

        with self._lock:
            # Longest first so a value containing another value is masked whole.
            literals = sorted(self._values, key=len, reverse=True)
        masked = text
        for literal in literals:
            if literal in masked:
                masked = masked.replace(literal, REDACTED_VALUE)
        return redact_text(masked)

    def __call__(self, text: str) -> str:
        return self.mask(text)


DEFAULT_SECRET_MASKER: Final[SecretMasker] = SecretMasker()


def redact_text(text: str) -> str:
    """Redact secret-like text. Deterministic and idempotent for stable inputs."""

    if not isinstance(text, str):
        raise TypeError(f"text must be a string, got {type(text).__name__}")

    redacted = text
    for rule in _TEXT_RULES:
        redacted = rule.pattern.sub(
            lambda match, rule=rule: _replace_sensitive_group(match, rule.sensitive_group),
            redacted,
        )
    return redacted


def is_sensitive_key(key: str) -> bool:
    """Return whether ``key`` names a secret-bearing field."""

    normalized = _normalize_key(key)
    if not normalized:
        return False
    if normalized in SENSITIVE_KEY_DENYLIST:
        return True
    return any(normalized.endswith(suffix) for suffix in _SENSITIVE_KEY_SUFFIXES)


def redact_structure(value: object, *, masker: SecretMasker | None = None) -> object:
    """Return a deep-redacted copy of nested mappings/sequences."""

    active = masker if masker is not None else DEFAULT_SECRET_MASKER
    return _redact_structure(value, key=None, masker=active)


def _redact_structure(value: object, *, key: str | None, masker: SecretMasker) -> object:
    if key is not None and is_sensitive_key(key):
        return REDACTED_VALUE
    if isinstance(value, str):
        return masker.mask(value)
    if isinstance(value, Mapping):
        return {
            str(item_key): _redact_structure(item, key=str(item_key), masker=masker)
            for item_key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact_structure(item, key=None, masker=masker) for item in value]
    return value


def _replace_sensitive_group(match: re.Match[str], group: int | None) -> str:
    if group is None:
        return REDACTED_VALUE
    full = match.group(0)
    start, end = match.span(group)
    offset = match.start(0)
    return f"{full[: start - offset]}{REDACTED_VALUE}{full[end - offset :]}"


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


__all__ = [
    "DEFAULT_SECRET_MASKER",
    "MIN_MASKED_VALUE_LENGTH",
    "REDACTED_VALUE",
    "SENSITIVE_KEY_DENYLIST",
    "SecretMasker",
    "is_sensitive_key",
    "redact_structure",
    "redact_text",
]
