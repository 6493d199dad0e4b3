"""Credential scoping and redaction for the release pipeline."""

from release_orchestrator.security.credentials import (
    CredentialAccessor,
    CredentialError,
    CredentialScopeError,
    CredentialUnavailableError,
    ScopedCredentials,
)
from release_orchestrator.security.redaction import (
    DEFAULT_SECRET_MASKER,
    REDACTED_VALUE,
    SecretMasker,
    is_sensitive_key,
    redact_structure,
    redact_text,
)

__all__ = [
    "CredentialAccessor",
    "CredentialError",
    "CredentialScopeError",
    "CredentialUnavailableError",
    "DEFAULT_SECRET_MASKER",
    "REDACTED_VALUE",
    "ScopedCredentials",
    "SecretMasker",
    "is_sensitive_key",
    "redact_structure",
    "redact_text",
]
