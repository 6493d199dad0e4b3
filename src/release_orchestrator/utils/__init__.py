"""Utility exports for filesystem and concurrency helpers."""

from release_orchestrator.utils.concurrency import CancellationToken, run_with_timeout
from release_orchestrator.utils.fs import atomic_write, is_within, safe_unlink

__all__ = [
    "CancellationToken",
    "atomic_write",
    "is_within",
    "run_with_timeout",
    "safe_unlink",
]
