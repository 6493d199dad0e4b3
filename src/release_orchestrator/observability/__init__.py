"""Observability: structured logging and correlation context."""

from release_orchestrator.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    get_correlation_context,
    make_log_redactor,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "make_log_redactor",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
