"""Public observability primitives: run-scoped structured logging."""

from layered_sandbox.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    LogRedactor,
    configure_logging,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    set_correlation_fields,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "LogRedactor",
    "LoggingConfig",
    "LoggingHandle",
    "configure_logging",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "set_correlation_fields",
    "setup_logging",
    "shutdown_logging",
]
