"""Observability infrastructure for structured logging."""

from tasteprint.infrastructure.observability.logging import (
    CorrelationIdFilter,
    configure_logging,
    get_correlation_id,
    log_operation,
    set_correlation_id,
)

__all__ = [
    "CorrelationIdFilter",
    "configure_logging",
    "get_correlation_id",
    "log_operation",
    "set_correlation_id",
]
