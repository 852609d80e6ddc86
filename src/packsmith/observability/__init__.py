"""Public observability primitives: structured logging setup and teardown."""

from packsmith.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    get_active_logging_handle,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingConfig",
    "LoggingHandle",
    "get_active_logging_handle",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
