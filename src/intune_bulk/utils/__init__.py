"""Shared utility helpers for the bulk assignment engine."""

from .logging import (
    LoggingOptions,
    batch_context,
    configure_logging,
    get_logger,
    log_file_path,
)

__all__ = [
    "LoggingOptions",
    "batch_context",
    "configure_logging",
    "get_logger",
    "log_file_path",
]
