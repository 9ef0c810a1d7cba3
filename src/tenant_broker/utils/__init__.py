"""Shared utility helpers for Tenant Broker."""

from .cancellation import (
    CancellationError,
    CancellationToken,
    CancellationTokenSource,
    await_cancellable,
)
from .logging import LoggingOptions, configure_logging, get_logger

__all__ = [
    "LoggingOptions",
    "configure_logging",
    "get_logger",
    "await_cancellable",
    "CancellationToken",
    "CancellationTokenSource",
    "CancellationError",
]
