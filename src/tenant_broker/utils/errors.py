from __future__ import annotations

import asyncio
import socket
from dataclasses import dataclass
from enum import Enum

import httpx

from tenant_broker.management.errors import (
    AuthenticationError,
    BrokerError,
    EnumerationError,
    ErrorCategory,
)
from tenant_broker.utils.cancellation import CancellationError


class ErrorSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(slots=True)
class ErrorDescriptor:
    headline: str
    detail: str
    severity: ErrorSeverity = ErrorSeverity.ERROR
    transient: bool = False
    suggestion: str | None = None


def describe_exception(error: BaseException) -> ErrorDescriptor:
    """Summarise a failure that aborted discovery for the operator."""

    descriptor = ErrorDescriptor(
        headline="Discovery failed.",
        detail=f"{type(error).__name__}: {error}",
    )

    if isinstance(error, CancellationError):
        descriptor.headline = "Discovery was cancelled."
        descriptor.detail = error.reason or "Cancelled before completion"
        descriptor.severity = ErrorSeverity.WARNING
        return descriptor

    broker_error = _locate_broker_error(error)
    if broker_error is not None:
        descriptor.headline = _broker_headline(broker_error)
        descriptor.detail = _format_broker_detail(broker_error)
        descriptor.suggestion = broker_error.recovery_suggestion
        descriptor.transient = broker_error.is_retriable
        if broker_error.is_retriable:
            descriptor.severity = ErrorSeverity.WARNING
        return descriptor

    root = _unwrap_error(error)

    if isinstance(root, httpx.TimeoutException):
        descriptor.headline = "Timed out contacting Azure."
        descriptor.detail = f"{type(root).__name__}: {root}"
        descriptor.severity = ErrorSeverity.WARNING
        descriptor.transient = True
        descriptor.suggestion = (
            "Check connectivity to login.microsoftonline.com and "
            "management.azure.com, then run discovery again."
        )
        return descriptor

    if isinstance(root, asyncio.TimeoutError):
        descriptor.headline = "Operation timed out."
        descriptor.detail = "The run exceeded its time budget"
        descriptor.severity = ErrorSeverity.WARNING
        descriptor.transient = True
        return descriptor

    if isinstance(root, socket.gaierror):
        descriptor.headline = "DNS lookup failed while contacting Azure."
        descriptor.detail = f"socket.gaierror: {root}"
        descriptor.severity = ErrorSeverity.WARNING
        descriptor.transient = True
        descriptor.suggestion = "Verify that the Azure endpoints resolve from this machine."
        return descriptor

    return descriptor


def _locate_broker_error(error: BaseException) -> BrokerError | None:
    current: BaseException | None = error
    visited: set[int] = set()
    while current is not None and id(current) not in visited:
        visited.add(id(current))
        if isinstance(current, BrokerError):
            return current
        current = current.__cause__ or current.__context__
    return None


def _unwrap_error(error: BaseException) -> BaseException:
    current = error
    visited: set[int] = set()
    while True:
        visited.add(id(current))
        inner: BaseException | None = None
        if isinstance(current, BrokerError) and current.inner_error is not None:
            inner = current.inner_error
        elif current.__cause__ is not None:
            inner = current.__cause__
        elif current.__context__ is not None:
            inner = current.__context__
        if inner is None or id(inner) in visited:
            return current
        current = inner


def _broker_headline(error: BrokerError) -> str:
    if isinstance(error, AuthenticationError):
        return "Token acquisition failed."
    match error.category:
        case ErrorCategory.AUTHENTICATION:
            return "Azure rejected the access token."
        case ErrorCategory.PERMISSION:
            return "The signed-in account is not allowed to list this resource."
        case ErrorCategory.RATE_LIMIT:
            return "Azure Resource Manager throttled the request."
        case ErrorCategory.NETWORK:
            return "Network issue contacting Azure Resource Manager."
        case _:
            if isinstance(error, EnumerationError):
                return "Listing failed."
            return "Request failed."


def _format_broker_detail(error: BrokerError) -> str:
    if error.code:
        return f"{error.code}: {error}"
    return str(error)


__all__ = [
    "ErrorDescriptor",
    "ErrorSeverity",
    "describe_exception",
]
