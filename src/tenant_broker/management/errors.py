from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class BrokerError(Exception):
    message: str
    category: ErrorCategory = ErrorCategory.UNKNOWN
    status_code: int | None = None
    code: str | None = None
    inner_error: Exception | None = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.message

    @property
    def recovery_suggestion(self) -> str | None:
        if self.category is ErrorCategory.AUTHENTICATION:
            return "Run the sign-in again; cached refresh tokens may have expired or need consent."
        if self.category is ErrorCategory.PERMISSION:
            return "The signed-in account lacks access to this tenant or subscription."
        if self.category is ErrorCategory.RATE_LIMIT:
            return "Azure Resource Manager throttled the request. Wait and run discovery again."
        if self.category is ErrorCategory.NETWORK:
            return "Check your internet connection and try again."
        return None

    @property
    def is_retriable(self) -> bool:
        if self.category in {ErrorCategory.RATE_LIMIT, ErrorCategory.NETWORK}:
            return True
        if self.status_code and 500 <= self.status_code <= 599:
            return True
        return False


class AuthenticationError(BrokerError):
    """Interactive or silent token acquisition failed."""

    def __init__(
        self,
        message: str = "Authentication failed",
        *,
        code: str | None = None,
        correlation_id: str | None = None,
        inner_error: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.AUTHENTICATION,
            code=code,
            inner_error=inner_error,
        )
        self.correlation_id = correlation_id


class EnumerationError(BrokerError):
    """A page of a management listing could not be fetched."""


__all__ = [
    "AuthenticationError",
    "BrokerError",
    "EnumerationError",
    "ErrorCategory",
]
