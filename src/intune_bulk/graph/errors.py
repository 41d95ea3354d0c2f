from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class GraphErrorCategory(str, Enum):
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    NETWORK = "network"
    DECODING = "decoding"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    UNKNOWN = "unknown"


RETRYABLE_CATEGORIES = frozenset(
    {
        GraphErrorCategory.RATE_LIMIT,
        GraphErrorCategory.SERVER,
        GraphErrorCategory.NETWORK,
    }
)


@dataclass(slots=True)
class GraphAPIError(Exception):
    message: str
    category: GraphErrorCategory = GraphErrorCategory.UNKNOWN
    status_code: int | None = None
    code: str | None = None
    retry_after: str | None = None
    inner_error: Exception | None = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.message

    @property
    def recovery_suggestion(self) -> str | None:
        if self.category is GraphErrorCategory.AUTHENTICATION:
            return "Refresh the access token or sign in again, then resubmit."
        if self.category is GraphErrorCategory.PERMISSION:
            return "Request DeviceManagementApps.ReadWrite.All from your administrator."
        if self.category is GraphErrorCategory.NOT_FOUND:
            return "The application or group no longer exists. Refresh your selection."
        if self.category is GraphErrorCategory.RATE_LIMIT:
            if self.retry_after:
                return f"Microsoft Graph throttled the request. Retrying after {self.retry_after} seconds."
            return "Microsoft Graph throttled the request. Retrying with exponential backoff."
        if self.category is GraphErrorCategory.SERVER:
            return "Microsoft Graph reported a service error. The request will be retried."
        if self.category is GraphErrorCategory.NETWORK:
            return "Check your internet connection and try again."
        if self.category is GraphErrorCategory.DECODING:
            return "Microsoft Graph returned an unexpected payload. Check for API changes."
        if self.category is GraphErrorCategory.CONFLICT:
            return "The assignment conflicts with an existing one. Refresh and verify the latest state."
        if self.category is GraphErrorCategory.VALIDATION:
            return "The assignment payload was rejected. Review intent and settings."
        return None

    @property
    def is_retriable(self) -> bool:
        if self.category in RETRYABLE_CATEGORIES:
            return True
        if self.status_code and 500 <= self.status_code <= 599:
            return True
        return False

    @property
    def retry_after_seconds(self) -> float | None:
        return parse_retry_after(self.retry_after)


class UnauthorizedError(GraphAPIError):
    def __init__(
        self,
        message: str = "Bearer token rejected",
        inner_error: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=GraphErrorCategory.AUTHENTICATION,
            status_code=401,
            inner_error=inner_error,
        )


class ForbiddenError(GraphAPIError):
    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(
            message=message,
            category=GraphErrorCategory.PERMISSION,
            status_code=403,
        )


class NotFoundError(GraphAPIError):
    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(
            message=message,
            category=GraphErrorCategory.NOT_FOUND,
            status_code=404,
        )


class RateLimitedError(GraphAPIError):
    def __init__(
        self, message: str = "Rate limited", retry_after: str | None = None
    ) -> None:
        super().__init__(
            message=message,
            category=GraphErrorCategory.RATE_LIMIT,
            status_code=429,
            retry_after=retry_after,
        )


class ServerError(GraphAPIError):
    def __init__(
        self,
        message: str = "Microsoft Graph service error",
        status_code: int = 500,
        code: str | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=GraphErrorCategory.SERVER,
            status_code=status_code,
            code=code,
        )


class NetworkError(GraphAPIError):
    def __init__(
        self,
        message: str = "Network error communicating with Microsoft Graph",
        inner_error: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=GraphErrorCategory.NETWORK,
            inner_error=inner_error,
        )


class DecodingError(GraphAPIError):
    def __init__(
        self,
        message: str = "Unable to decode Microsoft Graph response",
        inner_error: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=GraphErrorCategory.DECODING,
            inner_error=inner_error,
        )


def parse_retry_after(value: str | float | int | None) -> float | None:
    """Parse a Retry-After value expressed in seconds."""

    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return max(seconds, 0.0)


def error_for_status(
    status: int,
    *,
    message: str | None = None,
    code: str | None = None,
    retry_after: str | None = None,
) -> GraphAPIError:
    """Map an HTTP (or batch item) status code to a typed Graph error."""

    text = message or f"Graph request failed with status {status}"
    if status == 401:
        return UnauthorizedError(message=text)
    if status == 403:
        return ForbiddenError(message=text)
    if status == 404:
        return NotFoundError(message=text)
    if status == 429:
        return RateLimitedError(message=text, retry_after=retry_after)
    if 500 <= status <= 599:
        return ServerError(message=text, status_code=status, code=code)

    category = GraphErrorCategory.UNKNOWN
    if status == 409:
        category = GraphErrorCategory.CONFLICT
    elif 400 <= status <= 499:
        category = GraphErrorCategory.VALIDATION
    return GraphAPIError(
        message=text,
        category=category,
        status_code=status,
        code=code,
        retry_after=retry_after,
    )


__all__ = [
    "GraphAPIError",
    "GraphErrorCategory",
    "RETRYABLE_CATEGORIES",
    "UnauthorizedError",
    "ForbiddenError",
    "NotFoundError",
    "RateLimitedError",
    "ServerError",
    "NetworkError",
    "DecodingError",
    "error_for_status",
    "parse_retry_after",
]
