"""Turn engine exceptions into short, user-facing failure descriptions."""

from __future__ import annotations

import asyncio
import errno
import socket
from dataclasses import dataclass
from enum import Enum

import httpx

from intune_bulk.auth.types import AuthenticationFailed
from intune_bulk.graph.errors import GraphAPIError, GraphErrorCategory


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

    def summary(self) -> str:
        """Single-line rendering stored as a job's failure reason."""

        text = f"{self.headline} {self.detail}".strip()
        if self.suggestion:
            text = f"{text} ({self.suggestion})"
        return text


_GRAPH_HEADLINES: dict[GraphErrorCategory, str] = {
    GraphErrorCategory.RATE_LIMIT: "Microsoft Graph throttled the request.",
    GraphErrorCategory.NETWORK: "Network issue contacting Microsoft Graph.",
    GraphErrorCategory.AUTHENTICATION: "Authentication is required to call Microsoft Graph.",
    GraphErrorCategory.PERMISSION: "The signed-in account lacks required Graph permissions.",
    GraphErrorCategory.NOT_FOUND: "The application or group was not found.",
    GraphErrorCategory.SERVER: "Microsoft Graph reported a service error.",
    GraphErrorCategory.DECODING: "Microsoft Graph returned an unreadable response.",
    GraphErrorCategory.CONFLICT: "The requested change conflicts with existing data.",
    GraphErrorCategory.VALIDATION: "Microsoft Graph rejected the request payload.",
}

_NETWORK_ERRNOS = frozenset(
    {
        errno.EHOSTUNREACH,
        errno.ENETDOWN,
        errno.ENETUNREACH,
        errno.ECONNREFUSED,
        errno.ECONNRESET,
        errno.ETIMEDOUT,
    }
)


def describe_exception(error: BaseException) -> ErrorDescriptor:
    graph_error = _find_graph_error(error)
    if graph_error is not None:
        return _describe_graph_error(graph_error)

    root = _root_cause(error)

    if isinstance(root, AuthenticationFailed):
        return ErrorDescriptor(
            headline="Unable to acquire an access token.",
            detail=str(root),
            suggestion="Sign in again before resubmitting the batch.",
        )
    if isinstance(root, (httpx.TimeoutException, asyncio.TimeoutError)):
        return _transient(
            "Timed out waiting for Microsoft Graph.",
            root,
            "Retry the batch once connectivity is stable.",
        )
    if isinstance(root, socket.gaierror):
        return _transient(
            "DNS lookup failed while contacting Microsoft Graph.",
            root,
            "Verify internet connectivity or DNS configuration.",
        )
    if isinstance(root, OSError) and root.errno in _NETWORK_ERRNOS:
        return _transient(
            "Network connection issue encountered.",
            root,
            "Retry once your connection is stable.",
        )

    return ErrorDescriptor(
        headline="Operation failed.",
        detail=f"{type(error).__name__}: {error}",
    )


def _describe_graph_error(error: GraphAPIError) -> ErrorDescriptor:
    retriable = error.is_retriable
    return ErrorDescriptor(
        headline=_GRAPH_HEADLINES.get(error.category, "Microsoft Graph request failed."),
        detail=f"{error.code}: {error}" if error.code else str(error),
        severity=ErrorSeverity.WARNING if retriable else ErrorSeverity.ERROR,
        transient=retriable,
        suggestion=error.recovery_suggestion,
    )


def _transient(headline: str, error: BaseException, suggestion: str) -> ErrorDescriptor:
    return ErrorDescriptor(
        headline=headline,
        detail=f"{type(error).__name__}: {error}".rstrip(": "),
        severity=ErrorSeverity.WARNING,
        transient=True,
        suggestion=suggestion,
    )


def _chain(error: BaseException):
    """Yield ``error`` followed by its wrapped and chained causes, once each."""

    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if isinstance(current, GraphAPIError) and current.inner_error is not None:
            current = current.inner_error
        else:
            current = current.__cause__ or current.__context__


def _find_graph_error(error: BaseException) -> GraphAPIError | None:
    return next((item for item in _chain(error) if isinstance(item, GraphAPIError)), None)


def _root_cause(error: BaseException) -> BaseException:
    root = error
    for root in _chain(error):
        pass
    return root


__all__ = [
    "ErrorDescriptor",
    "ErrorSeverity",
    "describe_exception",
]
