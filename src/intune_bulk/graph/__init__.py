"""Graph client utilities."""

from .client import (
    BatchResult,
    GraphClient,
    GraphClientConfig,
    GraphTelemetryEvent,
)
from .errors import (
    DecodingError,
    ForbiddenError,
    GraphAPIError,
    GraphErrorCategory,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    ServerError,
    UnauthorizedError,
)
from .rate_limiter import RateLimiter
from .requests import GraphRequest

__all__ = [
    "BatchResult",
    "DecodingError",
    "ForbiddenError",
    "GraphAPIError",
    "GraphClient",
    "GraphClientConfig",
    "GraphErrorCategory",
    "GraphRequest",
    "GraphTelemetryEvent",
    "NetworkError",
    "NotFoundError",
    "RateLimitedError",
    "RateLimiter",
    "ServerError",
    "UnauthorizedError",
]
