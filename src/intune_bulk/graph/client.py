from __future__ import annotations

import asyncio
import inspect
import json
import time
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Callable, Mapping, Sequence

import httpx
from httpx._client import USE_CLIENT_DEFAULT, UseClientDefault

from intune_bulk.auth.types import AccessToken, AuthenticationFailed, TokenProvider
from intune_bulk.config.settings import EngineSettings, GRAPH_BATCH_LIMIT
from intune_bulk.graph.errors import (
    DecodingError,
    GraphAPIError,
    GraphErrorCategory,
    NetworkError,
    RateLimitedError,
    UnauthorizedError,
    error_for_status,
)
from intune_bulk.graph.rate_limiter import RateLimiter
from intune_bulk.graph.requests import GraphRequest, build_batch_requests
from intune_bulk.utils import get_logger


logger = get_logger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/beta"
_WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


@dataclass(slots=True)
class GraphTelemetryEvent:
    method: str
    url: str
    status_code: int | None
    duration_ms: float
    category: GraphErrorCategory | None
    success: bool


@dataclass(slots=True)
class BatchResult:
    """Outcome of one entry inside a ``/$batch`` call."""

    id: str
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any | None = None
    error: GraphAPIError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status <= 299


class BearerTokenAuth(httpx.Auth):
    """Inject a freshly acquired bearer token into every outgoing request.

    Tokens are never cached here; the provider owns caching and refresh.
    Acquisition is serialised so concurrent calls do not stampede the provider.
    """

    def __init__(self, token_provider: TokenProvider, scopes: Sequence[str]) -> None:
        self._token_provider = token_provider
        self._scopes = list(scopes)
        self._lock = asyncio.Lock()

    async def acquire(self) -> AccessToken:
        async with self._lock:
            result = self._token_provider(self._scopes)
            if inspect.isawaitable(result):
                result = await result
        return result

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self.acquire()
        request.headers["Authorization"] = f"Bearer {token.token}"
        yield request

    def sync_auth_flow(self, request: httpx.Request):  # type: ignore[override]
        raise RuntimeError("BearerTokenAuth only supports asynchronous clients")


class RateLimitedAsyncClient(httpx.AsyncClient):
    def __init__(
        self,
        *args: Any,
        rate_limiter: RateLimiter,
        telemetry_callback: Callable[[GraphTelemetryEvent], None] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._rate_limiter = rate_limiter
        self._telemetry_callback = telemetry_callback

    async def send(
        self,
        request: httpx.Request,
        *,
        stream: bool = False,
        auth: Any = USE_CLIENT_DEFAULT,
        follow_redirects: bool | UseClientDefault = USE_CLIENT_DEFAULT,
    ) -> httpx.Response:
        is_write = request.method.upper() in _WRITE_METHODS
        start = time.perf_counter()

        async with self._rate_limiter.slot(is_write=is_write):
            try:
                response = await super().send(
                    request,
                    stream=stream,
                    auth=auth,
                    follow_redirects=follow_redirects,
                )
            except AuthenticationFailed as exc:
                self._publish_telemetry(
                    request,
                    duration=time.perf_counter() - start,
                    status_code=None,
                    success=False,
                    category=GraphErrorCategory.AUTHENTICATION,
                )
                raise UnauthorizedError(
                    message=f"Token acquisition failed: {exc}",
                    inner_error=exc,
                ) from exc
            except httpx.TimeoutException as exc:
                self._publish_telemetry(
                    request,
                    duration=time.perf_counter() - start,
                    status_code=None,
                    success=False,
                    category=GraphErrorCategory.NETWORK,
                )
                raise NetworkError(
                    message="Network timeout communicating with Microsoft Graph",
                    inner_error=exc,
                ) from exc
            except httpx.RequestError as exc:
                self._publish_telemetry(
                    request,
                    duration=time.perf_counter() - start,
                    status_code=None,
                    success=False,
                    category=GraphErrorCategory.NETWORK,
                )
                raise NetworkError(
                    message=f"Network error communicating with Microsoft Graph: {exc}",
                    inner_error=exc,
                ) from exc

        if response.status_code == 429:
            await self._rate_limiter.record_rate_limit()

        if 400 <= response.status_code:
            if stream:
                await response.aread()
            error = _map_response_to_error(response)
            self._publish_telemetry(
                request,
                duration=time.perf_counter() - start,
                status_code=response.status_code,
                success=False,
                category=error.category,
            )
            raise error

        await self._rate_limiter.reset_rate_limit_tracking()
        self._publish_telemetry(
            request,
            duration=time.perf_counter() - start,
            status_code=response.status_code,
            success=True,
            category=None,
        )
        return response

    def _publish_telemetry(
        self,
        request: httpx.Request,
        *,
        duration: float,
        status_code: int | None,
        success: bool,
        category: GraphErrorCategory | None,
    ) -> None:
        if not self._telemetry_callback:
            return
        event = GraphTelemetryEvent(
            method=request.method,
            url=str(request.url),
            status_code=status_code,
            duration_ms=duration * 1000,
            category=category,
            success=success,
        )
        try:
            self._telemetry_callback(event)
        except Exception:  # pragma: no cover - telemetry shouldn't break requests
            logger.warning("Telemetry callback raised an exception", exc_info=True)


def _error_details(body: Any) -> tuple[str | None, str | None]:
    error_info = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error_info, dict):
        return None, None
    code = error_info.get("code")
    message = error_info.get("message")
    return (
        code if isinstance(code, str) else None,
        message if isinstance(message, str) else None,
    )


def _map_response_to_error(response: httpx.Response) -> GraphAPIError:
    retry_after = response.headers.get("Retry-After")
    body: Any = {}
    try:
        body = json.loads(response.text) if response.text else {}
    except ValueError:
        body = {}
    code, message = _error_details(body)
    return error_for_status(
        response.status_code,
        message=message or response.text or None,
        code=code,
        retry_after=retry_after,
    )


def _header_lookup(headers: Mapping[str, Any], name: str) -> str | None:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return str(value)
    return None


def _batch_item_result(item: Mapping[str, Any]) -> BatchResult:
    request_id = str(item.get("id"))
    try:
        status = int(item.get("status", 0))
    except (TypeError, ValueError):
        status = 0
    raw_headers = item.get("headers")
    headers = (
        {str(key): str(value) for key, value in raw_headers.items()}
        if isinstance(raw_headers, dict)
        else {}
    )
    body = item.get("body")

    error: GraphAPIError | None = None
    if status == 0:
        error = DecodingError(message=f"Batch response {request_id} has no status")
    elif status >= 400:
        code, message = _error_details(body)
        error = error_for_status(
            status,
            message=message,
            code=code,
            retry_after=_header_lookup(headers, "Retry-After"),
        )
    return BatchResult(
        id=request_id, status=status, headers=headers, body=body, error=error
    )


@dataclass(slots=True)
class GraphClientConfig:
    scopes: Sequence[str]
    base_url: str = GRAPH_BASE_URL
    user_agent: str = "IntuneBulkAssign-Python"
    max_concurrency: int = 5
    max_batch_size: int = GRAPH_BATCH_LIMIT
    request_timeout: float = 30.0
    resource_timeout: float = 120.0
    page_size: int = 100
    enable_telemetry: bool = True
    telemetry_callback: Callable[[GraphTelemetryEvent], None] | None = None

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "GraphClientConfig":
        return cls(
            scopes=list(settings.configured_scopes()),
            max_concurrency=settings.max_concurrency,
            max_batch_size=settings.max_batch_size,
            request_timeout=settings.request_timeout,
            resource_timeout=settings.resource_timeout,
            page_size=settings.page_size,
        )


class GraphClient:
    """Rate-limited Microsoft Graph client used by the batch engine.

    Every call acquires a token from the provider, holds a concurrency slot
    from the rate limiter, and maps non-success statuses to typed errors.
    Throttled calls are surfaced as :class:`RateLimitedError`; retries are the
    caller's decision.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        config: GraphClientConfig,
        *,
        rate_limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if config.max_batch_size < 1 or config.max_batch_size > GRAPH_BATCH_LIMIT:
            raise ValueError(
                f"max_batch_size must be between 1 and {GRAPH_BATCH_LIMIT}",
            )
        self._auth = BearerTokenAuth(token_provider, config.scopes)
        self._config = config
        self._rate_limiter = rate_limiter or RateLimiter(config.max_concurrency)
        self._transport = transport
        self._telemetry_callback = (
            (config.telemetry_callback or self._default_telemetry_callback)
            if config.enable_telemetry
            else None
        )
        self._http_client: RateLimitedAsyncClient | None = None

    @property
    def config(self) -> GraphClientConfig:
        return self._config

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def max_batch_size(self) -> int:
        return self._config.max_batch_size

    async def __aenter__(self) -> "GraphClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        client = self._get_http_client()
        url = self._absolute_url(path)
        try:
            async with asyncio.timeout(self._config.resource_timeout):
                return await client.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=headers,
                )
        except TimeoutError as exc:
            raise NetworkError(
                message=(
                    f"{method.upper()} {url} exceeded "
                    f"{self._config.resource_timeout:g}s"
                ),
                inner_error=exc,
            ) from exc

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        response = await self.request(
            method,
            path,
            params=params,
            json_body=json_body,
            headers=headers,
        )
        if response.status_code == 204 or not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise DecodingError(
                message=f"Invalid JSON returned for {method.upper()} {path}",
                inner_error=exc,
            ) from exc
        if not isinstance(payload, dict):
            raise DecodingError(
                message=f"Expected a JSON object for {method.upper()} {path}",
            )
        return payload

    async def get(
        self, path: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self.request_json("GET", path, params=params)

    async def post(self, path: str, body: Any) -> dict[str, Any]:
        return await self.request_json("POST", path, json_body=body)

    async def patch(self, path: str, body: Any) -> dict[str, Any]:
        return await self.request_json("PATCH", path, json_body=body)

    async def delete(self, path: str) -> None:
        await self.request("DELETE", path)

    async def paginate(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        page_size: int | None = None,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Yield every item of a collection, following ``@odata.nextLink``."""

        next_url: str | None = path
        query: dict[str, Any] | None = dict(params or {})
        if page_size is None:
            page_size = self._config.page_size
        if query is not None and "$top" not in query and page_size:
            query["$top"] = page_size

        while next_url:
            payload = await self.request_json("GET", next_url, params=query or None)
            value = payload.get("value")
            if not isinstance(value, list):
                raise DecodingError(
                    message=f"Collection response for {path} has no 'value' array",
                )
            for item in value:
                if isinstance(item, dict):
                    yield item
                else:
                    yield {"value": item}
            next_link = payload.get("@odata.nextLink")
            if not next_link:
                break
            next_url = str(next_link)
            query = None

    async def batch(self, requests: Sequence[GraphRequest]) -> list[BatchResult]:
        """Submit up to ``max_batch_size`` requests in one ``/$batch`` call.

        Results come back in request order. A request that Graph did not
        answer is reported with a :class:`DecodingError`.
        """

        if len(requests) > self._config.max_batch_size:
            raise ValueError(
                f"Batch of {len(requests)} requests exceeds the limit of "
                f"{self._config.max_batch_size}",
            )
        if not requests:
            return []

        entries = build_batch_requests(requests)
        ids = [entry["id"] for entry in entries]

        payload = await self.request_json(
            "POST",
            "/$batch",
            json_body={"requests": entries},
            headers={"Content-Type": "application/json"},
        )
        responses = payload.get("responses")
        if not isinstance(responses, list):
            raise DecodingError(message="Batch response has no 'responses' array")

        by_id: dict[str, BatchResult] = {}
        for item in responses:
            if not isinstance(item, dict) or "id" not in item:
                continue
            result = _batch_item_result(item)
            by_id[result.id] = result

        results: list[BatchResult] = []
        throttled = False
        for request_id in ids:
            result = by_id.get(request_id)
            if result is None:
                result = BatchResult(
                    id=request_id,
                    status=0,
                    error=DecodingError(
                        message=f"Batch response is missing request {request_id}",
                    ),
                )
            if isinstance(result.error, RateLimitedError):
                throttled = True
            results.append(result)
        if throttled:
            await self._rate_limiter.record_rate_limit()
        return results

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------- Internals

    def _get_http_client(self) -> RateLimitedAsyncClient:
        if self._http_client is None:
            self._http_client = RateLimitedAsyncClient(
                headers={
                    "User-Agent": self._config.user_agent,
                    "Accept": "application/json",
                },
                auth=self._auth,
                rate_limiter=self._rate_limiter,
                telemetry_callback=self._telemetry_callback,
                timeout=httpx.Timeout(self._config.request_timeout),
                transport=self._transport,
            )
        return self._http_client

    def _absolute_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _default_telemetry_callback(self, event: GraphTelemetryEvent) -> None:
        logger.debug(
            "Graph request",
            method=event.method,
            url=event.url,
            status_code=event.status_code,
            duration_ms=round(event.duration_ms, 2),
            success=event.success,
            category=event.category.value if event.category else None,
        )


__all__ = [
    "BatchResult",
    "BearerTokenAuth",
    "GRAPH_BASE_URL",
    "GraphClient",
    "GraphClientConfig",
    "GraphTelemetryEvent",
    "RateLimitedAsyncClient",
]
