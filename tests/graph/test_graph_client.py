from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from intune_bulk.auth.types import AccessToken, AuthenticationFailed
from intune_bulk.graph.client import GraphClient, GraphClientConfig, GraphTelemetryEvent
from intune_bulk.graph.errors import (
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
from intune_bulk.graph.requests import GraphRequest, mobile_app_assignment_create_request
from tests.factories import make_access_token


BASE = "https://graph.microsoft.com/beta"
APPS_URL = f"{BASE}/deviceAppManagement/mobileApps"
BATCH_PATH = r"/beta/(\$|%24)batch$"


class _TokenProvider:
    def __init__(self, tokens: list[str] | None = None) -> None:
        self.tokens = list(tokens or ["token-1", "token-2", "token-3"])
        self.calls: list[list[str]] = []

    def __call__(self, scopes) -> AccessToken:
        self.calls.append(list(scopes))
        return make_access_token(self.tokens.pop(0))


def _client(provider=None, **overrides) -> GraphClient:
    config = GraphClientConfig(scopes=["DeviceManagementApps.ReadWrite.All"], **overrides)
    return GraphClient(provider or _TokenProvider(), config)


@pytest.mark.asyncio
async def test_every_call_acquires_a_fresh_bearer_token(respx_mock) -> None:
    provider = _TokenProvider()
    route = respx_mock.get(APPS_URL).mock(
        return_value=httpx.Response(200, json={"value": []})
    )

    async with _client(provider) as client:
        await client.get("/deviceAppManagement/mobileApps")
        await client.get("deviceAppManagement/mobileApps")

    assert route.call_count == 2
    first, second = (call.request for call in route.calls)
    assert first.headers["Authorization"] == "Bearer token-1"
    assert second.headers["Authorization"] == "Bearer token-2"
    assert first.headers["Accept"] == "application/json"
    assert provider.calls == [
        ["DeviceManagementApps.ReadWrite.All"],
        ["DeviceManagementApps.ReadWrite.All"],
    ]


@pytest.mark.asyncio
async def test_async_token_provider_is_awaited(respx_mock) -> None:
    async def provider(scopes) -> AccessToken:
        await asyncio.sleep(0)
        return make_access_token("async-token")

    route = respx_mock.post(APPS_URL).mock(
        return_value=httpx.Response(201, json={"id": "new"})
    )

    async with _client(provider) as client:
        payload = await client.post("/deviceAppManagement/mobileApps", {"name": "x"})

    assert payload == {"id": "new"}
    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer async-token"
    assert json.loads(request.content) == {"name": "x"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (401, UnauthorizedError),
        (403, ForbiddenError),
        (404, NotFoundError),
        (500, ServerError),
        (503, ServerError),
    ],
)
async def test_status_codes_map_to_typed_errors(respx_mock, status, expected) -> None:
    respx_mock.get(APPS_URL).mock(
        return_value=httpx.Response(
            status,
            json={"error": {"code": "Failure", "message": "Request failed"}},
        )
    )

    async with _client() as client:
        with pytest.raises(expected) as exc_info:
            await client.get("/deviceAppManagement/mobileApps")

    assert exc_info.value.status_code == status
    assert exc_info.value.message == "Request failed"


@pytest.mark.asyncio
async def test_throttled_response_carries_retry_after(respx_mock) -> None:
    respx_mock.get(APPS_URL).mock(
        return_value=httpx.Response(429, headers={"Retry-After": "30"})
    )

    async with _client() as client:
        with pytest.raises(RateLimitedError) as exc_info:
            await client.get("/deviceAppManagement/mobileApps")

    assert exc_info.value.retry_after_seconds == 30.0
    assert exc_info.value.is_retriable


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "category"),
    [(400, GraphErrorCategory.VALIDATION), (409, GraphErrorCategory.CONFLICT)],
)
async def test_other_client_errors_are_terminal(respx_mock, status, category) -> None:
    respx_mock.post(APPS_URL).mock(return_value=httpx.Response(status, json={}))

    async with _client() as client:
        with pytest.raises(GraphAPIError) as exc_info:
            await client.post("/deviceAppManagement/mobileApps", {})

    assert exc_info.value.category is category
    assert not exc_info.value.is_retriable


@pytest.mark.asyncio
async def test_token_failure_becomes_unauthorized(respx_mock) -> None:
    def provider(scopes) -> AccessToken:
        raise AuthenticationFailed("refresh token expired")

    async with _client(provider) as client:
        with pytest.raises(UnauthorizedError) as exc_info:
            await client.get("/deviceAppManagement/mobileApps")

    assert isinstance(exc_info.value.inner_error, AuthenticationFailed)
    assert not respx_mock.calls


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "failure",
    [httpx.ConnectError("connection refused"), httpx.ReadTimeout("too slow")],
)
async def test_transport_failures_become_network_errors(respx_mock, failure) -> None:
    respx_mock.get(APPS_URL).mock(side_effect=failure)

    async with _client() as client:
        with pytest.raises(NetworkError) as exc_info:
            await client.get("/deviceAppManagement/mobileApps")

    assert exc_info.value.is_retriable


class _StalledTransport(httpx.AsyncBaseTransport):
    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json={})


@pytest.mark.asyncio
async def test_resource_timeout_bounds_the_whole_call() -> None:
    config = GraphClientConfig(
        scopes=["scope"],
        request_timeout=10.0,
        resource_timeout=0.05,
    )
    client = GraphClient(_TokenProvider(), config, transport=_StalledTransport())

    with pytest.raises(NetworkError):
        await client.get("/deviceAppManagement/mobileApps")
    await client.close()
    assert client.rate_limiter.in_flight == 0


@pytest.mark.asyncio
async def test_invalid_json_body_is_a_decoding_error(respx_mock) -> None:
    respx_mock.get(APPS_URL).mock(return_value=httpx.Response(200, text="<html>"))

    async with _client() as client:
        with pytest.raises(DecodingError):
            await client.get("/deviceAppManagement/mobileApps")


@pytest.mark.asyncio
async def test_paginate_follows_next_link(respx_mock) -> None:
    url = f"{APPS_URL}/app-1/assignments"

    def responder(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("$skiptoken") == "page2":
            return httpx.Response(200, json={"value": [{"id": "a2"}]})
        return httpx.Response(
            200,
            json={
                "value": [{"id": "a1"}],
                "@odata.nextLink": f"{url}?$skiptoken=page2",
            },
        )

    route = respx_mock.get(url__startswith=url).mock(side_effect=responder)

    async with _client(page_size=50) as client:
        items = [
            item
            async for item in client.paginate(
                "/deviceAppManagement/mobileApps/app-1/assignments"
            )
        ]

    assert [item["id"] for item in items] == ["a1", "a2"]
    first, second = (call.request for call in route.calls)
    assert first.url.params["$top"] == "50"
    assert "$top" not in second.url.params


@pytest.mark.asyncio
async def test_paginate_requires_value_array(respx_mock) -> None:
    respx_mock.get(url__startswith=APPS_URL).mock(
        return_value=httpx.Response(200, json={"items": []})
    )

    async with _client() as client:
        with pytest.raises(DecodingError):
            async for _ in client.paginate("/deviceAppManagement/mobileApps"):
                pass


@pytest.mark.asyncio
async def test_batch_rejects_more_than_limit_before_io(respx_mock) -> None:
    requests = [
        mobile_app_assignment_create_request(f"app-{index}", {}, request_id=str(index))
        for index in range(21)
    ]

    async with _client() as client:
        with pytest.raises(ValueError):
            await client.batch(requests)
        assert await client.batch([]) == []

    assert not respx_mock.calls


@pytest.mark.asyncio
async def test_batch_maps_each_item_in_request_order(respx_mock) -> None:
    route = respx_mock.post(path__regex=BATCH_PATH).mock(
        return_value=httpx.Response(
            200,
            json={
                "responses": [
                    {
                        "id": "job-c",
                        "status": 429,
                        "headers": {"retry-after": "12"},
                        "body": {"error": {"code": "TooManyRequests", "message": "slow"}},
                    },
                    {"id": "job-a", "status": 201, "body": {"id": "assignment-1"}},
                ]
            },
        )
    )
    requests = [
        mobile_app_assignment_create_request("app-1", {"intent": "required"}, request_id="job-a"),
        mobile_app_assignment_create_request("app-2", {"intent": "required"}, request_id="job-b"),
        mobile_app_assignment_create_request("app-3", {"intent": "required"}, request_id="job-c"),
    ]

    async with _client() as client:
        results = await client.batch(requests)

    assert [result.id for result in results] == ["job-a", "job-b", "job-c"]
    assert results[0].ok and results[0].body == {"id": "assignment-1"}
    assert isinstance(results[1].error, DecodingError)
    assert isinstance(results[2].error, RateLimitedError)
    assert results[2].error.retry_after_seconds == 12.0
    assert results[2].error.message == "slow"

    sent = json.loads(route.calls.last.request.content)
    assert [entry["id"] for entry in sent["requests"]] == ["job-a", "job-b", "job-c"]
    assert sent["requests"][0]["url"] == "/deviceAppManagement/mobileApps/app-1/assignments"
    assert sent["requests"][0]["body"] == {"intent": "required"}


@pytest.mark.asyncio
async def test_batch_numbers_requests_without_ids(respx_mock) -> None:
    respx_mock.post(path__regex=BATCH_PATH).mock(
        return_value=httpx.Response(
            200,
            json={"responses": [{"id": "1", "status": 200, "body": {"value": []}}]},
        )
    )

    async with _client() as client:
        results = await client.batch([GraphRequest(method="GET", url="/deviceAppManagement/mobileApps")])

    assert results[0].id == "1"
    assert results[0].ok


@pytest.mark.asyncio
async def test_batch_rejects_duplicate_ids(respx_mock) -> None:
    requests = [
        mobile_app_assignment_create_request("app-1", {}, request_id="same"),
        mobile_app_assignment_create_request("app-2", {}, request_id="same"),
    ]

    async with _client() as client:
        with pytest.raises(ValueError):
            await client.batch(requests)


@pytest.mark.asyncio
async def test_telemetry_callback_receives_events(respx_mock) -> None:
    events: list[GraphTelemetryEvent] = []
    respx_mock.get(APPS_URL).mock(return_value=httpx.Response(200, json={}))
    respx_mock.get(f"{APPS_URL}/missing").mock(return_value=httpx.Response(404))

    async with _client(telemetry_callback=events.append) as client:
        await client.get("/deviceAppManagement/mobileApps")
        with pytest.raises(NotFoundError):
            await client.get("/deviceAppManagement/mobileApps/missing")

    assert [event.success for event in events] == [True, False]
    assert events[0].status_code == 200
    assert events[1].category is GraphErrorCategory.NOT_FOUND


@pytest.mark.asyncio
async def test_patch_sends_json_body_and_treats_no_content_as_empty(respx_mock) -> None:
    route = respx_mock.patch(f"{APPS_URL}/app-1/assignments/a-1").mock(
        return_value=httpx.Response(204)
    )

    async with _client() as client:
        payload = await client.patch(
            "/deviceAppManagement/mobileApps/app-1/assignments/a-1", {"intent": "available"}
        )

    assert payload == {}
    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer token-1"
    assert json.loads(request.content) == {"intent": "available"}


@pytest.mark.asyncio
async def test_post_with_empty_body_returns_empty_mapping(respx_mock) -> None:
    route = respx_mock.post(f"{APPS_URL}/app-1/assign").mock(
        return_value=httpx.Response(200, content=b"")
    )

    async with _client() as client:
        payload = await client.post(
            "/deviceAppManagement/mobileApps/app-1/assign", {"mobileAppAssignments": []}
        )

    assert payload == {}
    assert json.loads(route.calls.last.request.content) == {"mobileAppAssignments": []}


@pytest.mark.asyncio
async def test_delete_sends_bearer_token(respx_mock) -> None:
    route = respx_mock.delete(f"{APPS_URL}/app-1/assignments/a-1").mock(
        return_value=httpx.Response(204)
    )

    async with _client() as client:
        result = await client.delete("/deviceAppManagement/mobileApps/app-1/assignments/a-1")

    assert result is None
    assert route.call_count == 1
    assert route.calls.last.request.headers["Authorization"] == "Bearer token-1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("method", "status", "expected"),
    [
        ("patch", 403, ForbiddenError),
        ("patch", 429, RateLimitedError),
        ("delete", 404, NotFoundError),
        ("delete", 500, ServerError),
    ],
)
async def test_write_methods_map_error_statuses(respx_mock, method, status, expected) -> None:
    url = f"{APPS_URL}/app-1/assignments/a-1"
    respx_mock.route(method=method.upper(), url=url).mock(
        return_value=httpx.Response(
            status,
            json={"error": {"code": "Failure", "message": "Request failed"}},
        )
    )
    path = "/deviceAppManagement/mobileApps/app-1/assignments/a-1"

    async with _client() as client:
        with pytest.raises(expected) as exc_info:
            if method == "patch":
                await client.patch(path, {"intent": "required"})
            else:
                await client.delete(path)

    assert exc_info.value.status_code == status
