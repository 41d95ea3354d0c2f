from __future__ import annotations

import pytest

from intune_bulk.graph.requests import (
    GraphRequest,
    build_batch_requests,
    mobile_app_assignment_create_request,
    mobile_app_assignments_request,
)


def test_create_request_targets_assignments_collection() -> None:
    request = mobile_app_assignment_create_request(
        "app-1", {"intent": "required"}, request_id="job-1"
    )

    assert request.method == "POST"
    assert request.url == "/deviceAppManagement/mobileApps/app-1/assignments"
    assert request.is_write

    assert request.to_batch_entry("fallback") == {
        "id": "job-1",
        "method": "POST",
        "url": "/deviceAppManagement/mobileApps/app-1/assignments",
        "headers": {"Content-Type": "application/json"},
        "body": {"intent": "required"},
    }


def test_get_request_encodes_params_and_omits_body() -> None:
    request = mobile_app_assignments_request("app-9", params={"$top": 50})

    entry = request.to_batch_entry("3")

    assert not request.is_write
    assert entry["id"] == "3"
    assert entry["url"] == "/deviceAppManagement/mobileApps/app-9/assignments?%24top=50"
    assert "body" not in entry


def test_build_batch_requests_numbers_entries_and_keeps_dependencies() -> None:
    requests = [
        GraphRequest(method="GET", url="deviceAppManagement/mobileApps"),
        GraphRequest(
            method="DELETE",
            url="/deviceAppManagement/mobileApps/app-1",
            depends_on=["1"],
        ),
    ]

    entries = build_batch_requests(requests)

    assert [entry["id"] for entry in entries] == ["1", "2"]
    assert entries[0]["url"] == "/deviceAppManagement/mobileApps"
    assert entries[1]["dependsOn"] == ["1"]


def test_build_batch_requests_rejects_colliding_ids() -> None:
    requests = [
        GraphRequest(method="GET", url="/deviceAppManagement/mobileApps"),
        GraphRequest(method="GET", url="/deviceAppManagement/mobileApps", request_id="1"),
    ]

    with pytest.raises(ValueError):
        build_batch_requests(requests)
