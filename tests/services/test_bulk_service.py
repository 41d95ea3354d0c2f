from __future__ import annotations

import pytest

from intune_bulk.data.models import AssignmentIntent, JobStatus, MobileAppType
from intune_bulk.graph.errors import ForbiddenError
from intune_bulk.services import BulkAssignmentService, BulkOperation, JobStateStore
from intune_bulk.services.base import JobChangeEvent
from intune_bulk.services.expander import InvalidSelection
from intune_bulk.services.validation import ConflictSeverity
from tests.factories import make_app, make_group
from tests.stubs import FakeClock, FakeGraphClient


GROUP_TARGET = "#microsoft.graph.groupAssignmentTarget"


def _assignments_path(app_id: str) -> str:
    return f"/deviceAppManagement/mobileApps/{app_id}/assignments"


def _existing(assignment_id: str, group_id: str, intent: str = "required") -> dict:
    return {
        "id": assignment_id,
        "intent": intent,
        "target": {"@odata.type": GROUP_TARGET, "groupId": group_id},
    }


@pytest.fixture
def service(engine_settings, graph_client: FakeGraphClient, clock: FakeClock):
    return BulkAssignmentService(
        graph_client,
        JobStateStore(clock=clock),
        engine_settings,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.mark.asyncio
async def test_submit_and_run_assigns_every_pair(service, graph_client) -> None:
    events: list[JobChangeEvent] = []
    service.subscribe(events.append)
    operation = BulkOperation(
        resources=[make_app("app-1"), make_app("app-2")],
        groups=[make_group("g1"), make_group("g2")],
        intent=AssignmentIntent.REQUIRED,
    )

    batch_id = await service.submit(operation)
    summary = await service.run(batch_id)

    assert summary.batch_id == batch_id
    assert len(summary.succeeded) == 4
    assert not summary.failed and not summary.skipped
    posted = {
        (request.url, request.body["target"]["groupId"])
        for request in graph_client.dispatched_requests
    }
    assert posted == {
        (_assignments_path(app), group)
        for app in ("app-1", "app-2")
        for group in ("g1", "g2")
    }
    assert [event.status for event in events].count(JobStatus.COMPLETED) == 4
    statistics = await service.statistics(batch_id)
    assert statistics.completed == 4
    assert statistics.success_rate == 1.0
    await service.close()


@pytest.mark.asyncio
async def test_skip_existing_for_a_single_app_pages_its_assignments(service, graph_client) -> None:
    graph_client.set_collection(
        _assignments_path("app-1"), [_existing("a-1", "g1")]
    )
    operation = BulkOperation(
        resources=[make_app("app-1")],
        groups=[make_group("g1"), make_group("g2")],
        intent=AssignmentIntent.REQUIRED,
    )

    batch_id = await service.submit(operation, skip_existing=True)
    summary = await service.run(batch_id)

    assert graph_client.paginated == [_assignments_path("app-1")]
    assert [job.group_id for job in summary.succeeded] == ["g2"]
    assert [(item.resource_id, item.group_id) for item in summary.skipped] == [
        ("app-1", "g1")
    ]
    assert [request.body["target"]["groupId"] for request in graph_client.dispatched_requests] == ["g2"]
    await service.close()


@pytest.mark.asyncio
async def test_skip_existing_for_many_apps_uses_batch_and_next_links(service, graph_client) -> None:
    next_link = "https://graph.microsoft.com/beta/deviceAppManagement/mobileApps/app-2/assignments?$skiptoken=2"
    graph_client.batch_bodies[_assignments_path("app-1")] = {
        "value": [_existing("a-1", "g1"), {"id": "broken"}]
    }
    graph_client.batch_bodies[_assignments_path("app-2")] = {
        "value": [],
        "@odata.nextLink": next_link,
    }
    graph_client.set_collection(next_link, [_existing("a-2", "g2")])

    existing = await service.fetch_existing_assignments(["app-1", "app-2", "app-3"])

    assert [a.target.group_id for a in existing["app-1"]] == ["g1"]
    assert [a.target.group_id for a in existing["app-2"]] == ["g2"]
    assert existing["app-3"] == []
    assert graph_client.paginated == [next_link]
    assert [request.method for request in graph_client.dispatched_requests] == ["GET"] * 3
    await service.close()


@pytest.mark.asyncio
async def test_everything_already_assigned_yields_an_empty_batch(service, graph_client) -> None:
    graph_client.set_collection(_assignments_path("app-1"), [_existing("a-1", "g1")])
    operation = BulkOperation(
        resources=[make_app("app-1")],
        groups=[make_group("g1")],
        intent=AssignmentIntent.REQUIRED,
    )

    batch_id = await service.submit(operation, skip_existing=True)
    summary = await service.summary(batch_id)

    assert summary.total == 0
    assert len(summary.skipped) == 1
    assert not graph_client.executed_batches
    await service.close()


@pytest.mark.asyncio
async def test_strict_submission_rejects_unsupported_intent(service) -> None:
    operation = BulkOperation(
        resources=[make_app("web-1", app_type=MobileAppType.WEB)],
        groups=[make_group("g1")],
        intent=AssignmentIntent.UNINSTALL,
    )

    with pytest.raises(InvalidSelection):
        await service.submit(operation, strict=True)

    batch_id = await service.submit(operation)
    statistics = await service.statistics(batch_id)
    assert statistics.counts[JobStatus.PENDING] == 1
    await service.close()


@pytest.mark.asyncio
async def test_strict_submission_rejects_critical_conflicts(service, graph_client) -> None:
    graph_client.set_collection(
        _assignments_path("app-1"), [_existing("a-1", "g1", intent="uninstall")]
    )
    operation = BulkOperation(
        resources=[make_app("app-1")],
        groups=[make_group("g1")],
        intent=AssignmentIntent.REQUIRED,
    )

    with pytest.raises(InvalidSelection):
        await service.submit(operation, skip_existing=True, strict=True, batch_id="strict")

    conflicts = service.conflicts("strict")
    assert len(conflicts) == 1
    assert conflicts[0].severity == ConflictSeverity.CRITICAL
    assert not await service.store.has_outstanding("strict")
    await service.close()


@pytest.mark.asyncio
async def test_retry_failed_resubmits_only_failed_jobs(service, graph_client) -> None:
    graph_client.queue_outcomes("app-2", [ForbiddenError()])
    operation = BulkOperation(
        resources=[make_app("app-1"), make_app("app-2")],
        groups=[make_group("g1")],
        intent=AssignmentIntent.AVAILABLE,
    )
    batch_id = await service.submit(operation)
    first = await service.run(batch_id)
    assert [failure.job.resource_id for failure in first.failed] == ["app-2"]

    retry_batch = await service.retry_failed(batch_id)
    jobs = await service.store.jobs_for_batch(retry_batch)

    assert retry_batch != batch_id
    assert [job.resource_id for job in jobs] == ["app-2"]
    assert jobs[0].status == JobStatus.PENDING
    assert jobs[0].retry_count == 0
    assert jobs[0].error_message is None
    assert jobs[0].id != first.failed[0].job.id

    second = await service.run(retry_batch)
    assert [job.resource_id for job in second.succeeded] == ["app-2"]
    original = await service.summary(batch_id)
    assert len(original.failed) == 1

    with pytest.raises(InvalidSelection):
        await service.retry_failed(retry_batch)
    await service.close()


@pytest.mark.asyncio
async def test_background_run_and_cancel(service, graph_client) -> None:
    graph_client.delay = 0.01
    operation = BulkOperation(
        resources=[make_app(f"app-{index}") for index in range(3)],
        groups=[make_group("g1")],
        intent=AssignmentIntent.REQUIRED,
    )
    batch_id = await service.submit(operation)

    task = service.start(batch_id)
    assert service.start(batch_id) is task
    summary = await task

    assert len(summary.succeeded) == 3
    assert await service.cancel(batch_id) == 0
    await service.close()


@pytest.mark.asyncio
async def test_recover_resumes_persisted_batches(job_repository, engine_settings, clock) -> None:
    client = FakeGraphClient()
    first = BulkAssignmentService(
        client, JobStateStore(job_repository, clock=clock), engine_settings, clock=clock
    )
    operation = BulkOperation(
        resources=[make_app("app-1")],
        groups=[make_group("g1"), make_group("g2")],
        intent=AssignmentIntent.REQUIRED,
    )
    batch_id = await first.submit(operation)
    await first.close()

    restarted = BulkAssignmentService(
        client,
        JobStateStore(job_repository, clock=clock),
        engine_settings,
        clock=clock,
        sleep=clock.sleep,
    )
    assert await restarted.recover() == [batch_id]
    summary = await restarted.run(batch_id)

    assert len(summary.succeeded) == 2
    assert job_repository.list_non_terminal() == []
    await restarted.close()


@pytest.mark.asyncio
async def test_forget_discards_a_finished_batch(job_repository, engine_settings, clock) -> None:
    service = BulkAssignmentService(
        FakeGraphClient(),
        JobStateStore(job_repository, clock=clock),
        engine_settings,
        clock=clock,
        sleep=clock.sleep,
    )
    operation = BulkOperation(
        resources=[make_app("app-1")],
        groups=[make_group("g1"), make_group("g2")],
        intent=AssignmentIntent.REQUIRED,
    )
    batch_id = await service.submit(operation)
    pending_id = await service.submit(
        BulkOperation(
            resources=[make_app("app-2")],
            groups=[make_group("g1")],
            intent=AssignmentIntent.REQUIRED,
        )
    )
    await service.start(batch_id)

    assert await service.forget(batch_id) == 2
    assert job_repository.list_for_batch(batch_id) == []
    assert (await service.summary(batch_id)).total == 0
    assert service.conflicts(batch_id) == []
    with pytest.raises(ValueError):
        await service.forget(pending_id)
    await service.close()
