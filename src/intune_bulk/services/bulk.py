"""Facade tying expansion, validation, the job store and the scheduler together."""

from __future__ import annotations

import asyncio
import functools
import uuid
from datetime import datetime
from typing import Any, Callable, Iterable, Sequence

from intune_bulk.config import EngineSettings
from intune_bulk.data.models import (
    AssignmentJob,
    BatchStatistics,
    BatchSummary,
    JobStatus,
    MobileAppAssignment,
    SkippedAssignment,
    utc_now,
)
from intune_bulk.graph.client import GraphClient
from intune_bulk.graph.requests import mobile_app_assignments_request
from intune_bulk.services.base import JobChangeEvent
from intune_bulk.services.expander import (
    AssignmentExpander,
    BulkOperation,
    InvalidSelection,
)
from intune_bulk.services.job_store import JobStateStore
from intune_bulk.services.scheduler import BatchScheduler, CredentialRefresh, SleepFunc
from intune_bulk.services.validation import (
    ConflictSeverity,
    IntentConflict,
    find_intent_conflicts,
    is_intent_valid,
    validation_message,
)
from intune_bulk.utils import get_logger


logger = get_logger(__name__)


class BulkAssignmentService:
    """Entry point used by the UI to submit, run and observe bulk assignments."""

    def __init__(
        self,
        client: GraphClient,
        store: JobStateStore,
        settings: EngineSettings | None = None,
        *,
        expander: AssignmentExpander | None = None,
        scheduler: BatchScheduler | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: SleepFunc | None = None,
        on_unauthorized: CredentialRefresh | None = None,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._client = client
        self._store = store
        self._clock = clock or utc_now
        self._expander = expander or AssignmentExpander(clock=self._clock)
        self._scheduler = scheduler or BatchScheduler(
            client,
            store,
            self._settings,
            clock=self._clock,
            sleep=sleep,
            on_unauthorized=on_unauthorized,
        )
        self._skipped: dict[str, list[SkippedAssignment]] = {}
        self._conflicts: dict[str, list[IntentConflict]] = {}
        self._runs: dict[str, asyncio.Task[BatchSummary]] = {}

    @property
    def store(self) -> JobStateStore:
        return self._store

    # ------------------------------------------------------------- Submission

    async def submit(
        self,
        operation: BulkOperation,
        *,
        skip_existing: bool = False,
        validate: bool = True,
        strict: bool = False,
        batch_id: str | None = None,
    ) -> str:
        """Expand ``operation`` into a batch of jobs and register it.

        With ``skip_existing`` the current assignments of every selected app
        are fetched first and pairs that already exist are left out. With
        ``strict`` an incompatible intent or a critical conflict raises
        :class:`InvalidSelection` instead of only being logged.
        """

        jobs = operation.materialize(self._expander, batch_id=batch_id)
        batch = jobs[0].batch_id

        existing: dict[str, list[MobileAppAssignment]] = {}
        if skip_existing:
            existing = await self.fetch_existing_assignments(
                list(dict.fromkeys(job.resource_id for job in jobs))
            )

        if validate:
            self._validate(batch, jobs, existing, strict=strict)

        skipped: list[SkippedAssignment] = []
        if skip_existing:
            jobs, skipped = _partition_existing(jobs, existing)
        self._skipped[batch] = skipped

        if jobs:
            await self._store.add_jobs(jobs)
        logger.info(
            "Bulk operation submitted",
            batch_id=batch,
            jobs=len(jobs),
            skipped=len(skipped),
            intent=str(operation.intent),
        )
        return batch

    def _validate(
        self,
        batch_id: str,
        jobs: Sequence[AssignmentJob],
        existing: dict[str, list[MobileAppAssignment]],
        *,
        strict: bool,
    ) -> None:
        problems: list[str] = []
        for job in jobs:
            if is_intent_valid(job.intent, job.resource_type, job.target_type):
                continue
            message = validation_message(job.intent, job.resource_type, job.target_type)
            problems.append(f"{job.resource_name} -> {job.group_name}: {message}")
            logger.warning(
                "Intent not supported for target",
                batch_id=batch_id,
                resource=job.resource_name,
                group=job.group_name,
                intent=str(job.intent),
                reason=message,
            )

        conflicts = find_intent_conflicts(jobs, existing)
        self._conflicts[batch_id] = conflicts
        for conflict in conflicts:
            logger.warning(
                "Assignment intent conflict",
                batch_id=batch_id,
                resource=conflict.resource_name,
                group=conflict.group_name,
                intents=[str(intent) for intent in conflict.intents],
                severity=str(conflict.severity),
            )
            if conflict.severity == ConflictSeverity.CRITICAL:
                problems.append(
                    f"{conflict.resource_name} -> {conflict.group_name}: "
                    f"{conflict.resolution}"
                )

        if strict and problems:
            raise InvalidSelection("; ".join(problems))

    async def fetch_existing_assignments(
        self, app_ids: Sequence[str]
    ) -> dict[str, list[MobileAppAssignment]]:
        """Load the assignments Graph already holds for each app.

        A single app is paged directly; several apps are fetched through
        ``/$batch`` and any further pages are followed per app.
        """

        existing: dict[str, list[MobileAppAssignment]] = {app_id: [] for app_id in app_ids}
        if not app_ids:
            return existing

        if len(app_ids) == 1:
            app_id = app_ids[0]
            request = mobile_app_assignments_request(app_id)
            items = [item async for item in self._client.paginate(request.url)]
            _extend_assignments(existing[app_id], items, app_id)
            return existing

        size = self._client.max_batch_size
        for start in range(0, len(app_ids), size):
            chunk = app_ids[start : start + size]
            results = await self._client.batch(
                [mobile_app_assignments_request(app_id) for app_id in chunk]
            )
            for app_id, result in zip(chunk, results, strict=True):
                if not result.ok or not isinstance(result.body, dict):
                    logger.warning(
                        "Could not load existing assignments",
                        app_id=app_id,
                        status=result.status,
                    )
                    continue
                _extend_assignments(existing[app_id], result.body.get("value") or [], app_id)
                next_link = result.body.get("@odata.nextLink")
                if next_link:
                    items = [
                        item
                        async for item in self._client.paginate(str(next_link), page_size=0)
                    ]
                    _extend_assignments(existing[app_id], items, app_id)
        return existing

    # -------------------------------------------------------------- Execution

    async def run(self, batch_id: str) -> BatchSummary:
        """Drive the batch to completion and return its summary."""

        summary = await self._scheduler.run(batch_id)
        summary.skipped = list(self._skipped.get(batch_id, []))
        return summary

    def start(self, batch_id: str) -> asyncio.Task[BatchSummary]:
        """Run the batch in the background; the task resolves to its summary."""

        task = self._runs.get(batch_id)
        if task is None or task.done():
            task = asyncio.create_task(self.run(batch_id), name=f"bulk-run-{batch_id}")
            task.add_done_callback(functools.partial(self._discard_run, batch_id))
            self._runs[batch_id] = task
        return task

    def _discard_run(self, batch_id: str, task: asyncio.Task[BatchSummary]) -> None:
        if self._runs.get(batch_id) is task:
            del self._runs[batch_id]

    async def cancel(self, batch_id: str) -> int:
        return await self._store.cancel_batch(batch_id)

    async def summary(self, batch_id: str) -> BatchSummary:
        summary = await self._store.summary(batch_id)
        summary.skipped = list(self._skipped.get(batch_id, []))
        return summary

    def subscribe(self, callback: Callable[[JobChangeEvent], None]) -> Callable[[], None]:
        return self._store.changes.subscribe(callback)

    def conflicts(self, batch_id: str) -> list[IntentConflict]:
        return list(self._conflicts.get(batch_id, []))

    async def retry_failed(self, batch_id: str) -> str:
        """Resubmit the failed jobs of a batch as a fresh batch.

        The original jobs keep their terminal state; the copies start over with
        new ids and an unused retry budget.
        """

        failed = [
            job
            for job in await self._store.jobs_for_batch(batch_id)
            if job.status == JobStatus.FAILED
        ]
        if not failed:
            raise InvalidSelection(f"Batch {batch_id} has no failed jobs to retry")

        new_batch = str(uuid.uuid4())
        now = self._clock()
        retries = [
            job.evolve(
                id=str(uuid.uuid4()),
                batch_id=new_batch,
                status=JobStatus.PENDING,
                retry_count=0,
                error_category=None,
                error_message=None,
                failure_timestamp=None,
                completed_at=None,
                scheduled_for=None,
                created_at=now,
                modified_at=now,
            )
            for job in failed
        ]
        await self._store.add_jobs(retries)
        self._skipped[new_batch] = []
        logger.info(
            "Failed jobs resubmitted",
            source_batch_id=batch_id,
            batch_id=new_batch,
            jobs=len(retries),
        )
        return new_batch

    async def statistics(self, batch_id: str | None = None) -> BatchStatistics:
        return await self._store.statistics(batch_id)

    async def forget(self, batch_id: str) -> int:
        """Discard a finished batch, including its persisted history.

        Returns the number of jobs removed. A batch that is still running or
        has unfinished jobs is refused.
        """

        task = self._runs.get(batch_id)
        if task is not None and not task.done():
            raise InvalidSelection(f"Batch {batch_id} is still running")
        removed = await self._store.forget(batch_id)
        self._skipped.pop(batch_id, None)
        self._conflicts.pop(batch_id, None)
        logger.info("Batch discarded", batch_id=batch_id, jobs=removed)
        return removed

    async def recover(self) -> list[str]:
        """Reload unfinished jobs and return the batches that need running."""

        restored = await self._store.recover()
        return list(dict.fromkeys(job.batch_id for job in restored))

    async def close(self) -> None:
        for task in self._runs.values():
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._runs.values(), return_exceptions=True)
        self._runs.clear()
        await self._store.close()


def _extend_assignments(
    target: list[MobileAppAssignment], items: list[dict[str, Any]], app_id: str
) -> None:
    parsed, errors = MobileAppAssignment.from_graph_items(items)
    target.extend(parsed)
    if errors:
        logger.debug("Skipping unreadable assignments", app_id=app_id, skipped=len(errors))


def _partition_existing(
    jobs: Iterable[AssignmentJob],
    existing: dict[str, list[MobileAppAssignment]],
) -> tuple[list[AssignmentJob], list[SkippedAssignment]]:
    present = {
        (app_id, assignment.target.target_key)
        for app_id, assignments in existing.items()
        for assignment in assignments
    }
    kept: list[AssignmentJob] = []
    skipped: list[SkippedAssignment] = []
    for job in jobs:
        if (job.resource_id, job.group_id) in present:
            skipped.append(
                SkippedAssignment(
                    resource_id=job.resource_id,
                    resource_name=job.resource_name,
                    group_id=job.group_id,
                    group_name=job.group_name,
                )
            )
        else:
            kept.append(job)
    return kept, skipped


__all__ = ["BulkAssignmentService"]
