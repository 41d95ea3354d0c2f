"""Single-writer store owning every assignment job and its transitions."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Sequence

from intune_bulk.config import RetryPolicy
from intune_bulk.data.models import (
    AssignmentJob,
    BatchStatistics,
    BatchSummary,
    JobFailure,
    JobStatus,
    utc_now,
)
from intune_bulk.data.repositories import JobRepository
from intune_bulk.graph.errors import GraphAPIError, GraphErrorCategory, RateLimitedError
from intune_bulk.services.base import EventHook, JobChangeEvent
from intune_bulk.utils import get_logger
from intune_bulk.utils.errors import describe_exception


logger = get_logger(__name__)


_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.SCHEDULED, JobStatus.CANCELLED}),
    JobStatus.SCHEDULED: frozenset({JobStatus.IN_PROGRESS, JobStatus.CANCELLED}),
    JobStatus.IN_PROGRESS: frozenset(
        {
            JobStatus.COMPLETED,
            JobStatus.RETRYING,
            JobStatus.FAILED,
            JobStatus.CANCELLED,
        }
    ),
    JobStatus.RETRYING: frozenset({JobStatus.PENDING, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """Raised when a job is asked to move along an edge the lifecycle forbids."""

    def __init__(self, job_id: str, current: JobStatus, target: JobStatus) -> None:
        super().__init__(f"Job {job_id} cannot move from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


def is_retryable_failure(error: BaseException) -> bool:
    """Return whether a failed job should be rescheduled rather than failed.

    Unauthorized responses are retried because every attempt asks the token
    provider for a fresh credential.
    """

    if isinstance(error, GraphAPIError):
        if error.category is GraphErrorCategory.AUTHENTICATION:
            return True
        return error.is_retriable
    return isinstance(error, (asyncio.TimeoutError, ConnectionError))


@dataclass(slots=True)
class _Command:
    action: Callable[[], Any]
    future: asyncio.Future[Any] = field(repr=False)


class JobStateStore:
    """Actor that serialises all job mutations through one asyncio task.

    Public coroutines enqueue a command and await its result, so callers on
    different workers never observe a half-applied transition. Jobs are
    immutable and each transition replaces the stored record.
    """

    def __init__(
        self,
        repository: JobRepository | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or utc_now
        self._jobs: dict[str, AssignmentJob] = {}
        self._queue: asyncio.Queue[_Command | None] | None = None
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self.changes: EventHook[JobChangeEvent] = EventHook()

    # ------------------------------------------------------------------ Actor

    def _ensure_running(self) -> asyncio.Queue[_Command | None]:
        if self._closed:
            raise RuntimeError("Job store has been closed")
        if self._queue is None or self._task is None or self._task.done():
            self._queue = asyncio.Queue()
            self._task = asyncio.create_task(
                self._run(self._queue), name="job-state-store"
            )
        return self._queue

    async def _run(self, queue: asyncio.Queue[_Command | None]) -> None:
        while True:
            command = await queue.get()
            if command is None:
                queue.task_done()
                return
            try:
                result = command.action()
            except Exception as exc:  # noqa: BLE001 - delivered to the caller
                if not command.future.cancelled():
                    command.future.set_exception(exc)
            else:
                if not command.future.cancelled():
                    command.future.set_result(result)
            finally:
                queue.task_done()

    async def _submit(self, action: Callable[[], Any]) -> Any:
        queue = self._ensure_running()
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        await queue.put(_Command(action=action, future=future))
        return await future

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._queue is not None and self._task is not None and not self._task.done():
            await self._queue.put(None)
            await self._task
        logger.debug("Job store closed", jobs=len(self._jobs))

    # ------------------------------------------------------------- Internals

    def _replace(
        self, job: AssignmentJob, **changes: Any
    ) -> AssignmentJob:
        target = changes.get("status", job.status)
        if target != job.status and target not in _TRANSITIONS[job.status]:
            raise InvalidTransitionError(job.id, job.status, target)
        updated = job.evolve(modified_at=self._clock(), **changes)
        self._jobs[job.id] = updated
        if self._repository is not None:
            self._repository.upsert(updated)
        self.changes.emit(JobChangeEvent(job=updated, previous_status=job.status))
        return updated

    def _require(self, job_id: str) -> AssignmentJob:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise KeyError(f"Unknown job {job_id}") from None

    def _batch(self, batch_id: str) -> list[AssignmentJob]:
        jobs = [job for job in self._jobs.values() if job.batch_id == batch_id]
        jobs.sort(key=lambda job: job.created_at)
        return jobs

    def _discarded(self, job: AssignmentJob, action: str) -> bool:
        if job.status == JobStatus.CANCELLED:
            logger.debug(
                "Discarding result for cancelled job",
                job_id=job.id,
                batch_id=job.batch_id,
                action=action,
            )
            return True
        return False

    def _apply_failure(
        self,
        job: AssignmentJob,
        error: BaseException,
        now: datetime,
        policy: RetryPolicy,
    ) -> AssignmentJob:
        category = (
            error.category.value
            if isinstance(error, GraphAPIError)
            else GraphErrorCategory.UNKNOWN.value
        )
        reason = describe_exception(error).summary()

        if is_retryable_failure(error) and policy.allows_retry(job.retry_count):
            retry_after = (
                error.retry_after_seconds if isinstance(error, RateLimitedError) else None
            )
            delay = policy.backoff(job.retry_count, retry_after)
            updated = self._replace(
                job,
                status=JobStatus.RETRYING,
                retry_count=job.retry_count + 1,
                error_category=category,
                error_message=reason,
                failure_timestamp=now,
                scheduled_for=now + timedelta(seconds=delay),
            )
            logger.debug(
                "Job scheduled for retry",
                job_id=job.id,
                retry_count=updated.retry_count,
                delay=delay,
                category=category,
            )
            return updated

        updated = self._replace(
            job,
            status=JobStatus.FAILED,
            error_category=category,
            error_message=reason,
            failure_timestamp=now,
            completed_at=now,
        )
        logger.warning(
            "Job failed",
            job_id=job.id,
            resource=job.resource_name,
            group=job.group_name,
            retry_count=job.retry_count,
            category=category,
        )
        return updated

    # ------------------------------------------------------------ Mutations

    async def add_jobs(self, jobs: Iterable[AssignmentJob]) -> list[AssignmentJob]:
        incoming = list(jobs)

        batch_ids = {job.batch_id for job in incoming}

        def action() -> list[AssignmentJob]:
            seen_pairs = {
                job.pair_key for job in self._jobs.values() if job.batch_id in batch_ids
            }
            for job in incoming:
                if job.id in self._jobs:
                    raise ValueError(f"Job {job.id} has already been added")
                if job.pair_key in seen_pairs:
                    raise ValueError(
                        f"Batch {job.batch_id} already holds "
                        f"{job.resource_id} -> {job.group_id}"
                    )
                seen_pairs.add(job.pair_key)
            for job in incoming:
                self._jobs[job.id] = job
            if self._repository is not None:
                self._repository.upsert_many(incoming)
            for job in incoming:
                self.changes.emit(JobChangeEvent(job=job, previous_status=None))
            return incoming

        return await self._submit(action)

    async def claim_chunk(
        self, batch_id: str, limit: int, now: datetime
    ) -> list[AssignmentJob]:
        """Atomically select up to ``limit`` due jobs and mark them scheduled."""

        def action() -> list[AssignmentJob]:
            for job in self._batch(batch_id):
                if job.status == JobStatus.RETRYING and job.is_due(now):
                    self._replace(job, status=JobStatus.PENDING)

            candidates = [
                job
                for job in self._batch(batch_id)
                if job.status == JobStatus.PENDING and job.is_due(now)
            ]
            candidates.sort(key=lambda job: (-int(job.priority), job.created_at))
            return [
                self._replace(job, status=JobStatus.SCHEDULED)
                for job in candidates[: max(0, limit)]
            ]

        return await self._submit(action)

    async def mark_in_progress(self, job_ids: Sequence[str]) -> list[AssignmentJob]:
        def action() -> list[AssignmentJob]:
            started: list[AssignmentJob] = []
            for job_id in job_ids:
                job = self._require(job_id)
                if self._discarded(job, "start"):
                    continue
                started.append(self._replace(job, status=JobStatus.IN_PROGRESS))
            return started

        return await self._submit(action)

    async def complete(
        self,
        job_id: str,
        now: datetime | None = None,
        *,
        note: str | None = None,
    ) -> AssignmentJob | None:
        def action() -> AssignmentJob | None:
            job = self._require(job_id)
            if self._discarded(job, "complete"):
                return None
            finished = now or self._clock()
            return self._replace(
                job,
                status=JobStatus.COMPLETED,
                completed_at=finished,
                error_category=None,
                error_message=None,
                result_note=note,
            )

        return await self._submit(action)

    async def release(self, batch_id: str, now: datetime) -> list[AssignmentJob]:
        """Return jobs claimed by an interrupted run so a later run picks them up.

        ``scheduled`` and ``inProgress`` jobs move to ``retrying`` due at
        ``now``. No attempt finished, so the retry count is left alone.
        """

        def action() -> list[AssignmentJob]:
            released: list[AssignmentJob] = []
            for job in self._batch(batch_id):
                if job.status == JobStatus.SCHEDULED:
                    job = self._replace(job, status=JobStatus.IN_PROGRESS)
                if job.status != JobStatus.IN_PROGRESS:
                    continue
                released.append(
                    self._replace(job, status=JobStatus.RETRYING, scheduled_for=now)
                )
            if released:
                logger.info(
                    "Released jobs from interrupted run",
                    batch_id=batch_id,
                    jobs=len(released),
                )
            return released

        return await self._submit(action)

    async def record_failure(
        self,
        job_id: str,
        error: BaseException,
        now: datetime,
        policy: RetryPolicy,
    ) -> AssignmentJob | None:
        def action() -> AssignmentJob | None:
            job = self._require(job_id)
            if self._discarded(job, "failure"):
                return None
            return self._apply_failure(job, error, now, policy)

        return await self._submit(action)

    async def fail_chunk(
        self,
        job_ids: Sequence[str],
        error: BaseException,
        now: datetime,
        policy: RetryPolicy,
    ) -> list[AssignmentJob]:
        """Apply one process-level failure to every job of a dispatched chunk."""

        def action() -> list[AssignmentJob]:
            updated: list[AssignmentJob] = []
            for job_id in job_ids:
                job = self._require(job_id)
                if self._discarded(job, "chunk failure"):
                    continue
                if job.status == JobStatus.SCHEDULED:
                    job = self._replace(job, status=JobStatus.IN_PROGRESS)
                updated.append(self._apply_failure(job, error, now, policy))
            return updated

        return await self._submit(action)

    async def cancel_batch(self, batch_id: str) -> int:
        def action() -> int:
            now = self._clock()
            cancelled = 0
            for job in self._batch(batch_id):
                if job.is_terminal:
                    continue
                self._replace(job, status=JobStatus.CANCELLED, completed_at=now)
                cancelled += 1
            logger.info("Batch cancelled", batch_id=batch_id, cancelled=cancelled)
            return cancelled

        return await self._submit(action)

    async def forget(self, batch_id: str) -> int:
        """Drop a finished batch from memory and from the repository."""

        def action() -> int:
            jobs = self._batch(batch_id)
            if any(not job.is_terminal for job in jobs):
                raise ValueError(f"Batch {batch_id} still has unfinished jobs")
            for job in jobs:
                del self._jobs[job.id]
            removed = len(jobs)
            if self._repository is not None:
                removed = max(removed, self._repository.delete_batch(batch_id))
            logger.debug("Batch forgotten", batch_id=batch_id, jobs=removed)
            return removed

        return await self._submit(action)

    async def recover(self) -> list[AssignmentJob]:
        """Reload unfinished jobs from the repository after a restart.

        Jobs left ``scheduled`` or ``inProgress`` by the previous process never
        got a result, so they are returned to ``pending``.
        """

        if self._repository is None:
            return []
        repository = self._repository

        def action() -> list[AssignmentJob]:
            restored: list[AssignmentJob] = []
            now = self._clock()
            for job in repository.list_non_terminal():
                if job.status in (JobStatus.SCHEDULED, JobStatus.IN_PROGRESS):
                    job = job.evolve(status=JobStatus.PENDING, modified_at=now)
                self._jobs[job.id] = job
                restored.append(job)
            repository.upsert_many(restored)
            if restored:
                logger.info(
                    "Recovered unfinished jobs",
                    jobs=len(restored),
                    batches=len({job.batch_id for job in restored}),
                )
            return restored

        return await self._submit(action)

    # ---------------------------------------------------------------- Queries

    async def get(self, job_id: str) -> AssignmentJob | None:
        return await self._submit(lambda: self._jobs.get(job_id))

    async def jobs_for_batch(self, batch_id: str) -> list[AssignmentJob]:
        return await self._submit(lambda: self._batch(batch_id))

    async def batch_ids(self) -> list[str]:
        def action() -> list[str]:
            return list(dict.fromkeys(job.batch_id for job in self._jobs.values()))

        return await self._submit(action)

    async def has_outstanding(self, batch_id: str) -> bool:
        def action() -> bool:
            return any(not job.is_terminal for job in self._batch(batch_id))

        return await self._submit(action)

    async def next_due(self, batch_id: str) -> datetime | None:
        """Return the earliest time a waiting job of the batch becomes due."""

        def action() -> datetime | None:
            waiting = [
                job.scheduled_for or job.created_at
                for job in self._batch(batch_id)
                if job.status in (JobStatus.PENDING, JobStatus.RETRYING)
            ]
            return min(waiting) if waiting else None

        return await self._submit(action)

    async def summary(self, batch_id: str) -> BatchSummary:
        def action() -> BatchSummary:
            summary = BatchSummary(batch_id=batch_id)
            for job in self._batch(batch_id):
                match job.status:
                    case JobStatus.COMPLETED:
                        summary.succeeded.append(job)
                    case JobStatus.FAILED:
                        summary.failed.append(
                            JobFailure(job=job, reason=job.error_message or "Unknown error")
                        )
                    case JobStatus.RETRYING:
                        summary.still_retrying.append(job)
                    case JobStatus.CANCELLED:
                        summary.cancelled.append(job)
                    case _:
                        summary.pending.append(job)
            return summary

        return await self._submit(action)

    async def statistics(self, batch_id: str | None = None) -> BatchStatistics:
        def action() -> BatchStatistics:
            jobs = self._batch(batch_id) if batch_id else list(self._jobs.values())
            return BatchStatistics.from_jobs(jobs, batch_id=batch_id)

        return await self._submit(action)


__all__ = ["InvalidTransitionError", "JobStateStore", "is_retryable_failure"]
