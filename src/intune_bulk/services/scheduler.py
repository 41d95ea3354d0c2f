"""Worker pool that drains a batch of assignment jobs through Graph ``/$batch``."""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime
from typing import Awaitable, Callable, Protocol, Sequence

from intune_bulk.config import EngineSettings, RetryPolicy
from intune_bulk.data.models import (
    AssignmentJob,
    BatchSummary,
    build_assignment_payload,
    utc_now,
)
from intune_bulk.graph.client import BatchResult
from intune_bulk.graph.errors import GraphAPIError, UnauthorizedError
from intune_bulk.graph.requests import GraphRequest, mobile_app_assignment_create_request
from intune_bulk.services.job_store import JobStateStore
from intune_bulk.utils import batch_context, get_logger
from intune_bulk.utils.errors import describe_exception


logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]
CredentialRefresh = Callable[[], Awaitable[None] | None]

ALREADY_EXISTS_NOTE = "Assignment already exists (skipped)"


class BatchTransport(Protocol):
    """The slice of :class:`~intune_bulk.graph.GraphClient` the scheduler needs."""

    @property
    def max_batch_size(self) -> int: ...

    async def batch(self, requests: Sequence[GraphRequest]) -> list[BatchResult]: ...


def assignment_request(job: AssignmentJob) -> GraphRequest:
    return mobile_app_assignment_create_request(
        job.resource_id,
        build_assignment_payload(job),
        request_id=job.id,
    )


def _result_error(result: BatchResult) -> GraphAPIError:
    if result.error is not None:
        return result.error
    return GraphAPIError(
        message=f"Unexpected status {result.status} for request {result.id}",
        status_code=result.status,
    )


class BatchScheduler:
    """Claim due jobs in chunks and dispatch them with bounded concurrency.

    ``max_concurrency`` workers each claim at most ``max_batch_size`` jobs from
    the store, send them as one ``/$batch`` call and write every per-item
    outcome back. Workers stop once the batch has no non-terminal jobs left.
    """

    def __init__(
        self,
        client: BatchTransport,
        store: JobStateStore,
        settings: EngineSettings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        sleep: SleepFunc | None = None,
        on_unauthorized: CredentialRefresh | None = None,
    ) -> None:
        settings = settings or EngineSettings()
        self._client = client
        self._store = store
        self._policy: RetryPolicy = settings.retry_policy
        self._concurrency = settings.max_concurrency
        self._chunk_size = min(settings.max_batch_size, client.max_batch_size)
        self._poll_interval = settings.poll_interval
        self._clock = clock or utc_now
        self._sleep = sleep or asyncio.sleep
        self._on_unauthorized = on_unauthorized

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    async def run(self, batch_id: str) -> BatchSummary:
        with batch_context(batch_id):
            return await self._run(batch_id)

    async def _run(self, batch_id: str) -> BatchSummary:
        logger.info(
            "Batch run started",
            workers=self._concurrency,
            chunk_size=self._chunk_size,
        )
        workers = [
            asyncio.create_task(
                self._worker(batch_id, index), name=f"batch-worker-{index}"
            )
            for index in range(self._concurrency)
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            # Claimed jobs would otherwise stay scheduled or inProgress for good.
            if not self._store.closed:
                await self._store.release(batch_id, self._clock())
            raise

        summary = await self._store.summary(batch_id)
        logger.info(
            "Batch run finished",
            succeeded=len(summary.succeeded),
            failed=len(summary.failed),
            cancelled=len(summary.cancelled),
            still_retrying=len(summary.still_retrying),
        )
        return summary

    async def _worker(self, batch_id: str, index: int) -> None:
        while await self._store.has_outstanding(batch_id):
            now = self._clock()
            chunk = await self._store.claim_chunk(batch_id, self._chunk_size, now)
            if chunk:
                await self._dispatch(batch_id, chunk, worker=index)
                continue
            await self._sleep(await self._idle_delay(batch_id, now))

    async def _idle_delay(self, batch_id: str, now: datetime) -> float:
        next_due = await self._store.next_due(batch_id)
        if next_due is None:
            return self._poll_interval
        until_due = (next_due - now).total_seconds()
        if until_due <= 0:
            return self._poll_interval
        return min(until_due, self._poll_interval)

    async def _dispatch(
        self, batch_id: str, chunk: Sequence[AssignmentJob], *, worker: int
    ) -> None:
        started = await self._store.mark_in_progress([job.id for job in chunk])
        if not started:
            return

        logger.debug(
            "Dispatching chunk",
            worker=worker,
            size=len(started),
        )
        try:
            results = await self._client.batch([assignment_request(job) for job in started])
        except Exception as exc:  # noqa: BLE001 - applied to every job in the chunk
            descriptor = describe_exception(exc)
            logger.error(
                "Chunk dispatch failed",
                size=len(started),
                error=descriptor.headline,
                detail=descriptor.detail,
            )
            await self._store.fail_chunk(
                [job.id for job in started], exc, self._clock(), self._policy
            )
            if isinstance(exc, UnauthorizedError):
                await self._refresh_credentials()
            return

        now = self._clock()
        unauthorized = False
        for job, result in zip(started, results, strict=True):
            if result.ok:
                await self._store.complete(job.id, now)
                continue
            if result.status == 409:
                await self._store.complete(job.id, now, note=ALREADY_EXISTS_NOTE)
                continue
            error = _result_error(result)
            unauthorized = unauthorized or isinstance(error, UnauthorizedError)
            await self._store.record_failure(job.id, error, now, self._policy)
        if unauthorized:
            await self._refresh_credentials()

    async def _refresh_credentials(self) -> None:
        if self._on_unauthorized is None:
            return
        logger.info("Refreshing credentials after unauthorized response")
        outcome = self._on_unauthorized()
        if inspect.isawaitable(outcome):
            await outcome


__all__ = [
    "ALREADY_EXISTS_NOTE",
    "BatchScheduler",
    "BatchTransport",
    "CredentialRefresh",
    "SleepFunc",
    "assignment_request",
]
