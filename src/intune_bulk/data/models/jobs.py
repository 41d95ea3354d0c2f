from __future__ import annotations

import dataclasses
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum, StrEnum
from typing import Any, Iterable

from .application import MobileAppType
from .assignment import AssignmentFilterMode, AssignmentIntent, AssignmentTargetType
from .settings import AppAssignmentSettings


MOBILE_APP_ASSIGNMENT_ODATA_TYPE = "#microsoft.graph.mobileAppAssignment"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(StrEnum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "inProgress"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class JobPriority(IntEnum):
    LOW = 0
    NORMAL = 1
    HIGH = 2
    CRITICAL = 3


class AssignmentMode(StrEnum):
    """Whether a selected group receives the app or is excluded from it."""

    INCLUDE = "include"
    EXCLUDE = "exclude"


@dataclass(frozen=True, slots=True)
class AssignmentFilterRef:
    filter_id: str
    mode: AssignmentFilterMode = AssignmentFilterMode.INCLUDE


@dataclass(frozen=True, slots=True)
class AssignmentJob:
    """One (application, group) assignment moving through the batch lifecycle.

    Jobs are immutable; the job store replaces a record on every transition so
    observers never see a half-updated job.
    """

    id: str
    batch_id: str
    resource_id: str
    resource_name: str
    group_id: str
    group_name: str
    target_type: AssignmentTargetType
    intent: AssignmentIntent
    resource_type: MobileAppType = MobileAppType.UNKNOWN
    status: JobStatus = JobStatus.PENDING
    priority: JobPriority = JobPriority.NORMAL
    retry_count: int = 0
    settings_payload: AppAssignmentSettings | None = None
    filter: AssignmentFilterRef | None = None
    error_category: str | None = None
    error_message: str | None = None
    failure_timestamp: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    modified_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    scheduled_for: datetime | None = None
    # Set when Graph reported the assignment as already present.
    result_note: str | None = None

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            raise ValueError("retry_count cannot be negative")
        if self.intent == AssignmentIntent.UNINSTALL and self.settings_payload is not None:
            raise ValueError("Uninstall assignments cannot carry settings")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def pair_key(self) -> tuple[str, str, str]:
        return (self.resource_id, self.group_id, self.batch_id)

    def is_due(self, now: datetime) -> bool:
        return self.scheduled_for is None or self.scheduled_for <= now

    def evolve(self, **changes: Any) -> "AssignmentJob":
        return dataclasses.replace(self, **changes)


def build_assignment_payload(job: AssignmentJob) -> dict[str, Any]:
    """Render the Graph ``mobileAppAssignment`` body for a job."""

    target_type = AssignmentTargetType(job.target_type)
    target: dict[str, Any] = {"@odata.type": target_type.odata_type}
    if target_type.requires_group_id:
        target["groupId"] = job.group_id
    elif target_type is AssignmentTargetType.CONFIGURATION_MANAGER_COLLECTION:
        target["collectionId"] = job.group_id
    if job.filter is not None and not target_type.is_exclusion:
        target["deviceAndAppManagementAssignmentFilterId"] = job.filter.filter_id
        target["deviceAndAppManagementAssignmentFilterType"] = str(job.filter.mode)

    payload: dict[str, Any] = {
        "@odata.type": MOBILE_APP_ASSIGNMENT_ODATA_TYPE,
        "intent": str(job.intent),
        "target": target,
    }
    if job.intent != AssignmentIntent.UNINSTALL and job.settings_payload is not None:
        payload["settings"] = job.settings_payload.to_graph()
    return payload


@dataclass(frozen=True, slots=True)
class JobFailure:
    job: AssignmentJob
    reason: str


@dataclass(frozen=True, slots=True)
class SkippedAssignment:
    """A selected pair that was not submitted because it already exists."""

    resource_id: str
    resource_name: str
    group_id: str
    group_name: str
    reason: str = "Assignment already exists"


@dataclass(slots=True)
class BatchSummary:
    batch_id: str
    succeeded: list[AssignmentJob] = field(default_factory=list)
    failed: list[JobFailure] = field(default_factory=list)
    still_retrying: list[AssignmentJob] = field(default_factory=list)
    cancelled: list[AssignmentJob] = field(default_factory=list)
    pending: list[AssignmentJob] = field(default_factory=list)
    skipped: list[SkippedAssignment] = field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            len(self.succeeded)
            + len(self.failed)
            + len(self.still_retrying)
            + len(self.cancelled)
            + len(self.pending)
        )

    @property
    def is_complete(self) -> bool:
        return not self.still_retrying and not self.pending


@dataclass(frozen=True, slots=True)
class BatchStatistics:
    batch_id: str | None
    counts: dict[JobStatus, int]

    @classmethod
    def from_jobs(
        cls, jobs: Iterable[AssignmentJob], batch_id: str | None = None
    ) -> "BatchStatistics":
        counter = Counter(job.status for job in jobs)
        return cls(
            batch_id=batch_id,
            counts={status: counter.get(status, 0) for status in JobStatus},
        )

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def completed(self) -> int:
        return self.counts.get(JobStatus.COMPLETED, 0)

    @property
    def failed(self) -> int:
        return self.counts.get(JobStatus.FAILED, 0)

    @property
    def success_rate(self) -> float:
        finished = self.completed + self.failed
        if finished == 0:
            return 0.0
        return self.completed / finished


__all__ = [
    "AssignmentFilterRef",
    "AssignmentJob",
    "AssignmentMode",
    "BatchStatistics",
    "BatchSummary",
    "JobFailure",
    "JobPriority",
    "JobStatus",
    "MOBILE_APP_ASSIGNMENT_ODATA_TYPE",
    "SkippedAssignment",
    "TERMINAL_STATUSES",
    "build_assignment_payload",
    "utc_now",
]
