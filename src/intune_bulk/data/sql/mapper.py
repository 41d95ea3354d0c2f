from __future__ import annotations

from datetime import UTC, datetime

from intune_bulk.data.models import (
    AssignmentFilterMode,
    AssignmentFilterRef,
    AssignmentIntent,
    AssignmentJob,
    AssignmentTargetType,
    JobPriority,
    JobStatus,
    MobileAppType,
    parse_settings,
)

from .models import JobRecord


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on round-trip; stored values are always UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def job_to_record(job: AssignmentJob) -> JobRecord:
    return JobRecord(
        id=job.id,
        batch_id=job.batch_id,
        resource_id=job.resource_id,
        resource_name=job.resource_name,
        resource_type=str(job.resource_type),
        group_id=job.group_id,
        group_name=job.group_name,
        target_type=str(job.target_type),
        intent=str(job.intent),
        status=str(job.status),
        priority=int(job.priority),
        retry_count=job.retry_count,
        settings=job.settings_payload.to_graph() if job.settings_payload else None,
        filter_id=job.filter.filter_id if job.filter else None,
        filter_mode=str(job.filter.mode) if job.filter else None,
        error_category=job.error_category,
        error_message=job.error_message,
        failure_timestamp=job.failure_timestamp,
        created_at=job.created_at,
        modified_at=job.modified_at,
        completed_at=job.completed_at,
        scheduled_for=job.scheduled_for,
        result_note=job.result_note,
    )


def record_to_job(record: JobRecord) -> AssignmentJob:
    job_filter = None
    if record.filter_id:
        job_filter = AssignmentFilterRef(
            filter_id=record.filter_id,
            mode=AssignmentFilterMode(record.filter_mode or AssignmentFilterMode.INCLUDE),
        )
    return AssignmentJob(
        id=record.id,
        batch_id=record.batch_id,
        resource_id=record.resource_id,
        resource_name=record.resource_name,
        resource_type=MobileAppType(record.resource_type),
        group_id=record.group_id,
        group_name=record.group_name,
        target_type=AssignmentTargetType(record.target_type),
        intent=AssignmentIntent(record.intent),
        status=JobStatus(record.status),
        priority=JobPriority(record.priority),
        retry_count=record.retry_count,
        settings_payload=parse_settings(record.settings),
        filter=job_filter,
        error_category=record.error_category,
        error_message=record.error_message,
        failure_timestamp=_as_utc(record.failure_timestamp),
        created_at=_as_utc(record.created_at) or record.created_at,
        modified_at=_as_utc(record.modified_at) or record.modified_at,
        completed_at=_as_utc(record.completed_at),
        scheduled_for=_as_utc(record.scheduled_for),
        result_note=record.result_note,
    )


__all__ = ["job_to_record", "record_to_job"]
