from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    return datetime.now(UTC)


class SchemaVersion(SQLModel, table=True):
    """Tracks the current schema version applied to the database."""

    key: str = Field(default="schema_version", primary_key=True)
    version: int = Field(index=True)
    applied_at: datetime = Field(default_factory=_utc_now, nullable=False)


class JobRecord(SQLModel, table=True):
    """Persisted assignment job, one row per (app, group, batch)."""

    __tablename__ = "assignment_jobs"
    __table_args__ = (
        UniqueConstraint("resource_id", "group_id", "batch_id", name="uq_job_pair"),
    )

    id: str = Field(primary_key=True)
    batch_id: str = Field(index=True)
    resource_id: str = Field(index=True)
    resource_name: str
    resource_type: str = Field(default="unknown")
    group_id: str = Field(index=True)
    group_name: str
    target_type: str
    intent: str
    status: str = Field(index=True)
    priority: int = Field(default=1, index=True)
    retry_count: int = Field(default=0)
    settings: dict | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    filter_id: str | None = Field(default=None)
    filter_mode: str | None = Field(default=None)
    error_category: str | None = Field(default=None)
    error_message: str | None = Field(default=None)
    failure_timestamp: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=_utc_now, nullable=False)
    modified_at: datetime = Field(default_factory=_utc_now, nullable=False)
    completed_at: datetime | None = Field(default=None)
    scheduled_for: datetime | None = Field(default=None, index=True)
    result_note: str | None = Field(default=None)


__all__ = ["JobRecord", "SchemaVersion"]
