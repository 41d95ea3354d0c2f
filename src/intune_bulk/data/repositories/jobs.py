from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import delete, func
from sqlmodel import select

from intune_bulk.data.models import TERMINAL_STATUSES, AssignmentJob
from intune_bulk.data.sql import DatabaseManager, JobRecord
from intune_bulk.data.sql.mapper import job_to_record, record_to_job
from intune_bulk.utils import get_logger


logger = get_logger(__name__)

_TERMINAL_VALUES = [str(status) for status in TERMINAL_STATUSES]


class JobRepository:
    """SQLite-backed history of assignment jobs."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def upsert(self, job: AssignmentJob) -> None:
        self.upsert_many([job])

    def upsert_many(self, jobs: Iterable[AssignmentJob]) -> None:
        records = [job_to_record(job) for job in jobs]
        if not records:
            return
        with self._db.transaction() as session:
            for record in records:
                session.merge(record)

    def get(self, job_id: str) -> AssignmentJob | None:
        with self._db.session() as session:
            record = session.get(JobRecord, job_id)
            return record_to_job(record) if record else None

    def list_for_batch(self, batch_id: str) -> list[AssignmentJob]:
        with self._db.session() as session:
            stmt = (
                select(JobRecord)
                .where(JobRecord.batch_id == batch_id)
                .order_by(JobRecord.created_at)
            )
            return [record_to_job(record) for record in session.exec(stmt).all()]

    def list_non_terminal(self) -> list[AssignmentJob]:
        with self._db.session() as session:
            stmt = (
                select(JobRecord)
                .where(JobRecord.status.not_in(_TERMINAL_VALUES))  # type: ignore[attr-defined]
                .order_by(JobRecord.created_at)
            )
            return [record_to_job(record) for record in session.exec(stmt).all()]

    def list_batch_ids(self) -> list[str]:
        with self._db.session() as session:
            stmt = select(JobRecord.batch_id).distinct()
            return list(session.exec(stmt).all())

    def count(self, *, batch_id: str | None = None) -> int:
        with self._db.session() as session:
            stmt = select(func.count(JobRecord.id))
            if batch_id is not None:
                stmt = stmt.where(JobRecord.batch_id == batch_id)
            return session.exec(stmt).one()

    def delete_batch(self, batch_id: str) -> int:
        with self._db.transaction() as session:
            result = session.execute(
                delete(JobRecord).where(JobRecord.batch_id == batch_id)
            )
            removed = result.rowcount or 0
        logger.info("Deleted batch history", batch_id=batch_id, removed=removed)
        return removed


__all__ = ["JobRepository"]
