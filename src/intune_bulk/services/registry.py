from __future__ import annotations

from dataclasses import dataclass

from intune_bulk.data.repositories import JobRepository
from intune_bulk.data.sql import DatabaseManager
from intune_bulk.graph.client import GraphClient

from .bulk import BulkAssignmentService
from .job_store import JobStateStore


@dataclass(slots=True)
class ServiceRegistry:
    """Container for the services wired up at startup."""

    client: GraphClient
    store: JobStateStore
    bulk: BulkAssignmentService
    repository: JobRepository | None = None
    database: DatabaseManager | None = None

    async def aclose(self) -> None:
        await self.bulk.close()
        await self.client.close()
        if self.database is not None:
            self.database.dispose()


__all__ = ["ServiceRegistry"]
