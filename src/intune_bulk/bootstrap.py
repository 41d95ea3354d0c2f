from __future__ import annotations

from typing import Callable

from intune_bulk.auth import TokenProvider
from intune_bulk.config import EngineSettings, SettingsManager
from intune_bulk.data.repositories import JobRepository
from intune_bulk.data.sql import DatabaseConfig, DatabaseManager
from intune_bulk.graph.client import GraphClient, GraphClientConfig
from intune_bulk.services import BulkAssignmentService, JobStateStore, ServiceRegistry
from intune_bulk.services.scheduler import CredentialRefresh
from intune_bulk.utils import get_logger


logger = get_logger(__name__)


def build_services(
    token_provider: TokenProvider,
    settings: EngineSettings | None = None,
    *,
    persist: bool = True,
    on_unauthorized: CredentialRefresh | None = None,
    client_factory: Callable[[TokenProvider, GraphClientConfig], GraphClient] | None = None,
) -> ServiceRegistry:
    """Wire the Graph client, job store and bulk service from settings.

    Args:
        token_provider: Callable returning a bearer token for the given scopes.
        settings: Engine settings; loaded through :class:`SettingsManager` when omitted.
        persist: Keep job history in the SQLite database at ``settings.database_path``.
        on_unauthorized: Hook awaited after Graph rejects a token.
        client_factory: Override used to construct the Graph client.

    Returns:
        ServiceRegistry holding the client, the store and the bulk service.
    """

    settings = settings or SettingsManager().load()
    graph_config = GraphClientConfig.from_settings(settings)
    factory = client_factory or GraphClient
    client = factory(token_provider, graph_config)

    repository: JobRepository | None = None
    db: DatabaseManager | None = None
    if persist:
        db = DatabaseManager(DatabaseConfig(path=settings.database_path))
        db.ensure_schema()
        repository = JobRepository(db)

    store = JobStateStore(repository)
    bulk = BulkAssignmentService(
        client,
        store,
        settings,
        on_unauthorized=on_unauthorized,
    )
    logger.info(
        "Bulk assignment services initialised",
        persist=persist,
        max_concurrency=settings.max_concurrency,
        max_batch_size=settings.max_batch_size,
    )
    return ServiceRegistry(
        client=client,
        store=store,
        bulk=bulk,
        repository=repository,
        database=db,
    )


__all__ = ["build_services"]
