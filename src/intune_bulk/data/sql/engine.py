from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from intune_bulk.config.settings import default_database_path
from intune_bulk.utils import get_logger

from .models import SchemaVersion


logger = get_logger(__name__)

SCHEMA_VERSION = 2
_SCHEMA_KEY = "schema_version"


class SchemaMismatchError(RuntimeError):
    """The job database was written by an incompatible engine version."""

    def __init__(self, found: int, expected: int = SCHEMA_VERSION) -> None:
        super().__init__(
            f"Job database schema version {found} does not match expected {expected}",
        )
        self.found = found
        self.expected = expected


@dataclass(slots=True)
class DatabaseConfig:
    """Location and SQLite tuning for the job history database."""

    path: Path = field(default_factory=default_database_path)
    echo: bool = False
    # Job writes come from a single store task; WAL keeps readers unblocked.
    pragmas: dict[str, str | int] = field(
        default_factory=lambda: {
            "journal_mode": "WAL",
            "synchronous": "NORMAL",
            "busy_timeout": 30_000,
            "foreign_keys": "ON",
        },
    )

    def uri(self) -> str:
        return f"sqlite:///{self.path}"


class DatabaseManager:
    """Owns the SQLModel engine and the schema version row."""

    def __init__(self, config: DatabaseConfig | None = None) -> None:
        self._config = config or DatabaseConfig()
        self._config.path.parent.mkdir(parents=True, exist_ok=True)
        self._engine: Engine | None = None

    @property
    def path(self) -> Path:
        return self._config.path

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            logger.debug("Opening job database", path=str(self._config.path))
            engine = create_engine(
                self._config.uri(),
                echo=self._config.echo,
                connect_args={"check_same_thread": False},
            )
            _install_pragmas(engine, self._config.pragmas)
            self._engine = engine
        return self._engine

    def ensure_schema(self) -> None:
        """Create missing tables and refuse databases from another schema version."""

        SQLModel.metadata.create_all(self.engine)
        with self.transaction() as session:
            record = session.get(SchemaVersion, _SCHEMA_KEY)
            if record is None:
                session.add(SchemaVersion(key=_SCHEMA_KEY, version=SCHEMA_VERSION))
                logger.info("Initialised job database", version=SCHEMA_VERSION)
            elif record.version != SCHEMA_VERSION:
                raise SchemaMismatchError(record.version)

    @contextmanager
    def session(self) -> Iterator[Session]:
        with Session(self.engine) as session:
            yield session

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on any error."""

        with Session(self.engine) as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None


def _install_pragmas(engine: Engine, pragmas: dict[str, str | int]) -> None:
    @event.listens_for(engine, "connect")
    def _apply(dbapi_connection, _connection_record) -> None:  # type: ignore[override]
        if not isinstance(dbapi_connection, sqlite3.Connection):
            return
        cursor = dbapi_connection.cursor()
        for name, value in pragmas.items():
            cursor.execute(f"PRAGMA {name}={value}")
        cursor.close()


__all__ = ["DatabaseConfig", "DatabaseManager", "SCHEMA_VERSION", "SchemaMismatchError"]
