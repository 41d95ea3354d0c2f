"""SQLModel schema and database management."""

from .engine import SCHEMA_VERSION, DatabaseConfig, DatabaseManager, SchemaMismatchError
from .models import JobRecord, SchemaVersion

__all__ = [
    "DatabaseConfig",
    "DatabaseManager",
    "JobRecord",
    "SCHEMA_VERSION",
    "SchemaMismatchError",
    "SchemaVersion",
]
