"""Configuration helpers for the bulk assignment engine."""

from .settings import (
    DEFAULT_GRAPH_SCOPES,
    GRAPH_BATCH_LIMIT,
    EngineSettings,
    RetryPolicy,
    SettingsManager,
)

__all__ = [
    "DEFAULT_GRAPH_SCOPES",
    "GRAPH_BATCH_LIMIT",
    "EngineSettings",
    "RetryPolicy",
    "SettingsManager",
]
