"""Bulk app assignment engine for Microsoft Intune."""

from __future__ import annotations

from intune_bulk.bootstrap import build_services
from intune_bulk.config import EngineSettings, RetryPolicy, SettingsManager
from intune_bulk.services import BulkAssignmentService, BulkOperation

__version__ = "0.1.0"

__all__ = [
    "BulkAssignmentService",
    "BulkOperation",
    "EngineSettings",
    "RetryPolicy",
    "SettingsManager",
    "build_services",
    "__version__",
]
