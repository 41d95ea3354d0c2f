"""Bulk assignment service layer."""

from .base import EventHook, JobChangeEvent
from .bulk import BulkAssignmentService
from .expander import (
    AssignmentExpander,
    BulkOperation,
    GroupAssignmentOverride,
    InvalidSelection,
)
from .job_store import InvalidTransitionError, JobStateStore
from .registry import ServiceRegistry
from .scheduler import BatchScheduler
from .validation import (
    ConflictSeverity,
    IntentConflict,
    find_intent_conflicts,
    is_intent_valid,
    valid_intents,
    validation_message,
)

__all__ = [
    "AssignmentExpander",
    "BatchScheduler",
    "BulkAssignmentService",
    "BulkOperation",
    "ConflictSeverity",
    "EventHook",
    "GroupAssignmentOverride",
    "IntentConflict",
    "InvalidSelection",
    "InvalidTransitionError",
    "JobChangeEvent",
    "JobStateStore",
    "ServiceRegistry",
    "find_intent_conflicts",
    "is_intent_valid",
    "valid_intents",
    "validation_message",
]
