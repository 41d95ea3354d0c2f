"""Domain models for bulk app assignment jobs and their Graph payloads."""

from .application import MobileApp, MobileAppType
from .assignment import (
    AssignmentFilterMode,
    AssignmentIntent,
    AssignmentTarget,
    AssignmentTargetType,
    MobileAppAssignment,
)
from .common import GraphBaseModel, GraphResource
from .group import (
    ALL_DEVICES_GROUP_ID,
    ALL_USERS_GROUP_ID,
    DirectoryGroup,
    built_in_assignment_targets,
)
from .jobs import (
    AssignmentFilterRef,
    AssignmentJob,
    AssignmentMode,
    BatchStatistics,
    BatchSummary,
    JobFailure,
    JobPriority,
    JobStatus,
    SkippedAssignment,
    TERMINAL_STATUSES,
    build_assignment_payload,
    utc_now,
)
from .settings import (
    AndroidManagedStoreAppAssignmentSettings,
    AppAssignmentSettings,
    IOSLobAppAssignmentSettings,
    IOSVppAppAssignmentSettings,
    MacOSDmgAppAssignmentSettings,
    MacOSVppAppAssignmentSettings,
    SettingsPayload,
    WindowsAppAssignmentSettings,
    parse_settings,
    settings_applies_to,
    settings_for_app_type,
)

__all__ = [
    "ALL_DEVICES_GROUP_ID",
    "ALL_USERS_GROUP_ID",
    "AndroidManagedStoreAppAssignmentSettings",
    "AppAssignmentSettings",
    "AssignmentFilterMode",
    "AssignmentFilterRef",
    "AssignmentIntent",
    "AssignmentJob",
    "AssignmentMode",
    "AssignmentTarget",
    "AssignmentTargetType",
    "BatchStatistics",
    "BatchSummary",
    "DirectoryGroup",
    "GraphBaseModel",
    "GraphResource",
    "IOSLobAppAssignmentSettings",
    "IOSVppAppAssignmentSettings",
    "JobFailure",
    "JobPriority",
    "JobStatus",
    "MacOSDmgAppAssignmentSettings",
    "MacOSVppAppAssignmentSettings",
    "MobileApp",
    "MobileAppAssignment",
    "MobileAppType",
    "SettingsPayload",
    "SkippedAssignment",
    "TERMINAL_STATUSES",
    "WindowsAppAssignmentSettings",
    "build_assignment_payload",
    "built_in_assignment_targets",
    "parse_settings",
    "settings_applies_to",
    "settings_for_app_type",
    "utc_now",
]
