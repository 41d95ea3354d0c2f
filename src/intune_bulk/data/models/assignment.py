from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import Field

from .common import GraphBaseModel, GraphResource


class AssignmentIntent(StrEnum):
    AVAILABLE = "available"
    REQUIRED = "required"
    UNINSTALL = "uninstall"
    AVAILABLE_WITHOUT_ENROLLMENT = "availableWithoutEnrollment"


class AssignmentFilterMode(StrEnum):
    """Filter mode for assignment targeting.

    - INCLUDE: Include only devices that match the filter
    - EXCLUDE: Exclude devices that match the filter
    """

    INCLUDE = "include"
    EXCLUDE = "exclude"


class AssignmentTargetType(StrEnum):
    GROUP = "group"
    EXCLUSION_GROUP = "exclusionGroup"
    ALL_USERS = "allUsers"
    ALL_LICENSED_USERS = "allLicensedUsers"
    ALL_DEVICES = "allDevices"
    CONFIGURATION_MANAGER_COLLECTION = "configurationManagerCollection"

    @property
    def odata_type(self) -> str:
        return _TARGET_ODATA_TYPES[self]

    @property
    def requires_group_id(self) -> bool:
        return self in {
            AssignmentTargetType.GROUP,
            AssignmentTargetType.EXCLUSION_GROUP,
        }

    @property
    def is_exclusion(self) -> bool:
        return self is AssignmentTargetType.EXCLUSION_GROUP

    @classmethod
    def from_odata_type(cls, odata_type: str) -> "AssignmentTargetType | None":
        for member, value in _TARGET_ODATA_TYPES.items():
            if value == odata_type:
                return member
        return None


ALL_DEVICES_GROUP_ID = "intune-all-devices"
ALL_USERS_GROUP_ID = "intune-all-users"

_TARGET_ODATA_TYPES: dict[AssignmentTargetType, str] = {
    AssignmentTargetType.GROUP: "#microsoft.graph.groupAssignmentTarget",
    AssignmentTargetType.EXCLUSION_GROUP: "#microsoft.graph.exclusionGroupAssignmentTarget",
    AssignmentTargetType.ALL_USERS: "#microsoft.graph.allUsersAssignmentTarget",
    AssignmentTargetType.ALL_LICENSED_USERS: "#microsoft.graph.allLicensedUsersAssignmentTarget",
    AssignmentTargetType.ALL_DEVICES: "#microsoft.graph.allDevicesAssignmentTarget",
    AssignmentTargetType.CONFIGURATION_MANAGER_COLLECTION: (
        "#microsoft.graph.configurationManagerCollectionAssignmentTarget"
    ),
}


class AssignmentTarget(GraphBaseModel):
    odata_type: str = Field(alias="@odata.type")
    group_id: str | None = Field(default=None, alias="groupId")
    collection_id: str | None = Field(default=None, alias="collectionId")
    assignment_filter_id: str | None = Field(
        default=None,
        alias="deviceAndAppManagementAssignmentFilterId",
    )
    assignment_filter_type: str | None = Field(
        default=None,
        alias="deviceAndAppManagementAssignmentFilterType",
    )

    @property
    def target_type(self) -> AssignmentTargetType | None:
        return AssignmentTargetType.from_odata_type(self.odata_type)

    @property
    def target_key(self) -> str:
        """Identity used to match an existing assignment against a new job."""

        target_type = self.target_type
        if target_type is AssignmentTargetType.ALL_DEVICES:
            return ALL_DEVICES_GROUP_ID
        if target_type in (
            AssignmentTargetType.ALL_USERS,
            AssignmentTargetType.ALL_LICENSED_USERS,
        ):
            return ALL_USERS_GROUP_ID
        return self.group_id or self.collection_id or self.odata_type


class MobileAppAssignment(GraphResource):
    """An assignment already present on a mobile app."""

    intent: str
    target: AssignmentTarget
    settings: dict[str, Any] | None = None


__all__ = [
    "ALL_DEVICES_GROUP_ID",
    "ALL_USERS_GROUP_ID",
    "AssignmentFilterMode",
    "AssignmentIntent",
    "AssignmentTarget",
    "AssignmentTargetType",
    "MobileAppAssignment",
]
