from __future__ import annotations

from pydantic import AliasChoices, Field

from .assignment import ALL_DEVICES_GROUP_ID, ALL_USERS_GROUP_ID, AssignmentTargetType
from .common import GraphResource


class DirectoryGroup(GraphResource):
    display_name: str = Field(
        alias="displayName",
        validation_alias=AliasChoices("displayName", "name"),
    )
    description: str | None = None
    security_enabled: bool | None = Field(default=None, alias="securityEnabled")
    group_types: list[str] | None = Field(default=None, alias="groupTypes")

    @property
    def assignment_target_type(self) -> AssignmentTargetType:
        if self.id == ALL_DEVICES_GROUP_ID:
            return AssignmentTargetType.ALL_DEVICES
        if self.id == ALL_USERS_GROUP_ID:
            return AssignmentTargetType.ALL_USERS
        return AssignmentTargetType.GROUP


_BUILT_IN_TARGETS = (
    DirectoryGroup(
        id=ALL_DEVICES_GROUP_ID,
        display_name="All Devices",
        description="Built-in Intune target covering every enrolled device",
    ),
    DirectoryGroup(
        id=ALL_USERS_GROUP_ID,
        display_name="All Users",
        description="Built-in Intune target covering every licensed user",
    ),
)


def built_in_assignment_targets() -> list[DirectoryGroup]:
    """Pseudo-groups that map to the tenant-wide Intune assignment targets."""

    return list(_BUILT_IN_TARGETS)


__all__ = [
    "ALL_DEVICES_GROUP_ID",
    "ALL_USERS_GROUP_ID",
    "DirectoryGroup",
    "built_in_assignment_targets",
]
