"""Intent compatibility rules and conflict detection for app assignments."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Iterable, Mapping, Sequence

from intune_bulk.data.models import (
    AssignmentIntent,
    AssignmentJob,
    AssignmentTargetType,
    MobileAppAssignment,
    MobileAppType,
)


_ENROLLMENT_REQUIRED_TYPES = frozenset(
    {
        MobileAppType.IOS_VPP,
        MobileAppType.MACOS_VPP,
        MobileAppType.MANAGED_IOS_STORE,
        MobileAppType.MANAGED_MACOS_STORE,
        MobileAppType.IOS_LOB,
        MobileAppType.MACOS_LOB,
        MobileAppType.MACOS_DMG,
        MobileAppType.MACOS_PKG,
    }
)
_ENROLLMENT_OPTIONAL_TYPES = frozenset(
    {MobileAppType.WEB, MobileAppType.WINDOWS_WEB, MobileAppType.IOS_STORE}
)
_NOT_UNINSTALLABLE_TYPES = frozenset(
    {MobileAppType.WEB, MobileAppType.WINDOWS_WEB, MobileAppType.IOS_STORE}
)
_DEVICE_TARGETS = frozenset(
    {
        AssignmentTargetType.ALL_DEVICES,
        AssignmentTargetType.GROUP,
        AssignmentTargetType.EXCLUSION_GROUP,
    }
)


def _supported_by_app_type(intent: AssignmentIntent, app_type: MobileAppType) -> bool:
    match intent:
        case AssignmentIntent.AVAILABLE | AssignmentIntent.REQUIRED:
            return True
        case AssignmentIntent.AVAILABLE_WITHOUT_ENROLLMENT:
            if app_type in _ENROLLMENT_REQUIRED_TYPES:
                return False
            return app_type in _ENROLLMENT_OPTIONAL_TYPES
        case AssignmentIntent.UNINSTALL:
            return app_type not in _NOT_UNINSTALLABLE_TYPES
    return False


def _supported_by_target(
    intent: AssignmentIntent,
    app_type: MobileAppType,
    target_type: AssignmentTargetType,
) -> bool:
    if intent == AssignmentIntent.AVAILABLE:
        if target_type is AssignmentTargetType.ALL_DEVICES:
            return app_type.is_vpp
        return True
    if intent == AssignmentIntent.AVAILABLE_WITHOUT_ENROLLMENT:
        return target_type not in _DEVICE_TARGETS
    return True


def is_intent_valid(
    intent: AssignmentIntent | str,
    app_type: MobileAppType | str,
    target_type: AssignmentTargetType | str,
) -> bool:
    resolved_intent = AssignmentIntent(intent)
    resolved_app = MobileAppType(app_type)
    resolved_target = AssignmentTargetType(target_type)
    if not _supported_by_app_type(resolved_intent, resolved_app):
        return False
    return _supported_by_target(resolved_intent, resolved_app, resolved_target)


def valid_intents(
    app_type: MobileAppType | str,
    target_type: AssignmentTargetType | str,
) -> list[AssignmentIntent]:
    return [
        intent
        for intent in AssignmentIntent
        if is_intent_valid(intent, app_type, target_type)
    ]


def validation_message(
    intent: AssignmentIntent | str,
    app_type: MobileAppType | str,
    target_type: AssignmentTargetType | str,
) -> str | None:
    """Explain why an intent cannot be used, or ``None`` when it can."""

    resolved_intent = AssignmentIntent(intent)
    resolved_app = MobileAppType(app_type)
    resolved_target = AssignmentTargetType(target_type)
    if is_intent_valid(resolved_intent, resolved_app, resolved_target):
        return None

    if not _supported_by_app_type(resolved_intent, resolved_app):
        if resolved_intent == AssignmentIntent.AVAILABLE_WITHOUT_ENROLLMENT:
            if resolved_app.is_vpp:
                return (
                    "VPP apps require device enrollment for licensing and cannot be "
                    "assigned as 'Available without enrollment'"
                )
            if resolved_app in {
                MobileAppType.MANAGED_IOS_STORE,
                MobileAppType.MANAGED_MACOS_STORE,
            }:
                return "Managed store apps require device enrollment"
            if resolved_app in _ENROLLMENT_REQUIRED_TYPES:
                return "Line-of-business apps require device enrollment for installation"
            return f"{resolved_app.value} apps do not support 'Available without enrollment'"
        if resolved_intent == AssignmentIntent.UNINSTALL:
            if resolved_app.is_web:
                return "Web apps cannot be uninstalled as they are just web links"
            return "Built-in store apps cannot be uninstalled via Intune"

    if resolved_intent == AssignmentIntent.AVAILABLE:
        return (
            "'Available' intent is not supported for 'All Devices' with non-VPP apps. "
            "Use 'Required' for device-wide deployments"
        )
    if resolved_intent == AssignmentIntent.AVAILABLE_WITHOUT_ENROLLMENT:
        return (
            "'Available without enrollment' cannot be used with device-based targets "
            "as devices must be enrolled to receive assignments"
        )
    return f"{resolved_intent.value} is not supported for {resolved_target.value} targets"


class ConflictSeverity(StrEnum):
    CRITICAL = "critical"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class IntentConflict:
    resource_id: str
    resource_name: str
    group_id: str
    group_name: str
    intents: tuple[AssignmentIntent, ...]
    severity: ConflictSeverity
    resolution: str


def _classify(intents: set[AssignmentIntent]) -> tuple[ConflictSeverity, str] | None:
    if AssignmentIntent.REQUIRED in intents and AssignmentIntent.UNINSTALL in intents:
        return (
            ConflictSeverity.CRITICAL,
            "Remove either the Required or the Uninstall assignment for this group",
        )
    if (
        AssignmentIntent.AVAILABLE_WITHOUT_ENROLLMENT in intents
        and AssignmentIntent.REQUIRED in intents
    ):
        return (
            ConflictSeverity.CRITICAL,
            "Required assignments need enrollment; drop 'Available without enrollment'",
        )
    if AssignmentIntent.AVAILABLE in intents and AssignmentIntent.REQUIRED in intents:
        return (
            ConflictSeverity.WARNING,
            "Required already installs the app; the Available assignment is redundant",
        )
    return None


def find_intent_conflicts(
    jobs: Sequence[AssignmentJob],
    existing: Mapping[str, Iterable[MobileAppAssignment]] | None = None,
) -> list[IntentConflict]:
    """Detect contradictory intents for the same app and group.

    ``existing`` maps an app id to the assignments Graph already holds for it.
    """

    existing = existing or {}
    grouped: dict[tuple[str, str], set[AssignmentIntent]] = {}
    labels: dict[tuple[str, str], tuple[str, str]] = {}

    for job in jobs:
        key = (job.resource_id, job.group_id)
        grouped.setdefault(key, set()).add(AssignmentIntent(job.intent))
        labels.setdefault(key, (job.resource_name, job.group_name))

    for resource_id, assignments in existing.items():
        for assignment in assignments:
            key = (resource_id, assignment.target.target_key)
            if key not in grouped:
                continue
            try:
                grouped[key].add(AssignmentIntent(assignment.intent))
            except ValueError:
                continue

    conflicts: list[IntentConflict] = []
    for key, intents in grouped.items():
        if len(intents) < 2:
            continue
        classified = _classify(intents)
        if classified is None:
            continue
        severity, resolution = classified
        resource_name, group_name = labels[key]
        conflicts.append(
            IntentConflict(
                resource_id=key[0],
                resource_name=resource_name,
                group_id=key[1],
                group_name=group_name,
                intents=tuple(sorted(intents)),
                severity=severity,
                resolution=resolution,
            )
        )
    return conflicts


__all__ = [
    "ConflictSeverity",
    "IntentConflict",
    "find_intent_conflicts",
    "is_intent_valid",
    "valid_intents",
    "validation_message",
]
