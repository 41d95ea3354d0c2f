"""Expand a bulk selection of apps and groups into assignment jobs."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Mapping, Sequence, TypeVar

from intune_bulk.data.models import (
    AppAssignmentSettings,
    AssignmentFilterMode,
    AssignmentFilterRef,
    AssignmentIntent,
    AssignmentJob,
    AssignmentMode,
    AssignmentTargetType,
    DirectoryGroup,
    JobPriority,
    MobileApp,
    settings_applies_to,
    settings_for_app_type,
    utc_now,
)
from intune_bulk.utils import get_logger


logger = get_logger(__name__)

T = TypeVar("T", MobileApp, DirectoryGroup)


class InvalidSelection(ValueError):
    """Raised when a bulk selection cannot produce any assignment jobs."""


@dataclass(frozen=True, slots=True)
class GroupAssignmentOverride:
    """Per-group adjustments layered over the operation's defaults."""

    group_id: str
    intent: AssignmentIntent | None = None
    mode: AssignmentMode = AssignmentMode.INCLUDE
    settings: AppAssignmentSettings | None = None
    filter_id: str | None = None
    filter_mode: AssignmentFilterMode = AssignmentFilterMode.INCLUDE


def _dedupe(items: Iterable[T]) -> list[T]:
    seen: set[str] = set()
    unique: list[T] = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


class AssignmentExpander:
    """Turns (apps x groups) plus overrides into fully resolved jobs.

    Expansion is purely combinatorial: the same inputs always produce the same
    jobs apart from generated ids and timestamps.
    """

    def __init__(
        self,
        *,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._clock = clock or utc_now

    def expand(
        self,
        resources: Sequence[MobileApp],
        groups: Sequence[DirectoryGroup],
        default_intent: AssignmentIntent,
        default_settings: AppAssignmentSettings | None = None,
        overrides: Mapping[str, GroupAssignmentOverride] | None = None,
        *,
        batch_id: str | None = None,
        priority: JobPriority = JobPriority.NORMAL,
        scheduled_for: datetime | None = None,
    ) -> list[AssignmentJob]:
        apps = _dedupe(resources)
        targets = _dedupe(groups)
        if not apps:
            raise InvalidSelection("Select at least one application to assign")
        if not targets:
            raise InvalidSelection("Select at least one group to assign to")

        overrides = overrides or {}
        batch = batch_id or self._id_factory()
        now = self._clock()

        jobs: list[AssignmentJob] = []
        for app in apps:
            for group in targets:
                override = overrides.get(group.id)
                intent = AssignmentIntent(
                    override.intent if override and override.intent else default_intent
                )
                jobs.append(
                    AssignmentJob(
                        id=self._id_factory(),
                        batch_id=batch,
                        resource_id=app.id,
                        resource_name=app.display_name,
                        resource_type=app.app_type,
                        group_id=group.id,
                        group_name=group.display_name,
                        target_type=self._resolve_target_type(group, override),
                        intent=intent,
                        priority=priority,
                        settings_payload=self._resolve_settings(
                            app, intent, default_settings, override
                        ),
                        filter=self._resolve_filter(override),
                        created_at=now,
                        modified_at=now,
                        scheduled_for=scheduled_for,
                    )
                )

        logger.info(
            "Expanded bulk selection",
            batch_id=batch,
            resources=len(apps),
            groups=len(targets),
            jobs=len(jobs),
        )
        return jobs

    @staticmethod
    def _resolve_target_type(
        group: DirectoryGroup, override: GroupAssignmentOverride | None
    ) -> AssignmentTargetType:
        target_type = group.assignment_target_type
        if (
            target_type is AssignmentTargetType.GROUP
            and override is not None
            and override.mode == AssignmentMode.EXCLUDE
        ):
            return AssignmentTargetType.EXCLUSION_GROUP
        return target_type

    @staticmethod
    def _resolve_settings(
        app: MobileApp,
        intent: AssignmentIntent,
        default_settings: AppAssignmentSettings | None,
        override: GroupAssignmentOverride | None,
    ) -> AppAssignmentSettings | None:
        # Graph treats any settings object on an uninstall as an override.
        if intent == AssignmentIntent.UNINSTALL:
            return None
        if override is not None and settings_applies_to(override.settings, app.app_type):
            return override.settings
        if settings_applies_to(default_settings, app.app_type):
            return default_settings
        return settings_for_app_type(app.app_type)

    @staticmethod
    def _resolve_filter(
        override: GroupAssignmentOverride | None,
    ) -> AssignmentFilterRef | None:
        if override is None or not override.filter_id or not override.filter_id.strip():
            return None
        return AssignmentFilterRef(
            filter_id=override.filter_id.strip(),
            mode=override.filter_mode,
        )


@dataclass(slots=True)
class BulkOperation:
    """The user's selection, consumed once to produce a batch of jobs."""

    resources: Sequence[MobileApp]
    groups: Sequence[DirectoryGroup]
    intent: AssignmentIntent
    settings: AppAssignmentSettings | None = None
    overrides: dict[str, GroupAssignmentOverride] = field(default_factory=dict)
    priority: JobPriority = JobPriority.NORMAL
    scheduled_for: datetime | None = None

    def add_override(self, override: GroupAssignmentOverride) -> None:
        self.overrides[override.group_id] = override

    def materialize(
        self, expander: AssignmentExpander, *, batch_id: str | None = None
    ) -> list[AssignmentJob]:
        return expander.expand(
            self.resources,
            self.groups,
            self.intent,
            self.settings,
            self.overrides,
            batch_id=batch_id,
            priority=self.priority,
            scheduled_for=self.scheduled_for,
        )


__all__ = [
    "AssignmentExpander",
    "BulkOperation",
    "GroupAssignmentOverride",
    "InvalidSelection",
]
