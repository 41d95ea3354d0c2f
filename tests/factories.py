from __future__ import annotations

import time
from datetime import datetime
from typing import Any

from intune_bulk.auth.types import AccessToken
from intune_bulk.data.models import (
    AssignmentIntent,
    AssignmentJob,
    AssignmentTargetType,
    DirectoryGroup,
    JobPriority,
    JobStatus,
    MobileApp,
    MobileAppType,
    utc_now,
)


def make_access_token(token: str = "token", expires_in: int = 3600) -> AccessToken:
    """Return a short-lived access token suitable for Graph client tests."""

    return AccessToken(token=token, expires_on=int(time.time()) + expires_in)


def make_app(
    app_id: str,
    *,
    name: str | None = None,
    app_type: MobileAppType = MobileAppType.WIN32_LOB,
    **overrides: Any,
) -> MobileApp:
    """Create a MobileApp from a Graph-shaped payload."""

    payload: dict[str, Any] = {
        "id": app_id,
        "displayName": name or f"App {app_id}",
        "@odata.type": app_type.odata_type,
    }
    payload.update(overrides)
    return MobileApp.from_graph(payload)


def make_group(group_id: str, *, name: str | None = None) -> DirectoryGroup:
    return DirectoryGroup.from_graph(
        {"id": group_id, "displayName": name or f"Group {group_id}"}
    )


def make_job(
    job_id: str,
    *,
    batch_id: str = "batch-1",
    resource_id: str | None = None,
    group_id: str | None = None,
    intent: AssignmentIntent = AssignmentIntent.REQUIRED,
    status: JobStatus = JobStatus.PENDING,
    priority: JobPriority = JobPriority.NORMAL,
    created_at: datetime | None = None,
    **overrides: Any,
) -> AssignmentJob:
    """Build a job without going through the expander."""

    created = created_at or utc_now()
    return AssignmentJob(
        id=job_id,
        batch_id=batch_id,
        resource_id=resource_id or f"app-{job_id}",
        resource_name=f"App {job_id}",
        group_id=group_id or f"group-{job_id}",
        group_name=f"Group {job_id}",
        target_type=overrides.pop("target_type", AssignmentTargetType.GROUP),
        intent=intent,
        status=status,
        priority=priority,
        created_at=created,
        modified_at=created,
        **overrides,
    )
