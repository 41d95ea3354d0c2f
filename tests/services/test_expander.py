from __future__ import annotations

import itertools

import pytest

from intune_bulk.data.models import (
    ALL_DEVICES_GROUP_ID,
    AssignmentFilterMode,
    AssignmentIntent,
    AssignmentMode,
    AssignmentTargetType,
    IOSVppAppAssignmentSettings,
    JobPriority,
    JobStatus,
    MobileAppType,
    WindowsAppAssignmentSettings,
    built_in_assignment_targets,
)
from intune_bulk.services.expander import (
    AssignmentExpander,
    BulkOperation,
    GroupAssignmentOverride,
    InvalidSelection,
)
from tests.factories import make_app, make_group
from tests.stubs import START


def _expander() -> AssignmentExpander:
    counter = itertools.count(1)
    return AssignmentExpander(id_factory=lambda: f"id-{next(counter)}", clock=lambda: START)


def test_three_apps_two_groups_required() -> None:
    apps = [make_app(f"app-{index}") for index in range(3)]
    groups = [make_group("g1"), make_group("g2")]

    jobs = _expander().expand(apps, groups, AssignmentIntent.REQUIRED)

    assert len(jobs) == 6
    assert {(job.resource_id, job.group_id) for job in jobs} == {
        (app.id, group.id) for app in apps for group in groups
    }
    assert len({job.batch_id for job in jobs}) == 1
    for job in jobs:
        assert job.intent == AssignmentIntent.REQUIRED
        assert job.status == JobStatus.PENDING
        assert job.retry_count == 0
        assert job.target_type is AssignmentTargetType.GROUP
        assert isinstance(job.settings_payload, WindowsAppAssignmentSettings)
        assert job.created_at == START


def test_uninstall_never_carries_settings_even_with_override() -> None:
    apps = [make_app("app-1")]
    groups = [make_group("g1"), make_group("g2")]
    overrides = {
        "g1": GroupAssignmentOverride(
            group_id="g1",
            settings=WindowsAppAssignmentSettings(notifications="hideAll"),
        )
    }

    jobs = _expander().expand(
        apps,
        groups,
        AssignmentIntent.UNINSTALL,
        WindowsAppAssignmentSettings(),
        overrides,
    )

    assert [job.settings_payload for job in jobs] == [None, None]


def test_override_intent_applies_to_its_group_only() -> None:
    apps = [make_app("app-1")]
    groups = [make_group("g1"), make_group("g2")]
    overrides = {
        "g2": GroupAssignmentOverride(group_id="g2", intent=AssignmentIntent.UNINSTALL)
    }

    jobs = {job.group_id: job for job in _expander().expand(
        apps, groups, AssignmentIntent.AVAILABLE, overrides=overrides
    )}

    assert jobs["g1"].intent == AssignmentIntent.AVAILABLE
    assert jobs["g1"].settings_payload is not None
    assert jobs["g2"].intent == AssignmentIntent.UNINSTALL
    assert jobs["g2"].settings_payload is None


def test_inapplicable_settings_fall_back_to_type_default() -> None:
    apps = [
        make_app("vpp", app_type=MobileAppType.IOS_VPP),
        make_app("web", app_type=MobileAppType.WEB),
    ]

    jobs = {job.resource_id: job for job in _expander().expand(
        apps,
        [make_group("g1")],
        AssignmentIntent.REQUIRED,
        WindowsAppAssignmentSettings(),
    )}

    assert isinstance(jobs["vpp"].settings_payload, IOSVppAppAssignmentSettings)
    assert jobs["web"].settings_payload is None


def test_exclude_mode_and_filters_from_override() -> None:
    overrides = {
        "g1": GroupAssignmentOverride(group_id="g1", mode=AssignmentMode.EXCLUDE),
        "g2": GroupAssignmentOverride(
            group_id="g2",
            filter_id=" filter-1 ",
            filter_mode=AssignmentFilterMode.EXCLUDE,
        ),
        "g3": GroupAssignmentOverride(group_id="g3", filter_id="   "),
    }

    jobs = {job.group_id: job for job in _expander().expand(
        [make_app("app-1")],
        [make_group("g1"), make_group("g2"), make_group("g3")],
        AssignmentIntent.REQUIRED,
        overrides=overrides,
    )}

    assert jobs["g1"].target_type is AssignmentTargetType.EXCLUSION_GROUP
    assert jobs["g2"].target_type is AssignmentTargetType.GROUP
    assert jobs["g2"].filter is not None
    assert jobs["g2"].filter.filter_id == "filter-1"
    assert jobs["g2"].filter.mode == AssignmentFilterMode.EXCLUDE
    assert jobs["g3"].filter is None


def test_built_in_targets_map_to_tenant_wide_types() -> None:
    jobs = {job.group_id: job for job in _expander().expand(
        [make_app("app-1")],
        built_in_assignment_targets(),
        AssignmentIntent.REQUIRED,
        overrides={
            ALL_DEVICES_GROUP_ID: GroupAssignmentOverride(
                group_id=ALL_DEVICES_GROUP_ID, mode=AssignmentMode.EXCLUDE
            )
        },
    )}

    assert jobs["intune-all-devices"].target_type is AssignmentTargetType.ALL_DEVICES
    assert jobs["intune-all-users"].target_type is AssignmentTargetType.ALL_USERS


def test_duplicate_inputs_do_not_repeat_pairs() -> None:
    app = make_app("app-1")
    group = make_group("g1")

    jobs = _expander().expand(
        [app, app, make_app("app-2")],
        [group, make_group("g1", name="Renamed")],
        AssignmentIntent.AVAILABLE,
    )

    assert sorted((job.resource_id, job.group_id) for job in jobs) == [
        ("app-1", "g1"),
        ("app-2", "g1"),
    ]
    assert jobs[0].group_name == "Group g1"


def test_expansion_is_stable_apart_from_ids() -> None:
    apps = [make_app("app-1"), make_app("app-2")]
    groups = [make_group("g1")]

    first = _expander().expand(apps, groups, AssignmentIntent.REQUIRED, batch_id="b")
    second = _expander().expand(apps, groups, AssignmentIntent.REQUIRED, batch_id="b")

    assert first == second


@pytest.mark.parametrize(
    ("apps", "groups"),
    [([], [make_group("g1")]), ([make_app("app-1")], [])],
)
def test_empty_selection_is_rejected(apps, groups) -> None:
    with pytest.raises(InvalidSelection):
        _expander().expand(apps, groups, AssignmentIntent.REQUIRED)


def test_bulk_operation_materialises_with_priority_and_schedule() -> None:
    operation = BulkOperation(
        resources=[make_app("app-1")],
        groups=[make_group("g1"), make_group("g2")],
        intent=AssignmentIntent.REQUIRED,
        priority=JobPriority.HIGH,
        scheduled_for=START,
    )
    operation.add_override(
        GroupAssignmentOverride(group_id="g2", intent=AssignmentIntent.AVAILABLE)
    )

    jobs = operation.materialize(_expander(), batch_id="batch-7")

    assert {job.batch_id for job in jobs} == {"batch-7"}
    assert all(job.priority == JobPriority.HIGH for job in jobs)
    assert all(job.scheduled_for == START for job in jobs)
    assert [job.intent for job in jobs] == [
        AssignmentIntent.REQUIRED,
        AssignmentIntent.AVAILABLE,
    ]
