"""Per-platform app assignment settings sent alongside an assignment.

Each variant carries the defaults validated against the Intune portal. On the
wire, fields still at their default are omitted except for the handful Graph
requires to be present (``useDeviceLicensing`` for VPP apps, for example).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import Field, TypeAdapter

from .application import MobileAppType
from .common import GraphBaseModel


class AppAssignmentSettings(GraphBaseModel):
    """Common behaviour of every settings variant."""

    always_serialized: ClassVar[tuple[str, ...]] = ()
    applies_to: ClassVar[frozenset[MobileAppType]] = frozenset()

    odata_type: str = Field(alias="@odata.type")

    def to_graph(self) -> dict[str, Any]:
        full = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        changed = self.model_dump(
            mode="json",
            by_alias=True,
            exclude_none=True,
            exclude_defaults=True,
        )
        payload: dict[str, Any] = {"@odata.type": self.odata_type}
        for name in self.always_serialized:
            alias = type(self).model_fields[name].alias or name
            if alias in full:
                payload[alias] = full[alias]
        # Nested objects that were set explicitly are sent whole.
        for key in changed:
            payload.setdefault(key, full[key])
        return payload


class IOSVppAppAssignmentSettings(AppAssignmentSettings):
    always_serialized: ClassVar[tuple[str, ...]] = ("use_device_licensing",)
    applies_to: ClassVar[frozenset[MobileAppType]] = frozenset({MobileAppType.IOS_VPP})

    odata_type: Literal["#microsoft.graph.iosVppAppAssignmentSettings"] = Field(
        default="#microsoft.graph.iosVppAppAssignmentSettings",
        alias="@odata.type",
    )
    use_device_licensing: bool = Field(default=True, alias="useDeviceLicensing")
    vpn_configuration_id: str | None = Field(default=None, alias="vpnConfigurationId")
    uninstall_on_device_removal: bool = Field(
        default=False, alias="uninstallOnDeviceRemoval"
    )
    is_removable: bool = Field(default=True, alias="isRemovable")
    prevent_managed_app_backup: bool = Field(
        default=False, alias="preventManagedAppBackup"
    )
    prevent_auto_app_update: bool = Field(default=False, alias="preventAutoAppUpdate")


class IOSLobAppAssignmentSettings(AppAssignmentSettings):
    applies_to: ClassVar[frozenset[MobileAppType]] = frozenset({MobileAppType.IOS_LOB})

    odata_type: Literal["#microsoft.graph.iosLobAppAssignmentSettings"] = Field(
        default="#microsoft.graph.iosLobAppAssignmentSettings",
        alias="@odata.type",
    )
    vpn_configuration_id: str | None = Field(default=None, alias="vpnConfigurationId")
    uninstall_on_device_removal: bool = Field(
        default=False, alias="uninstallOnDeviceRemoval"
    )
    is_removable: bool = Field(default=True, alias="isRemovable")
    prevent_managed_app_backup: bool = Field(
        default=False, alias="preventManagedAppBackup"
    )


class MacOSVppAppAssignmentSettings(AppAssignmentSettings):
    always_serialized: ClassVar[tuple[str, ...]] = ("use_device_licensing",)
    applies_to: ClassVar[frozenset[MobileAppType]] = frozenset(
        {MobileAppType.MACOS_VPP}
    )

    odata_type: Literal["#microsoft.graph.macOsVppAppAssignmentSettings"] = Field(
        default="#microsoft.graph.macOsVppAppAssignmentSettings",
        alias="@odata.type",
    )
    use_device_licensing: bool = Field(default=True, alias="useDeviceLicensing")
    uninstall_on_device_removal: bool = Field(
        default=False, alias="uninstallOnDeviceRemoval"
    )
    prevent_auto_app_update: bool = Field(default=False, alias="preventAutoAppUpdate")


class DetectionRuleType(StrEnum):
    FILE = "fileExistence"
    FOLDER = "folderExistence"
    VERSION = "fileVersion"


class DetectionRule(GraphBaseModel):
    rule_type: DetectionRuleType = Field(alias="ruleType")
    check_32_bit_on_64_system: bool = Field(default=False, alias="check32BitOn64System")
    detection_value: str | None = Field(default=None, alias="detectionValue")
    file_or_folder_path: str | None = Field(default=None, alias="fileOrFolderPath")


class MacOSDmgAppAssignmentSettings(AppAssignmentSettings):
    always_serialized: ClassVar[tuple[str, ...]] = ("ignore_version_detection",)
    applies_to: ClassVar[frozenset[MobileAppType]] = frozenset(
        {MobileAppType.MACOS_DMG}
    )

    odata_type: Literal["#microsoft.graph.macOsDmgAppAssignmentSettings"] = Field(
        default="#microsoft.graph.macOsDmgAppAssignmentSettings",
        alias="@odata.type",
    )
    minimum_operating_system: str | None = Field(
        default=None, alias="minimumOperatingSystem"
    )
    ignore_version_detection: bool = Field(default=False, alias="ignoreVersionDetection")
    detection_rules: list[DetectionRule] | None = Field(
        default=None, alias="detectionRules"
    )


class DeliveryOptimizationPriority(StrEnum):
    NOT_CONFIGURED = "notConfigured"
    FOREGROUND = "foreground"


class WindowsNotificationSetting(StrEnum):
    SHOW_ALL = "showAll"
    SHOW_REBOOT = "showReboot"
    HIDE_ALL = "hideAll"


class WindowsRestartSettings(GraphBaseModel):
    grace_period_in_minutes: int = Field(default=1440, alias="gracePeriodInMinutes")
    countdown_display_before_restart_in_minutes: int = Field(
        default=15, alias="countdownDisplayBeforeRestartInMinutes"
    )
    restart_notification_snooze_duration_in_minutes: int = Field(
        default=60, alias="restartNotificationSnoozeDurationInMinutes"
    )


class WindowsInstallTimeSettings(GraphBaseModel):
    use_local_time: bool = Field(default=True, alias="useLocalTime")
    deadline_date_time: str | None = Field(default=None, alias="deadlineDateTime")


class WindowsAppAssignmentSettings(AppAssignmentSettings):
    always_serialized: ClassVar[tuple[str, ...]] = (
        "delivery_optimization_priority",
        "notifications",
    )
    applies_to: ClassVar[frozenset[MobileAppType]] = frozenset(
        {
            MobileAppType.WIN32_LOB,
            MobileAppType.WINGET,
            MobileAppType.WINDOWS_WEB,
        }
    )

    odata_type: Literal["#microsoft.graph.win32LobAppAssignmentSettings"] = Field(
        default="#microsoft.graph.win32LobAppAssignmentSettings",
        alias="@odata.type",
    )
    delivery_optimization_priority: DeliveryOptimizationPriority = Field(
        default=DeliveryOptimizationPriority.NOT_CONFIGURED,
        alias="deliveryOptimizationPriority",
    )
    notifications: WindowsNotificationSetting = WindowsNotificationSetting.SHOW_ALL
    restart_settings: WindowsRestartSettings | None = Field(
        default=None, alias="restartSettings"
    )
    install_time_settings: WindowsInstallTimeSettings | None = Field(
        default=None, alias="installTimeSettings"
    )


class AndroidManagedStoreAutoUpdateMode(StrEnum):
    DEFAULT = "default"
    POSTPONED = "postponed"
    PRIORITY = "priority"


class AndroidManagedStoreAppAssignmentSettings(AppAssignmentSettings):
    applies_to: ClassVar[frozenset[MobileAppType]] = frozenset(
        {MobileAppType.ANDROID_MANAGED_STORE}
    )

    odata_type: Literal[
        "#microsoft.graph.androidManagedStoreAppAssignmentSettings"
    ] = Field(
        default="#microsoft.graph.androidManagedStoreAppAssignmentSettings",
        alias="@odata.type",
    )
    android_managed_store_app_track_ids: list[str] = Field(
        default_factory=list, alias="androidManagedStoreAppTrackIds"
    )
    auto_update_mode: AndroidManagedStoreAutoUpdateMode = Field(
        default=AndroidManagedStoreAutoUpdateMode.DEFAULT,
        alias="autoUpdateMode",
    )


SettingsVariant = Annotated[
    Union[
        IOSVppAppAssignmentSettings,
        IOSLobAppAssignmentSettings,
        MacOSVppAppAssignmentSettings,
        MacOSDmgAppAssignmentSettings,
        WindowsAppAssignmentSettings,
        AndroidManagedStoreAppAssignmentSettings,
    ],
    Field(discriminator="odata_type"),
]

SettingsPayload = SettingsVariant | None

_settings_adapter: TypeAdapter[Any] = TypeAdapter(SettingsPayload)

_VARIANTS: tuple[type[AppAssignmentSettings], ...] = (
    IOSVppAppAssignmentSettings,
    IOSLobAppAssignmentSettings,
    MacOSVppAppAssignmentSettings,
    MacOSDmgAppAssignmentSettings,
    WindowsAppAssignmentSettings,
    AndroidManagedStoreAppAssignmentSettings,
)


def settings_for_app_type(app_type: MobileAppType | str) -> AppAssignmentSettings | None:
    """Return the default settings variant for an app type, if it has one."""

    resolved = MobileAppType(app_type)
    for variant in _VARIANTS:
        if resolved in variant.applies_to:
            return variant()
    return None


def settings_applies_to(
    payload: AppAssignmentSettings | None, app_type: MobileAppType | str
) -> bool:
    if payload is None:
        return False
    return MobileAppType(app_type) in type(payload).applies_to


def parse_settings(data: dict[str, Any] | None) -> AppAssignmentSettings | None:
    """Validate a Graph settings object into its variant, keyed on ``@odata.type``."""

    if data is None:
        return None
    return _settings_adapter.validate_python(data)


__all__ = [
    "AndroidManagedStoreAppAssignmentSettings",
    "AndroidManagedStoreAutoUpdateMode",
    "AppAssignmentSettings",
    "DeliveryOptimizationPriority",
    "DetectionRule",
    "DetectionRuleType",
    "IOSLobAppAssignmentSettings",
    "IOSVppAppAssignmentSettings",
    "MacOSDmgAppAssignmentSettings",
    "MacOSVppAppAssignmentSettings",
    "SettingsPayload",
    "SettingsVariant",
    "WindowsAppAssignmentSettings",
    "WindowsInstallTimeSettings",
    "WindowsNotificationSetting",
    "WindowsRestartSettings",
    "parse_settings",
    "settings_applies_to",
    "settings_for_app_type",
]
