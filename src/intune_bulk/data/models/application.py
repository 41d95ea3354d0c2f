from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, ConfigDict, Field, model_validator

from .common import GraphResource


ODATA_PREFIX = "#microsoft.graph."


class MobileAppType(StrEnum):
    """Concrete Graph mobile app types, named after their ``@odata.type``."""

    IOS_STORE = "iosStoreApp"
    IOS_VPP = "iosVppApp"
    IOS_LOB = "iosLobApp"
    MANAGED_IOS_STORE = "managedIOSStoreApp"
    MACOS_VPP = "macOsVppApp"
    MACOS_LOB = "macOSLobApp"
    MACOS_DMG = "macOSDmgApp"
    MACOS_PKG = "macOSPkgApp"
    MANAGED_MACOS_STORE = "managedMacOSStoreApp"
    MACOS_OFFICE_SUITE = "macOSOfficeSuiteApp"
    WEB = "webApp"
    WINDOWS_WEB = "windowsWebApp"
    WIN32_LOB = "win32LobApp"
    WINGET = "winGetApp"
    ANDROID_STORE = "androidStoreApp"
    ANDROID_MANAGED_STORE = "androidManagedStoreApp"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            normalised = value.lower()
            for member in cls:
                if member.value.lower() == normalised:
                    return member
        return cls.UNKNOWN

    @classmethod
    def from_odata_type(cls, odata_type: str | None) -> "MobileAppType":
        if not odata_type:
            return cls.UNKNOWN
        trimmed = odata_type.strip().lstrip("#")
        if trimmed.startswith("microsoft.graph."):
            trimmed = trimmed[len("microsoft.graph.") :]
        return cls(trimmed)

    @property
    def odata_type(self) -> str | None:
        if self is MobileAppType.UNKNOWN:
            return None
        return f"{ODATA_PREFIX}{self.value}"

    @property
    def is_vpp(self) -> bool:
        return self in {MobileAppType.IOS_VPP, MobileAppType.MACOS_VPP}

    @property
    def is_web(self) -> bool:
        return self in {MobileAppType.WEB, MobileAppType.WINDOWS_WEB}


class MobileApp(GraphResource):
    # Keep the enum instance so callers can use its helpers.
    model_config = ConfigDict(use_enum_values=False)

    display_name: str = Field(
        alias="displayName",
        validation_alias=AliasChoices("displayName", "name"),
    )
    odata_type: str | None = Field(default=None, alias="@odata.type")
    app_type: MobileAppType = MobileAppType.UNKNOWN
    publisher: str | None = None
    is_assigned: bool | None = Field(default=None, alias="isAssigned")

    @model_validator(mode="before")
    @classmethod
    def _derive_app_type(cls, data: Any) -> Any:
        """Fill ``app_type`` from ``@odata.type`` when it is not given explicitly."""
        if not isinstance(data, dict):
            return data
        if data.get("app_type") is not None:
            return data
        odata_type = data.get("@odata.type") or data.get("odata_type")
        if isinstance(odata_type, str):
            data = dict(data)
            data["app_type"] = MobileAppType.from_odata_type(odata_type)
        return data


__all__ = ["MobileApp", "MobileAppType", "ODATA_PREFIX"]
