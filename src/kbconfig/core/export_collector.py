"""
配置导出 - 从设备读取全部 profile 和设备级设置，生成当前格式的配置文档
单个字段读取失败只跳过该字段，不中断导出
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from .config_schema import (
    FORMAT_VERSION, ConfigurationDocument, GlobalSettings, Generation,
    ProfileSettings, SettingKind, SourceDevice,
)
from .errors import EmptyExportError
from .events import EventSink, ProgressEvent, WarningEvent, null_sink

logger = logging.getLogger(__name__)


class ExportCollector:
    """按 profile 顺序读取设备状态"""

    def __init__(self, device, emit: EventSink = null_sink):
        self.device = device
        self._emit = emit
        self._readers = {
            SettingKind.KEYMAP: self.device.get_keymap,
            SettingKind.ACTUATION_MAP: self.device.get_actuation_map,
            SettingKind.ADVANCED_KEYS: self.device.get_advanced_keys,
            SettingKind.TICK_RATE: self.device.get_tick_rate,
        }

    async def collect(self, now: Optional[datetime] = None) -> ConfigurationDocument:
        capability = self.device.capability
        now = now or datetime.now(timezone.utc)

        firmware = await self._firmware_version()
        total = capability.num_profiles

        profiles = {}
        for profile_id in range(capability.num_profiles):
            profile = await self._collect_profile(profile_id)
            if profile is not None:
                profiles[profile_id] = profile
            self._emit(ProgressEvent(profile_id + 1, total, f"Retrieving profile {profile_id} settings"))

        calibration = await self._read(
            self.device.get_calibration(),
            "Could not retrieve calibration data. This setting will be skipped.",
        )

        document = ConfigurationDocument(
            generation=Generation.CURRENT,
            format_version=FORMAT_VERSION,
            created_at=now.isoformat().replace("+00:00", "Z"),
            source_device=SourceDevice(
                name=capability.name or "Unknown Device",
                firmware_version=firmware,
                device_id=capability.device_id or "unknown",
            ),
            profiles=profiles,
            global_settings=GlobalSettings(calibration=calibration),
        )
        if not document.has_settings():
            raise EmptyExportError()

        logger.info(
            "Exported %d profile(s) from %s%s",
            len(profiles), capability.name,
            " with calibration" if calibration is not None else "",
        )
        return document

    async def _firmware_version(self) -> str:
        try:
            return str(await self.device.firmware_version())
        except Exception as e:
            logger.warning("Failed to get firmware version: %s", e)
            self._emit(WarningEvent("Could not retrieve firmware version. Continuing with export."))
            return "unknown"

    async def _collect_profile(self, profile_id: int) -> Optional[ProfileSettings]:
        values = {}
        for kind, reader in self._readers.items():
            value = await self._read(
                reader(profile_id),
                f"Could not retrieve {kind.label.lower()} for profile {profile_id}. "
                f"This setting will be skipped.",
            )
            if value is not None:
                values[kind.value] = value

        if not values:
            logger.warning("No settings could be read for profile %d, skipping", profile_id)
            return None
        return ProfileSettings.model_validate(values)

    async def _read(self, call, warning: str):
        try:
            return await call
        except Exception as e:
            logger.warning("%s (%s)", warning, e)
            self._emit(WarningEvent(warning))
            return None
