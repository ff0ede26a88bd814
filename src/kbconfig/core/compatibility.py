"""
兼容性检查 - 对比配置文件与当前设备的能力和固件版本

数据不匹配不会抛异常，全部转成 CompatibilityIssue；
任意 error 级别问题都会使文档不可写入设备，只有 warning 可以确认后继续。
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from .config_schema import ACTIVE_PROFILE, ConfigurationDocument
from ..comm.device import DeviceCapability

logger = logging.getLogger(__name__)


class IssueCategory(str, Enum):
    DEVICE = "device"
    FIRMWARE = "firmware"
    SETTINGS = "settings"


class Severity(str, Enum):
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class CompatibilityIssue:
    category: IssueCategory
    severity: Severity
    message: str

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR


def has_errors(issues: list[CompatibilityIssue]) -> bool:
    return any(issue.is_error for issue in issues)


def parse_firmware_version(version: str) -> Optional[int]:
    """'1.2.3' -> 1, '2' -> 2, 无法识别返回 None"""
    major = str(version).split(".", 1)[0]
    m = re.match(r"\s*(\d+)", major)
    return int(m.group(1)) if m else None


def _profile_prefix(profile_id: int) -> str:
    return "" if profile_id == ACTIVE_PROFILE else f"Profile {profile_id}: "


def table_size(table) -> Optional[int]:
    if isinstance(table, (list, tuple, dict)):
        return len(table)
    return None


class CompatibilityAnalyzer:
    """生成按检查顺序排列的兼容性问题列表"""

    async def analyze(
        self,
        document: ConfigurationDocument,
        capability: DeviceCapability,
        firmware_version: Callable[[], Awaitable[int]],
    ) -> list[CompatibilityIssue]:
        issues: list[CompatibilityIssue] = []
        self._check_device(document, capability, issues)
        await self._check_firmware(document, firmware_version, issues)
        self._check_settings(document, capability, issues)
        self._check_profile_count(document, capability, issues)
        self._check_emptiness(document, issues)

        logger.info(
            "Compatibility check: %d issue(s), %d error(s)",
            len(issues), sum(1 for i in issues if i.is_error),
        )
        return issues

    def structural_issues(
        self, document: ConfigurationDocument, capability: DeviceCapability
    ) -> list[CompatibilityIssue]:
        """不访问设备的检查子集 (除固件外的全部检查)"""
        issues: list[CompatibilityIssue] = []
        self._check_device(document, capability, issues)
        self._check_settings(document, capability, issues)
        self._check_profile_count(document, capability, issues)
        self._check_emptiness(document, issues)
        return issues

    # ==============================
    # 各项检查
    # ==============================

    def _check_device(self, document, capability, issues):
        source_name = document.source_device.name
        if source_name == capability.name:
            return

        issues.append(CompatibilityIssue(
            IssueCategory.DEVICE, Severity.WARNING,
            f"Config file is for {source_name}, but current device is {capability.name}.",
        ))

        # 源设备按键数多于当前设备时无论如何都无法写入
        for profile_id in document.profile_ids():
            keymap = document.profiles[profile_id].keymap
            if keymap and len(keymap[0]) > capability.num_keys:
                issues.append(CompatibilityIssue(
                    IssueCategory.DEVICE, Severity.ERROR,
                    f"{_profile_prefix(profile_id)}Source device has more keys "
                    f"({len(keymap[0])}) than current device ({capability.num_keys}).",
                ))
                break

    async def _check_firmware(self, document, firmware_version, issues):
        try:
            current = await firmware_version()
        except Exception as e:
            logger.warning("Failed to get firmware version: %s", e)
            issues.append(CompatibilityIssue(
                IssueCategory.FIRMWARE, Severity.WARNING,
                "Failed to get firmware version from device.",
            ))
            return

        raw = document.source_device.firmware_version
        required = parse_firmware_version(raw)
        if required is None:
            issues.append(CompatibilityIssue(
                IssueCategory.FIRMWARE, Severity.WARNING,
                f'Invalid firmware version format in config file: "{raw}".',
            ))
        elif current < required:
            issues.append(CompatibilityIssue(
                IssueCategory.FIRMWARE, Severity.WARNING,
                f"Config file targets newer firmware (v{raw}), but current device has "
                f"v{current}. Some features may not be available.",
            ))

    def _check_settings(self, document, capability, issues):
        for profile_id in document.profile_ids():
            profile = document.profiles[profile_id]
            prefix = _profile_prefix(profile_id)

            if profile.keymap is not None:
                layers = len(profile.keymap)
                if layers != capability.num_layers:
                    issues.append(CompatibilityIssue(
                        IssueCategory.SETTINGS, Severity.ERROR,
                        f"{prefix}Keymap layer count mismatch (config file: {layers} layers, "
                        f"device: {capability.num_layers} layers).",
                    ))
                else:
                    for i, row in enumerate(profile.keymap):
                        if len(row) != capability.num_keys:
                            issues.append(CompatibilityIssue(
                                IssueCategory.SETTINGS, Severity.ERROR,
                                f"{prefix}Key count mismatch in layer {i + 1} (config file: "
                                f"{len(row)} keys, device: {capability.num_keys} keys).",
                            ))
                            break

            size = table_size(profile.advanced_keys)
            if size is not None and size > capability.num_advanced_keys:
                issues.append(CompatibilityIssue(
                    IssueCategory.SETTINGS, Severity.WARNING,
                    f"{prefix}Advanced keys count exceeds device capacity (config file: {size}, "
                    f"device: {capability.num_advanced_keys}). Extra entries will be dropped.",
                ))

    def _check_profile_count(self, document, capability, issues):
        if document.is_legacy:
            return
        count = len(document.profiles)
        if count > capability.num_profiles:
            issues.append(CompatibilityIssue(
                IssueCategory.SETTINGS, Severity.WARNING,
                f"Config file contains {count} profiles, but device supports only "
                f"{capability.num_profiles} profiles (0-{capability.num_profiles - 1}).",
            ))

    def _check_emptiness(self, document, issues):
        if not document.has_settings():
            issues.append(CompatibilityIssue(
                IssueCategory.SETTINGS, Severity.ERROR,
                "Config file contains no valid settings to import.",
            ))
