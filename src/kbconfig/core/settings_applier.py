"""
设置写入 - 把配置文件中选中的设置按顺序写入设备

写入以 apply-unit 为单位严格串行执行:
  当前格式: 每个 profile 一个 unit (写入该 profile 的所有选中字段)
  旧格式:   每个选中字段一个 unit，目标为设备当前 profile
  校准数据: 单独一个 unit
单个字段 (或 keymap 的单层) 写入失败只产生警告，不影响其它字段和 unit；
取消只在 unit 之间和 keymap 层之间检查，已写入的内容不回滚。
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

from .compatibility import CompatibilityAnalyzer, has_errors, table_size
from .config_schema import (
    ACTIVE_PROFILE, PROFILE_FIELDS, ConfigurationDocument, SettingKind,
)
from .errors import CompatibilityBlockedError
from .events import EventSink, ProgressEvent, WarningEvent, null_sink
from ..comm.device import DeviceCapability

logger = logging.getLogger(__name__)


class CancellationToken:
    """协作式取消标记，作用域为一次导入"""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ApplyOutcome(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class ApplyResult:
    outcome: ApplyOutcome
    success_count: int
    total_count: int
    completed: int = 0                 # 已尝试的 unit 数
    warnings: list[str] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.outcome == ApplyOutcome.CANCELLED

    @property
    def effective_failure(self) -> bool:
        return self.outcome == ApplyOutcome.COMPLETED and self.success_count == 0


@dataclass(frozen=True)
class ApplyUnit:
    label: str
    profile: Optional[int]             # None: 设备级 (校准)
    kinds: tuple[SettingKind, ...]


def normalize_selection(selected: Iterable) -> set[SettingKind]:
    return {SettingKind(s) for s in selected}


def plan_units(document: ConfigurationDocument, selected: Iterable) -> list[ApplyUnit]:
    """按确定顺序展开为 apply-unit 列表"""
    selected = normalize_selection(selected)
    if SettingKind.PROFILES in selected:
        field_kinds = PROFILE_FIELDS
    else:
        field_kinds = tuple(k for k in PROFILE_FIELDS if k in selected)

    units = []
    if document.is_legacy:
        part = document.profiles.get(ACTIVE_PROFILE)
        if part is not None:
            for kind in field_kinds:
                if part.get(kind) is not None:
                    units.append(ApplyUnit(kind.label, ACTIVE_PROFILE, (kind,)))
    else:
        for profile_id in document.profile_ids():
            profile = document.profiles[profile_id]
            kinds = tuple(k for k in field_kinds if profile.get(k) is not None)
            if kinds:
                units.append(ApplyUnit(f"Profile {profile_id} Settings", profile_id, kinds))

    if SettingKind.CALIBRATION in selected and not document.global_settings.is_empty:
        units.append(ApplyUnit(SettingKind.CALIBRATION.label, None, (SettingKind.CALIBRATION,)))
    return units


class _ApplyCancelled(Exception):
    pass


@dataclass
class _Run:
    """一次 apply 调用的进度状态"""
    capability: DeviceCapability
    token: CancellationToken
    total: int
    completed: int = 0
    success: int = 0
    warnings: list[str] = field(default_factory=list)


class SettingsApplier:
    """把文档中选中的设置写入设备"""

    def __init__(self, device, emit: EventSink = null_sink, analyzer: Optional[CompatibilityAnalyzer] = None):
        self.device = device
        self._emit = emit
        self._analyzer = analyzer or CompatibilityAnalyzer()
        self._writers = {
            SettingKind.KEYMAP: self._write_keymap,
            SettingKind.ACTUATION_MAP: self._write_actuation_map,
            SettingKind.ADVANCED_KEYS: self._write_advanced_keys,
            SettingKind.TICK_RATE: self._write_tick_rate,
        }

    async def apply(
        self,
        document: ConfigurationDocument,
        selected: Iterable,
        token: Optional[CancellationToken] = None,
    ) -> ApplyResult:
        token = token or CancellationToken()
        # 开始前读取设备元数据，设备已断开时直接抛出；之后的设备调用失败都只产生警告
        capability = self.device.capability

        issues = self._analyzer.structural_issues(document, capability)
        if has_errors(issues):
            raise CompatibilityBlockedError(issues)

        units = plan_units(document, selected)
        run = _Run(capability=capability, token=token, total=len(units))
        logger.info("Applying %d setting unit(s) to %s", run.total, capability.name)

        active_profile = 0
        if any(unit.profile == ACTIVE_PROFILE for unit in units):
            active_profile = await self._resolve_active_profile(run)

        for unit in units:
            if token.cancelled:
                return self._result(run, ApplyOutcome.CANCELLED)
            try:
                landed = await self._apply_unit(document, unit, active_profile, run)
            except _ApplyCancelled:
                return self._result(run, ApplyOutcome.CANCELLED)

            run.completed += 1
            if landed:
                run.success += 1
            self._emit(ProgressEvent(run.completed, run.total, unit.label))

        return self._result(run, ApplyOutcome.COMPLETED)

    def _result(self, run: _Run, outcome: ApplyOutcome) -> ApplyResult:
        logger.info(
            "Apply %s: %d/%d unit(s) succeeded, %d attempted",
            outcome.value, run.success, run.total, run.completed,
        )
        return ApplyResult(
            outcome=outcome,
            success_count=run.success,
            total_count=run.total,
            completed=run.completed,
            warnings=list(run.warnings),
        )

    def _warn(self, run: _Run, message: str, error: Optional[BaseException] = None):
        if error is not None:
            logger.warning("%s (%s)", message, error)
        else:
            logger.warning(message)
        run.warnings.append(message)
        self._emit(WarningEvent(message))

    async def _resolve_active_profile(self, run: _Run) -> int:
        try:
            return await self.device.get_profile()
        except Exception as e:
            self._warn(run, "Could not determine current profile. Using default profile 0.", e)
            return 0

    # ==============================
    # 单个 unit
    # ==============================

    async def _apply_unit(self, document, unit: ApplyUnit, active_profile: int, run: _Run) -> bool:
        """返回是否至少有一次写入成功"""
        if unit.profile is None:
            return await self._write_calibration(run, document.global_settings.calibration)

        profile = active_profile if unit.profile == ACTIVE_PROFILE else unit.profile
        if not 0 <= profile < run.capability.num_profiles:
            self._warn(run, f"Profile {profile} is not supported by {run.capability.name}. Skipped.")
            return False

        settings = document.profiles[unit.profile]
        landed = False
        for kind in unit.kinds:
            if await self._writers[kind](run, profile, settings.get(kind)):
                landed = True
        return landed

    async def _guarded(self, run: _Run, what: str, call) -> bool:
        try:
            await call
        except Exception as e:
            self._warn(run, f"Failed to apply {what}. Continuing with other settings.", e)
            return False
        return True

    async def _write_keymap(self, run: _Run, profile: int, keymap: list[list[int]]) -> bool:
        landed = False
        for layer, row in enumerate(keymap):
            if run.token.cancelled:
                raise _ApplyCancelled()
            if await self._guarded(
                run, f"keymap layer {layer} for profile {profile}",
                self.device.set_keymap(profile, layer, 0, row),
            ):
                landed = True
        return landed

    async def _write_actuation_map(self, run: _Run, profile: int, data: Any) -> bool:
        return await self._guarded(
            run, f"actuation settings for profile {profile}",
            self.device.set_actuation_map(profile, 0, data),
        )

    async def _write_advanced_keys(self, run: _Run, profile: int, data: Any) -> bool:
        limit = run.capability.num_advanced_keys
        size = table_size(data)
        if size is not None and size > limit:
            logger.info("Dropping %d advanced key entries beyond device capacity", size - limit)
            data = dict(list(data.items())[:limit]) if isinstance(data, dict) else list(data)[:limit]
        return await self._guarded(
            run, f"advanced key settings for profile {profile}",
            self.device.set_advanced_keys(profile, 0, data),
        )

    async def _write_tick_rate(self, run: _Run, profile: int, value: int) -> bool:
        return await self._guarded(
            run, f"tick rate setting for profile {profile}",
            self.device.set_tick_rate(profile, value),
        )

    async def _write_calibration(self, run: _Run, data: Any) -> bool:
        return await self._guarded(run, "calibration settings", self.device.set_calibration(data))
