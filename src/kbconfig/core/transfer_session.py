"""
导入/导出会话 - 串联解析、兼容性检查和写入，持有导入过程的状态机

  Idle -> Validating -> (CompatibilityBlocked | CompatibilityReview | Applying)
       -> (Completed | Cancelled | Failed) -> Idle

通过 Qt 信号向 UI 层发布事件，展示方式 (toast/对话框) 由 UI 决定。
同一时刻只有一个会话；开始新的导入会取代旧会话，旧会话的事件不再发布。
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Union

from PySide6.QtCore import QObject, Signal

from . import config_schema
from .compatibility import CompatibilityAnalyzer, CompatibilityIssue, has_errors
from .config_manager import ConfigManager
from .config_schema import ConfigurationDocument
from .errors import CompatibilityBlockedError, InputError
from .events import (
    CancelledEvent, CompletedEvent, EventSink, FailedEvent, ProgressEvent, TransferEvent,
)
from .export_collector import ExportCollector
from .settings_applier import ApplyResult, CancellationToken, SettingsApplier
from ..comm.device import SerializedDevice

logger = logging.getLogger(__name__)


class TransferPhase(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    COMPATIBILITY_BLOCKED = "compatibility_blocked"
    COMPATIBILITY_REVIEW = "compatibility_review"
    APPLYING = "applying"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_PHASES = (
    TransferPhase.COMPATIBILITY_BLOCKED,
    TransferPhase.COMPLETED,
    TransferPhase.CANCELLED,
    TransferPhase.FAILED,
)


@dataclass
class SessionState:
    """一次导入的状态，只由 TransferSession 修改"""
    phase: TransferPhase = TransferPhase.IDLE
    pending_document: Optional[ConfigurationDocument] = None
    issues: list[CompatibilityIssue] = field(default_factory=list)
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    progress: tuple[int, int] = (0, 0)   # completed, total
    result: Optional[ApplyResult] = None
    error: Optional[str] = None

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_token.cancelled


class TransferSession(QObject):
    """配置导入/导出的编排器"""

    event_emitted = Signal(object)   # TransferEvent
    phase_changed = Signal(str)      # TransferPhase.value
    issues_ready = Signal(object)    # list[CompatibilityIssue]

    def __init__(
        self,
        device,
        config_manager: Optional[ConfigManager] = None,
        on_event: Optional[EventSink] = None,
        parent=None,
    ):
        super().__init__(parent)
        self._device = device if isinstance(device, SerializedDevice) else SerializedDevice(device)
        self._config_manager = config_manager or ConfigManager()
        self._analyzer = CompatibilityAnalyzer()
        self._state = SessionState()

        if on_event is not None:
            self.event_emitted.connect(on_event)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def phase(self) -> TransferPhase:
        return self._state.phase

    @property
    def issues(self) -> list[CompatibilityIssue]:
        return list(self._state.issues)

    @property
    def pending_document(self) -> Optional[ConfigurationDocument]:
        return self._state.pending_document

    # ==============================
    # 内部状态
    # ==============================

    def _is_current(self, state: SessionState) -> bool:
        return state is self._state

    def _set_phase(self, state: SessionState, phase: TransferPhase) -> TransferPhase:
        state.phase = phase
        if self._is_current(state):
            logger.info("Import phase: %s", phase.value)
            self.phase_changed.emit(phase.value)
        return phase

    def _emitter(self, state: SessionState) -> EventSink:
        """绑定到某次导入的事件出口，会话被取代后丢弃事件"""
        def emit(event: TransferEvent):
            if isinstance(event, ProgressEvent):
                state.progress = (event.completed, event.total)
            if self._is_current(state):
                self.event_emitted.emit(event)
        return emit

    def _fail(self, state: SessionState, reason: str) -> TransferPhase:
        state.error = reason
        self._emitter(state)(FailedEvent(reason))
        return self._set_phase(state, TransferPhase.FAILED)

    # ==============================
    # 导入
    # ==============================

    async def import_file(self, path: Union[str, Path]) -> TransferPhase:
        try:
            data = self._config_manager.read_bytes(path)
        except (InputError, OSError) as e:
            state = self._begin()
            logger.warning("Failed to read configuration file %s: %s", path, e)
            return self._fail(state, str(e))
        return await self.import_bytes(data, Path(path).name)

    async def import_bytes(self, data: bytes, filename: Optional[str] = None) -> TransferPhase:
        """校验配置并按兼容性结果决定: 阻止 / 等待确认 / 直接写入"""
        state = self._begin()

        try:
            self._config_manager.check_input(len(data), filename)
            document = config_schema.parse(data)
        except InputError as e:
            logger.warning("Failed to validate configuration file: %s", e)
            return self._fail(state, str(e))
        state.pending_document = document

        try:
            capability = self._device.capability
            issues = await self._analyzer.analyze(document, capability, self._device.firmware_version)
        except Exception as e:
            logger.error("Failed to check compatibility: %s", e, exc_info=True)
            return self._fail(state, f"Failed to check device compatibility: {e}")

        # 被取消或被新的导入取代 (_begin 已取消旧 token)
        if state.cancel_requested:
            self._emitter(state)(CancelledEvent("Configuration import was cancelled"))
            return self._set_phase(state, TransferPhase.CANCELLED)

        state.issues = issues
        if issues:
            self.issues_ready.emit(list(issues))
        if has_errors(issues):
            return self._set_phase(state, TransferPhase.COMPATIBILITY_BLOCKED)
        if issues:
            return self._set_phase(state, TransferPhase.COMPATIBILITY_REVIEW)

        return await self._apply(state, config_schema.available_settings(document))

    def _begin(self) -> SessionState:
        previous = self._state
        if previous.phase in (TransferPhase.VALIDATING, TransferPhase.APPLYING):
            logger.info("New import replaces the running one")
            previous.cancel_token.cancel()
        state = self._state = SessionState()
        self._set_phase(state, TransferPhase.VALIDATING)
        return state

    async def confirm(self, selection: Iterable) -> TransferPhase:
        """用户在兼容性对话框中确认后写入所选设置"""
        state = self._state
        if state.phase != TransferPhase.COMPATIBILITY_REVIEW:
            raise RuntimeError(f"No configuration awaiting review (phase: {state.phase.value})")
        return await self._apply(state, selection)

    async def _apply(self, state: SessionState, selection: Iterable) -> TransferPhase:
        self._set_phase(state, TransferPhase.APPLYING)
        applier = SettingsApplier(self._device, self._emitter(state), self._analyzer)
        try:
            result = await applier.apply(state.pending_document, selection, state.cancel_token)
        except CompatibilityBlockedError as e:
            state.issues = e.issues
            return self._set_phase(state, TransferPhase.COMPATIBILITY_BLOCKED)
        except Exception as e:
            logger.error("Failed to apply settings: %s", e, exc_info=True)
            return self._fail(state, f"Failed to apply settings: {e}")

        state.result = result
        emit = self._emitter(state)
        if result.cancelled:
            emit(CancelledEvent())
            return self._set_phase(state, TransferPhase.CANCELLED)

        emit(CompletedEvent(result.success_count, result.total_count))
        return self._set_phase(state, TransferPhase.COMPLETED)

    def cancel(self) -> TransferPhase:
        """对话框取消: 写入中则请求协作式取消，否则直接结束会话"""
        state = self._state
        if state.phase in (TransferPhase.VALIDATING, TransferPhase.APPLYING):
            logger.info("Cancelling import process...")
            state.cancel_token.cancel()
            return state.phase

        if state.phase == TransferPhase.COMPATIBILITY_REVIEW:
            self._emitter(state)(CancelledEvent("Configuration import was cancelled"))
            self._state = SessionState()
            return self._set_phase(self._state, TransferPhase.IDLE)

        if state.phase == TransferPhase.COMPATIBILITY_BLOCKED:
            return self.acknowledge()
        return state.phase

    def acknowledge(self) -> TransferPhase:
        """调用方已处理结果，回到 Idle"""
        if self._state.phase in TERMINAL_PHASES:
            self._state = SessionState()
            self._set_phase(self._state, TransferPhase.IDLE)
        return self._state.phase

    # ==============================
    # 导出
    # ==============================

    async def export_document(self) -> ConfigurationDocument:
        collector = ExportCollector(self._device, self.event_emitted.emit)
        try:
            return await collector.collect()
        except Exception as e:
            logger.error("Failed to export config: %s", e)
            self.event_emitted.emit(FailedEvent(f"Export error: {e}"))
            raise

    async def export_bytes(self) -> bytes:
        return config_schema.serialize(await self.export_document())
