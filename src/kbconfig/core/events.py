"""
通知事件 - 引擎向调用方报告进度和结果，展示方式 (toast/对话框) 由调用方决定
"""

from dataclasses import dataclass
from typing import Callable, Union


@dataclass(frozen=True)
class ProgressEvent:
    completed: int
    total: int
    label: str = ""


@dataclass(frozen=True)
class WarningEvent:
    message: str


@dataclass(frozen=True)
class CompletedEvent:
    success_count: int
    total_count: int

    @property
    def effective_failure(self) -> bool:
        """没有任何设置写入成功，对用户应视为失败"""
        return self.success_count == 0


@dataclass(frozen=True)
class CancelledEvent:
    message: str = "Import process was cancelled by user"


@dataclass(frozen=True)
class FailedEvent:
    reason: str


TransferEvent = Union[ProgressEvent, WarningEvent, CompletedEvent, CancelledEvent, FailedEvent]
EventSink = Callable[[TransferEvent], None]


def null_sink(event: TransferEvent) -> None:
    pass
