"""
日志配置 - 控制台输出，可重复调用
"""

import logging
from typing import Optional

_LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# 记录本模块安装的 handler，重新配置时先移除
_console_handler: Optional[logging.Handler] = None


def setup_logging(level: str = "INFO") -> None:
    global _console_handler

    level_str = (level or "INFO").strip().upper()
    if level_str not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        level_str = "INFO"
    log_level = getattr(logging, level_str)

    root = logging.getLogger()
    if _console_handler and _console_handler in root.handlers:
        root.removeHandler(_console_handler)

    handler = logging.StreamHandler()
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))
    _console_handler = handler

    root.setLevel(log_level)
    root.addHandler(handler)
