"""
应用程序入口 - 命令行导出/导入 (连接内置演示设备)

用法:
    kbconfig export [-o out.json]
    kbconfig import config.json [--select keymap tickRate] [--yes]
    kbconfig --fail set_tick_rate import config.json      # 模拟设备写入失败
"""

import argparse
import asyncio
import sys
from pathlib import Path

from PySide6.QtCore import QCoreApplication

from .comm.demo_device import DemoDevice
from .core.compatibility import Severity
from .core.config_manager import ConfigManager
from .core.config_schema import SettingKind, available_settings
from .core.errors import TransferError
from .core.events import (
    CancelledEvent, CompletedEvent, FailedEvent, ProgressEvent, WarningEvent,
)
from .core.log_config import setup_logging
from .core.settings import get_settings
from .core.transfer_session import TransferPhase, TransferSession


def print_event(event):
    if isinstance(event, ProgressEvent):
        print(f"[{event.completed}/{event.total}] {event.label}")
    elif isinstance(event, WarningEvent):
        print(f"WARNING: {event.message}")
    elif isinstance(event, CompletedEvent):
        if event.effective_failure:
            print(f"Failed to apply settings (0 of {event.total_count} applied)")
        else:
            print(f"Successfully applied {event.success_count} of {event.total_count} settings")
    elif isinstance(event, CancelledEvent):
        print(event.message)
    elif isinstance(event, FailedEvent):
        print(f"ERROR: {event.reason}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kbconfig", description="Keyboard configuration export/import")
    parser.add_argument("--log-level", default=None, help="DEBUG / INFO / WARNING / ERROR")
    parser.add_argument(
        "--fail", action="append", default=[], metavar="CALL",
        help="demo device call that should fail, repeatable (e.g. --fail set_tick_rate)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    export_p = sub.add_parser("export", help="export all profiles to a JSON file")
    export_p.add_argument("-o", "--output", type=Path, default=None)

    import_p = sub.add_parser("import", help="import a JSON configuration file")
    import_p.add_argument("path", type=Path)
    import_p.add_argument(
        "--select", nargs="+", default=None, choices=[k.value for k in SettingKind],
        help="settings to apply when the file needs review",
    )
    import_p.add_argument("--yes", action="store_true", help="proceed despite compatibility warnings")
    return parser


async def run_export(session: TransferSession, manager: ConfigManager, output) -> int:
    try:
        document = await session.export_document()
    except TransferError:
        return 1
    path = output or Path(manager.export_filename(document.source_device.name))
    manager.save(document, path)
    print(f"All profiles configuration exported to {path}")
    return 0


async def run_import(session: TransferSession, path: Path, select, assume_yes: bool) -> int:
    phase = await session.import_file(path)

    if phase in (TransferPhase.COMPATIBILITY_BLOCKED, TransferPhase.COMPATIBILITY_REVIEW):
        for issue in session.issues:
            marker = "x" if issue.severity == Severity.ERROR else "!"
            print(f"  [{marker}] {issue.category.value}: {issue.message}")

    if phase == TransferPhase.COMPATIBILITY_REVIEW:
        if not assume_yes:
            print("Configuration requires review; re-run with --yes to apply")
            session.cancel()
            return 1
        selection = select or available_settings(session.pending_document)
        phase = await session.confirm(selection)

    if phase == TransferPhase.COMPATIBILITY_BLOCKED:
        print("Configuration cannot be applied to this device")
        session.acknowledge()
        return 1

    result = session.state.result
    ok = phase == TransferPhase.COMPLETED and result is not None and not result.effective_failure
    session.acknowledge()
    return 0 if ok else 1


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or get_settings().log_level)

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])  # TransferSession 是 QObject
    manager = ConfigManager()
    session = TransferSession(DemoDevice(fail=args.fail), manager, on_event=print_event)

    if args.command == "export":
        return asyncio.run(run_export(session, manager, args.output))
    return asyncio.run(run_import(session, args.path, args.select, args.yes))


def run():
    sys.exit(main())
