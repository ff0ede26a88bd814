"""
错误类型 - 配置导入/导出过程中的异常层次
"""

from dataclasses import dataclass


class TransferError(Exception):
    """导入/导出操作的基类异常"""


# ==============================
# 输入错误 (不接触设备)
# ==============================

class InputError(TransferError):
    """配置文件本身无法使用"""


class FileTooLarge(InputError):
    def __init__(self, size: int, limit: int):
        super().__init__(f"File size too large ({size} bytes, max {limit} bytes)")
        self.size = size
        self.limit = limit


class WrongExtension(InputError):
    def __init__(self, filename: str, extension: str = ".json"):
        super().__init__(f"Only {extension} files are supported: {filename}")
        self.filename = filename


class MalformedInput(InputError):
    """不是合法的 UTF-8 JSON"""


@dataclass(frozen=True)
class FieldError:
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


class SchemaViolation(InputError):
    """JSON 合法但结构不符合配置文件格式"""

    def __init__(self, errors: list[FieldError]):
        self.errors = list(errors)
        super().__init__("Invalid configuration file format:\n" + "\n".join(str(e) for e in self.errors))


class EmptyDocument(InputError):
    def __init__(self, message: str = "Configuration file must contain either profile data or legacy format settings data"):
        super().__init__(message)


# ==============================
# 兼容性 / 导出
# ==============================

class CompatibilityBlockedError(TransferError):
    """存在 error 级别的兼容性问题，拒绝写入"""

    def __init__(self, issues):
        self.issues = list(issues)
        errors = [i.message for i in self.issues if i.is_error]
        super().__init__("Configuration cannot be applied: " + "; ".join(errors))


class EmptyExportError(TransferError):
    def __init__(self):
        super().__init__("No configuration data available to export. Please try again.")


# ==============================
# 设备错误
# ==============================

class DeviceError(Exception):
    """单次设备调用失败，可恢复"""


class DeviceDisconnectedError(DeviceError):
    """设备已断开，当前操作无法继续"""
