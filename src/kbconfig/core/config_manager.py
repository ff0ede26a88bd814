"""
配置管理 - 配置文件的读写、大小和扩展名检查
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from . import config_schema
from .config_schema import ConfigurationDocument
from .errors import FileTooLarge, WrongExtension
from .settings import TransferSettings, get_settings


class ConfigManager:
    """配置文件的保存和加载"""

    def __init__(self, settings: Optional[TransferSettings] = None):
        self.settings = settings or get_settings()

    def check_input(self, size: int, filename: Optional[str] = None):
        """解析之前的输入检查"""
        if size > self.settings.max_file_size:
            raise FileTooLarge(size, self.settings.max_file_size)
        ext = self.settings.config_extension
        if filename is not None and not filename.lower().endswith(ext):
            raise WrongExtension(filename, ext)

    def read_bytes(self, path: Union[str, Path]) -> bytes:
        """读取文件内容，超过大小上限时不读取"""
        path = Path(path)
        self.check_input(path.stat().st_size, path.name)
        return path.read_bytes()

    def load(self, path: Union[str, Path]) -> ConfigurationDocument:
        return config_schema.parse(self.read_bytes(path))

    def save(self, document: ConfigurationDocument, path: Union[str, Path]):
        Path(path).write_bytes(config_schema.serialize(document))

    def export_filename(self, device_name: str, now: Optional[datetime] = None) -> str:
        """<设备名>_config_<YYYY-MM-DDTHH-MM-SS>.json"""
        now = now or datetime.now()
        stamp = now.strftime("%Y-%m-%dT%H-%M-%S")
        name = re.sub(r'[\\/:*?"<>|\s]+', "_", device_name.strip()) or "keyboard"
        return f"{name}_config_{stamp}{self.settings.config_extension}"
