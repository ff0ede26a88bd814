"""
引擎配置 - 通过环境变量覆盖 (前缀 KBCONFIG_)
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


MAX_FILE_SIZE = 5 * 1024 * 1024


class TransferSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="KBCONFIG_", populate_by_name=True)

    max_file_size: int = Field(MAX_FILE_SIZE, gt=0)
    config_extension: str = Field(".json")
    log_level: str = Field("INFO")


@lru_cache(maxsize=1)
def get_settings() -> TransferSettings:
    return TransferSettings()
