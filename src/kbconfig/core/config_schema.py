"""
配置文件格式 - 版本化 JSON 文档的解析、校验和序列化

两代文件格式:
  当前格式: {formatVersion, createdAt, sourceDevice, profiles: {"0": {...}}, globalSettings: {calibration}}
  旧格式:   {..., settings: {keymap, actuationMap, advancedKeys, tickRate, calibration}}
            作用于设备当前激活的 profile

解析时两代格式统一提升为 ConfigurationDocument，旧格式的设置挂在 ACTIVE_PROFILE 下，
序列化时再按原格式写回，保证 parse(serialize(doc)) == doc。
也兼容网页版配置器导出的字段名 (version / timestamp / deviceInfo)。
"""

import json
import logging
from enum import Enum
from typing import Any, Optional, Union

from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, NonNegativeInt, StrictInt,
    ValidationError, field_validator,
)

from .errors import EmptyDocument, FieldError, MalformedInput, SchemaViolation

logger = logging.getLogger(__name__)


FORMAT_VERSION = "1.0"
ACTIVE_PROFILE = -1  # 旧格式: 导入时解析为设备当前 profile


class Generation(str, Enum):
    CURRENT = "current"
    LEGACY = "legacy"


class SettingKind(str, Enum):
    """可选择导入的设置种类"""
    PROFILES = "profiles"
    KEYMAP = "keymap"
    ACTUATION_MAP = "actuationMap"
    ADVANCED_KEYS = "advancedKeys"
    TICK_RATE = "tickRate"
    CALIBRATION = "calibration"

    @property
    def label(self) -> str:
        return SETTING_LABELS[self]


SETTING_LABELS = {
    SettingKind.PROFILES: "All Profiles",
    SettingKind.KEYMAP: "Keymap",
    SettingKind.ACTUATION_MAP: "Actuation Settings",
    SettingKind.ADVANCED_KEYS: "Advanced Key Settings",
    SettingKind.TICK_RATE: "Tick Rate",
    SettingKind.CALIBRATION: "Calibration",
}

# profile 内字段，顺序即写入顺序
PROFILE_FIELDS = (
    SettingKind.KEYMAP,
    SettingKind.ACTUATION_MAP,
    SettingKind.ADVANCED_KEYS,
    SettingKind.TICK_RATE,
)

_FIELD_ATTRS = {
    SettingKind.KEYMAP: "keymap",
    SettingKind.ACTUATION_MAP: "actuation_map",
    SettingKind.ADVANCED_KEYS: "advanced_keys",
    SettingKind.TICK_RATE: "tick_rate",
}


# ==============================
# 文档模型
# ==============================

class ProfileSettings(BaseModel):
    """单个 profile 的设置，全部可选"""
    model_config = ConfigDict(populate_by_name=True)

    keymap: Optional[list[list[StrictInt]]] = None     # layer x key，不接受 true/false
    actuation_map: Any = Field(None, alias="actuationMap")
    advanced_keys: Any = Field(None, alias="advancedKeys")
    tick_rate: Optional[StrictInt] = Field(None, alias="tickRate")

    def get(self, kind: SettingKind) -> Any:
        return getattr(self, _FIELD_ATTRS[kind])

    def populated(self) -> list[SettingKind]:
        return [kind for kind in PROFILE_FIELDS if self.get(kind) is not None]

    @property
    def is_empty(self) -> bool:
        return not self.populated()


class SourceDevice(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    firmware_version: str = Field(alias="firmwareVersion")
    device_id: str = Field(alias="deviceId")

    @field_validator("firmware_version", mode="before")
    @classmethod
    def _version_to_str(cls, v):
        # 数字或字符串都接受，统一为字符串
        if isinstance(v, bool):
            return v
        if isinstance(v, float) and v.is_integer():
            v = int(v)
        if isinstance(v, (int, float)):
            return str(v)
        return v


class GlobalSettings(BaseModel):
    """设备级设置，不属于任何 profile"""
    calibration: Any = None

    @property
    def is_empty(self) -> bool:
        return self.calibration is None


class LegacySettings(ProfileSettings):
    calibration: Any = None

    def profile_part(self) -> ProfileSettings:
        return ProfileSettings(
            keymap=self.keymap,
            actuation_map=self.actuation_map,
            advanced_keys=self.advanced_keys,
            tick_rate=self.tick_rate,
        )


class _ConfigFile(BaseModel):
    """磁盘上的原始结构 (两代格式的并集)"""
    model_config = ConfigDict(populate_by_name=True)

    format_version: str = Field(validation_alias=AliasChoices("formatVersion", "version"))
    created_at: str = Field(validation_alias=AliasChoices("createdAt", "timestamp"))
    source_device: SourceDevice = Field(validation_alias=AliasChoices("sourceDevice", "deviceInfo"))
    profiles: Optional[dict[NonNegativeInt, ProfileSettings]] = None
    global_settings: Optional[GlobalSettings] = Field(None, validation_alias=AliasChoices("globalSettings"))
    settings: Optional[LegacySettings] = None


class ConfigurationDocument(BaseModel):
    """统一后的配置文档"""
    model_config = ConfigDict(populate_by_name=True)

    generation: Generation = Generation.CURRENT
    format_version: str = FORMAT_VERSION
    created_at: str
    source_device: SourceDevice
    profiles: dict[int, ProfileSettings] = Field(default_factory=dict)
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings)

    @property
    def is_legacy(self) -> bool:
        return self.generation == Generation.LEGACY

    def profile_ids(self) -> list[int]:
        return sorted(self.profiles)

    def has_settings(self) -> bool:
        return (
            any(not p.is_empty for p in self.profiles.values())
            or not self.global_settings.is_empty
        )


# ==============================
# 解析
# ==============================

def parse(data: Union[bytes, str]) -> ConfigurationDocument:
    """bytes -> ConfigurationDocument，失败时抛出 InputError 子类"""
    try:
        text = data.decode("utf-8-sig") if isinstance(data, (bytes, bytearray)) else data
        raw = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedInput(f"Invalid JSON format: {e}") from e

    if not isinstance(raw, dict):
        raise SchemaViolation([FieldError("", "Configuration file must be a JSON object")])

    try:
        model = _ConfigFile.model_validate(raw)
    except ValidationError as e:
        raise SchemaViolation(_field_errors(e)) from e

    return _lift(model)


def _field_errors(error: ValidationError) -> list[FieldError]:
    return [
        FieldError(".".join(str(p) for p in err["loc"]), err["msg"])
        for err in error.errors()
    ]


def _lift(model: _ConfigFile) -> ConfigurationDocument:
    """两代格式 -> 统一结构"""
    profiles = model.profiles or {}
    legacy = model.settings

    calibration = model.global_settings.calibration if model.global_settings else None
    if calibration is None and legacy is not None:
        calibration = legacy.calibration

    legacy_part = legacy.profile_part() if legacy is not None else ProfileSettings()
    has_profiles = any(not p.is_empty for p in profiles.values())
    if not has_profiles and legacy_part.is_empty and calibration is None:
        raise EmptyDocument()

    empty = [pid for pid, p in sorted(profiles.items()) if p.is_empty]
    if empty:
        raise SchemaViolation([
            FieldError(f"profiles.{pid}", "Profile must contain at least one setting")
            for pid in empty
        ])

    if profiles:
        generation = Generation.CURRENT
        lifted = dict(profiles)
        if not legacy_part.is_empty:
            logger.warning("Ignoring legacy 'settings' fields in a profile-based configuration file")
    elif legacy is not None:
        generation = Generation.LEGACY
        lifted = {} if legacy_part.is_empty else {ACTIVE_PROFILE: legacy_part}
    else:
        generation = Generation.CURRENT
        lifted = {}

    return ConfigurationDocument(
        generation=generation,
        format_version=model.format_version,
        created_at=model.created_at,
        source_device=model.source_device,
        profiles=lifted,
        global_settings=GlobalSettings(calibration=calibration),
    )


# ==============================
# 序列化
# ==============================

def to_dict(document: ConfigurationDocument) -> dict:
    """统一结构 -> 原格式的 JSON 对象"""
    data = {
        "formatVersion": document.format_version,
        "createdAt": document.created_at,
        "sourceDevice": document.source_device.model_dump(by_alias=True),
    }
    calibration = document.global_settings.calibration

    if document.is_legacy:
        settings = {}
        part = document.profiles.get(ACTIVE_PROFILE)
        if part is not None:
            settings.update(part.model_dump(by_alias=True, exclude_none=True))
        if calibration is not None:
            settings["calibration"] = calibration
        data["settings"] = settings
    else:
        data["profiles"] = {
            str(pid): document.profiles[pid].model_dump(by_alias=True, exclude_none=True)
            for pid in document.profile_ids()
        }
        if calibration is not None:
            data["globalSettings"] = {"calibration": calibration}

    return data


def serialize(document: ConfigurationDocument) -> bytes:
    return json.dumps(to_dict(document), ensure_ascii=False, indent=2).encode("utf-8")


def available_settings(document: ConfigurationDocument) -> list[SettingKind]:
    """文档中可供选择导入的设置种类 (对话框默认全选)"""
    if document.is_legacy:
        part = document.profiles.get(ACTIVE_PROFILE)
        kinds = part.populated() if part is not None else []
    else:
        kinds = [SettingKind.PROFILES] if document.profiles else []
    if not document.global_settings.is_empty:
        kinds.append(SettingKind.CALIBRATION)
    return kinds
