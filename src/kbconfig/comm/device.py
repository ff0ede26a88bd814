"""
设备能力接口 - 传输层由外部注入，这里只定义异步调用约定和串行化访问
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceCapability:
    """已连接设备的只读元数据"""
    name: str
    num_keys: int
    num_layers: int
    num_advanced_keys: int
    firmware_version: int = 0
    device_id: str = "unknown"
    num_profiles: int = 5


class KeyboardDevice(Protocol):
    """设备控制能力，每个调用都可能独立失败 (抛出 DeviceError)"""

    capability: DeviceCapability

    async def firmware_version(self) -> int: ...

    async def get_profile(self) -> int: ...

    async def get_keymap(self, profile: int) -> list[list[int]]: ...

    async def set_keymap(self, profile: int, layer: int, offset: int, row: list[int]) -> None: ...

    async def get_actuation_map(self, profile: int) -> Any: ...

    async def set_actuation_map(self, profile: int, offset: int, data: Any) -> None: ...

    async def get_advanced_keys(self, profile: int) -> Any: ...

    async def set_advanced_keys(self, profile: int, offset: int, data: Any) -> None: ...

    async def get_tick_rate(self, profile: int) -> int: ...

    async def set_tick_rate(self, profile: int, value: int) -> None: ...

    async def get_calibration(self) -> Any: ...

    async def set_calibration(self, data: Any) -> None: ...


class SerializedDevice:
    """包装设备，保证任意时刻只有一个读写请求在途"""

    def __init__(self, device: KeyboardDevice):
        self._device = device
        self._lock = asyncio.Lock()

    @property
    def capability(self) -> DeviceCapability:
        """直接读取设备元数据，设备断开时由设备抛出 DeviceDisconnectedError"""
        return self._device.capability

    async def _call(self, name: str, *args):
        async with self._lock:
            logger.debug("device.%s%r", name, args[:2])
            return await getattr(self._device, name)(*args)

    # ==============================
    # 全局
    # ==============================

    async def firmware_version(self) -> int:
        return await self._call("firmware_version")

    async def get_profile(self) -> int:
        return await self._call("get_profile")

    async def get_calibration(self):
        return await self._call("get_calibration")

    async def set_calibration(self, data):
        await self._call("set_calibration", data)

    # ==============================
    # 按 profile
    # ==============================

    async def get_keymap(self, profile: int) -> list[list[int]]:
        return await self._call("get_keymap", profile)

    async def set_keymap(self, profile: int, layer: int, offset: int, row: list[int]):
        await self._call("set_keymap", profile, layer, offset, row)

    async def get_actuation_map(self, profile: int):
        return await self._call("get_actuation_map", profile)

    async def set_actuation_map(self, profile: int, offset: int, data):
        await self._call("set_actuation_map", profile, offset, data)

    async def get_advanced_keys(self, profile: int):
        return await self._call("get_advanced_keys", profile)

    async def set_advanced_keys(self, profile: int, offset: int, data):
        await self._call("set_advanced_keys", profile, offset, data)

    async def get_tick_rate(self, profile: int) -> int:
        return await self._call("get_tick_rate", profile)

    async def set_tick_rate(self, profile: int, value: int):
        await self._call("set_tick_rate", profile, value)
