"""
演示设备 - 内存中的 HE60 键盘，无需硬件即可导出/导入
可按方法名注入故障，用于演示部分失败和断线
"""

import asyncio
import copy
import logging
from typing import Any, Iterable, Optional

from .device import DeviceCapability
from ..core.errors import DeviceError, DeviceDisconnectedError

logger = logging.getLogger(__name__)


HE60 = DeviceCapability(
    name="HE60",
    num_keys=67,
    num_layers=4,
    num_advanced_keys=32,
    firmware_version=2,
    device_id="demo-he60",
    num_profiles=5,
)

DEFAULT_TICK_RATE = 30


def default_keymap(capability: DeviceCapability) -> list[list[int]]:
    """第 0 层按键位递增，其余层透明 (0x01)"""
    return [
        [(0x04 + key) & 0xFF if layer == 0 else 0x01 for key in range(capability.num_keys)]
        for layer in range(capability.num_layers)
    ]


def default_actuation_map(capability: DeviceCapability) -> list[dict]:
    return [
        {"actuationPoint": 128, "rtDown": 0, "rtUp": 0, "continuous": False}
        for _ in range(capability.num_keys)
    ]


class DemoDevice:
    """实现 KeyboardDevice 接口的内存设备"""

    def __init__(
        self,
        capability: DeviceCapability = HE60,
        fail: Optional[Iterable[str]] = None,
        latency: float = 0.0,
    ):
        self._capability = capability
        self.fail = set(fail or ())
        self.latency = latency
        self.connected = True
        self.active_profile = 0
        self.calls: list[tuple] = []

        self.keymaps = {p: default_keymap(capability) for p in range(capability.num_profiles)}
        self.actuation_maps = {p: default_actuation_map(capability) for p in range(capability.num_profiles)}
        self.advanced_keys: dict[int, list[dict]] = {p: [] for p in range(capability.num_profiles)}
        self.tick_rates = {p: DEFAULT_TICK_RATE for p in range(capability.num_profiles)}
        self.calibration: dict[str, Any] = {"initialRestValue": 2048, "initialBottomOutThreshold": 1200}

    @property
    def capability(self) -> DeviceCapability:
        """设备元数据，断开后不可读"""
        if not self.connected:
            raise DeviceDisconnectedError("Device disconnected")
        return self._capability

    def disconnect(self):
        self.connected = False

    async def _enter(self, name: str, *args):
        """记录调用并按需注入故障"""
        if not self.connected:
            raise DeviceDisconnectedError("Device disconnected")
        self.calls.append((name,) + args)
        if self.latency:
            await asyncio.sleep(self.latency)
        if name in self.fail:
            logger.debug("demo device: injected failure in %s", name)
            raise DeviceError(f"{name} failed")

    def _check_profile(self, profile: int):
        if not 0 <= profile < self._capability.num_profiles:
            raise DeviceError(f"Invalid profile {profile}")

    # ==============================
    # 全局
    # ==============================

    async def firmware_version(self) -> int:
        await self._enter("firmware_version")
        return self._capability.firmware_version

    async def get_profile(self) -> int:
        await self._enter("get_profile")
        return self.active_profile

    async def get_calibration(self):
        await self._enter("get_calibration")
        return copy.deepcopy(self.calibration)

    async def set_calibration(self, data):
        await self._enter("set_calibration", data)
        self.calibration = copy.deepcopy(data)

    # ==============================
    # 按 profile
    # ==============================

    async def get_keymap(self, profile: int) -> list[list[int]]:
        await self._enter("get_keymap", profile)
        self._check_profile(profile)
        return copy.deepcopy(self.keymaps[profile])

    async def set_keymap(self, profile: int, layer: int, offset: int, row: list[int]):
        await self._enter("set_keymap", profile, layer, offset, row)
        self._check_profile(profile)
        if not 0 <= layer < self._capability.num_layers:
            raise DeviceError(f"Invalid layer {layer}")
        if offset + len(row) > self._capability.num_keys:
            raise DeviceError(f"Keymap row overflows device ({offset} + {len(row)} keys)")
        self.keymaps[profile][layer][offset:offset + len(row)] = list(row)

    async def get_actuation_map(self, profile: int):
        await self._enter("get_actuation_map", profile)
        self._check_profile(profile)
        return copy.deepcopy(self.actuation_maps[profile])

    async def set_actuation_map(self, profile: int, offset: int, data):
        await self._enter("set_actuation_map", profile, offset, data)
        self._check_profile(profile)
        current = self.actuation_maps[profile]
        current[offset:offset + len(data)] = copy.deepcopy(list(data))

    async def get_advanced_keys(self, profile: int):
        await self._enter("get_advanced_keys", profile)
        self._check_profile(profile)
        return copy.deepcopy(self.advanced_keys[profile])

    async def set_advanced_keys(self, profile: int, offset: int, data):
        await self._enter("set_advanced_keys", profile, offset, data)
        self._check_profile(profile)
        entries = list(data.values()) if isinstance(data, dict) else list(data)
        if offset + len(entries) > self._capability.num_advanced_keys:
            raise DeviceError("Advanced key table overflows device")
        self.advanced_keys[profile][offset:] = copy.deepcopy(entries)

    async def get_tick_rate(self, profile: int) -> int:
        await self._enter("get_tick_rate", profile)
        self._check_profile(profile)
        return self.tick_rates[profile]

    async def set_tick_rate(self, profile: int, value: int):
        await self._enter("set_tick_rate", profile, value)
        self._check_profile(profile)
        self.tick_rates[profile] = value
