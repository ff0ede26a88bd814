"""Tests for SettingsApplier: unit planning, partial failure and cancellation."""

import pytest

from kbconfig.comm.demo_device import DemoDevice
from kbconfig.core import config_schema
from kbconfig.core.config_schema import ACTIVE_PROFILE, SettingKind
from kbconfig.core.errors import (
    CompatibilityBlockedError, DeviceDisconnectedError, DeviceError,
)
from kbconfig.core.events import ProgressEvent, WarningEvent
from kbconfig.core.settings_applier import (
    ApplyOutcome, CancellationToken, SettingsApplier, plan_units,
)

from conftest import make_config, make_keymap, make_profile, to_bytes


def document(**kwargs):
    return config_schema.parse(to_bytes(make_config(**kwargs)))


def warnings_of(events):
    return [e for e in events if isinstance(e, WarningEvent)]


class FlakyKeymapDevice(DemoDevice):
    """set_keymap fails for the given layers only"""

    def __init__(self, bad_layers, **kwargs):
        super().__init__(**kwargs)
        self.bad_layers = set(bad_layers)

    async def set_keymap(self, profile, layer, offset, row):
        if layer in self.bad_layers:
            raise DeviceError(f"layer {layer} rejected")
        await super().set_keymap(profile, layer, offset, row)


class TestPlanUnits:

    def test_one_unit_per_profile(self):
        doc = document(profiles={"0": make_profile(), "2": {"tickRate": 5}},
                       global_settings={"calibration": {"c": 1}})
        units = plan_units(doc, [SettingKind.PROFILES, SettingKind.CALIBRATION])

        assert [u.label for u in units] == ["Profile 0 Settings", "Profile 2 Settings", "Calibration"]
        assert units[1].kinds == (SettingKind.TICK_RATE,)
        assert units[2].profile is None

    def test_field_selection_narrows_profiles(self):
        doc = document(profiles={"0": make_profile(), "1": {"actuationMap": [1]}})
        units = plan_units(doc, ["keymap", "tickRate"])

        assert len(units) == 1
        assert units[0].kinds == (SettingKind.KEYMAP, SettingKind.TICK_RATE)

    def test_legacy_one_unit_per_field(self):
        doc = document(settings={"keymap": make_keymap(), "tickRate": 8, "calibration": 1})
        units = plan_units(doc, ["keymap", "tickRate", "calibration"])

        assert [u.label for u in units] == ["Keymap", "Tick Rate", "Calibration"]
        assert all(u.profile == ACTIVE_PROFILE for u in units[:2])

    def test_calibration_not_selected(self):
        doc = document(profiles={"0": {"tickRate": 1}}, global_settings={"calibration": 1})
        assert [u.profile for u in plan_units(doc, ["profiles"])] == [0]


class TestApply:

    @pytest.mark.asyncio
    async def test_full_profile_written(self, demo_device, events):
        profile = make_profile(tick_rate=125, advancedKeys=[{"type": 1}])
        doc = document(profiles={"1": profile})

        result = await SettingsApplier(demo_device, events.append).apply(doc, ["profiles"])

        assert result.outcome == ApplyOutcome.COMPLETED
        assert (result.success_count, result.total_count) == (1, 1)
        assert demo_device.keymaps[1] == make_keymap()
        assert demo_device.tick_rates[1] == 125
        assert demo_device.advanced_keys[1] == [{"type": 1}]
        assert demo_device.tick_rates[0] == 30
        assert events == [ProgressEvent(1, 1, "Profile 1 Settings")]

    @pytest.mark.asyncio
    async def test_failed_field_is_warning_only(self, events):
        device = DemoDevice(fail=["set_tick_rate"])
        doc = document(profiles={"0": make_profile()})

        result = await SettingsApplier(device, events.append).apply(doc, ["keymap", "tickRate"])

        assert result.outcome == ApplyOutcome.COMPLETED
        assert result.success_count >= 1
        assert len(warnings_of(events)) == 1
        assert "tick rate" in warnings_of(events)[0].message
        assert device.keymaps[0] == make_keymap()
        assert not any(call[0] == "set_actuation_map" for call in device.calls)

    @pytest.mark.asyncio
    async def test_failed_layer_does_not_stop_other_layers(self, events):
        device = FlakyKeymapDevice(bad_layers=[1])
        keymap = make_keymap(base=0x10)
        doc = document(profiles={"0": {"keymap": keymap}})

        result = await SettingsApplier(device, events.append).apply(doc, ["profiles"])

        assert result.success_count == 1
        assert len(warnings_of(events)) == 1
        assert device.keymaps[0][0] == keymap[0]
        assert device.keymaps[0][1] != keymap[1]
        assert device.keymaps[0][3] == keymap[3]

    @pytest.mark.asyncio
    async def test_nothing_landed_is_effective_failure(self, events):
        device = DemoDevice(fail=["set_tick_rate"])
        doc = document(profiles={"0": {"tickRate": 1}, "1": {"tickRate": 2}})

        result = await SettingsApplier(device, events.append).apply(doc, ["profiles"])

        assert result.outcome == ApplyOutcome.COMPLETED
        assert result.success_count == 0
        assert result.effective_failure
        assert len(warnings_of(events)) == 2

    @pytest.mark.asyncio
    async def test_calibration_unit(self, demo_device, events):
        doc = document(profiles={"0": {"tickRate": 1}}, global_settings={"calibration": {"rest": 1}})

        result = await SettingsApplier(demo_device, events.append).apply(doc, ["profiles", "calibration"])

        assert (result.success_count, result.total_count) == (2, 2)
        assert demo_device.calibration == {"rest": 1}
        assert [e.label for e in events] == ["Profile 0 Settings", "Calibration"]

    @pytest.mark.asyncio
    async def test_advanced_keys_truncated_to_capacity(self, demo_device, capability):
        entries = [{"type": i} for i in range(40)]
        doc = document(profiles={"0": {"advancedKeys": entries}})

        result = await SettingsApplier(demo_device).apply(doc, ["profiles"])

        assert result.success_count == 1
        assert demo_device.advanced_keys[0] == entries[:capability.num_advanced_keys]

    @pytest.mark.asyncio
    async def test_profile_beyond_device_range_is_skipped(self, demo_device, events):
        doc = document(profiles={str(i): {"tickRate": 10 + i} for i in range(6)})

        result = await SettingsApplier(demo_device, events.append).apply(doc, ["profiles"])

        assert (result.success_count, result.total_count) == (5, 6)
        assert demo_device.tick_rates == {0: 10, 1: 11, 2: 12, 3: 13, 4: 14}
        assert "Profile 5" in warnings_of(events)[0].message

    @pytest.mark.asyncio
    async def test_refuses_document_with_errors(self, demo_device):
        doc = document(profiles={"0": make_profile(layers=2)})

        with pytest.raises(CompatibilityBlockedError) as exc:
            await SettingsApplier(demo_device).apply(doc, ["profiles"])

        assert exc.value.issues
        assert demo_device.calls == []

    @pytest.mark.asyncio
    async def test_disconnected_before_start_raises(self, demo_device):
        doc = document(profiles={"0": make_profile()})
        demo_device.disconnect()

        with pytest.raises(DeviceDisconnectedError):
            await SettingsApplier(demo_device).apply(doc, ["profiles"])

        assert demo_device.calls == []

    @pytest.mark.asyncio
    async def test_disconnect_error_in_one_field_is_warning_only(self, events):
        class ResettingDevice(DemoDevice):
            async def set_tick_rate(self, profile, value):
                raise DeviceDisconnectedError("usb reset")

        device = ResettingDevice()
        doc = document(profiles={
            "0": {"keymap": make_keymap(base=0x10), "tickRate": 40},
            "1": {"keymap": make_keymap(base=0x20), "tickRate": 41},
        })

        result = await SettingsApplier(device, events.append).apply(doc, ["keymap", "tickRate"])

        assert result.outcome == ApplyOutcome.COMPLETED
        assert (result.success_count, result.total_count) == (2, 2)
        assert len(warnings_of(events)) == 2
        assert device.keymaps[1] == make_keymap(base=0x20)
        assert any(c[0] == "set_keymap" and c[1] == 1 for c in device.calls)


class TestLegacyApply:

    @pytest.mark.asyncio
    async def test_writes_to_active_profile(self, demo_device, events):
        demo_device.active_profile = 2
        doc = document(settings={"tickRate": 99, "calibration": {"c": 2}})

        result = await SettingsApplier(demo_device, events.append).apply(doc, ["tickRate", "calibration"])

        assert (result.success_count, result.total_count) == (2, 2)
        assert demo_device.tick_rates[2] == 99
        assert demo_device.calibration == {"c": 2}
        assert [e.label for e in events] == ["Tick Rate", "Calibration"]

    @pytest.mark.asyncio
    async def test_unknown_active_profile_falls_back_to_zero(self, events):
        device = DemoDevice(fail=["get_profile"])
        device.active_profile = 3
        doc = document(settings={"tickRate": 99})

        result = await SettingsApplier(device, events.append).apply(doc, ["tickRate"])

        assert result.success_count == 1
        assert device.tick_rates[0] == 99
        assert device.tick_rates[3] == 30
        assert len(warnings_of(events)) == 1
        assert "profile 0" in warnings_of(events)[0].message

    @pytest.mark.asyncio
    async def test_active_profile_disconnect_falls_back_to_zero(self, events):
        class NoProfileDevice(DemoDevice):
            async def get_profile(self):
                raise DeviceDisconnectedError("timeout")

        device = NoProfileDevice()
        doc = document(settings={"tickRate": 77})

        result = await SettingsApplier(device, events.append).apply(doc, ["tickRate"])

        assert result.success_count == 1
        assert device.tick_rates[0] == 77
        assert len(warnings_of(events)) == 1


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_between_profiles(self, demo_device):
        token = CancellationToken()
        seen = []

        def emit(event):
            seen.append(event)
            if isinstance(event, ProgressEvent):
                token.cancel()

        doc = document(profiles={str(i): {"tickRate": 50 + i} for i in range(3)})
        result = await SettingsApplier(demo_device, emit).apply(doc, ["profiles"], token)

        assert result.cancelled
        assert result.completed == 1
        assert result.success_count == 1
        assert demo_device.tick_rates[0] == 50
        assert demo_device.tick_rates[1] == 30
        assert len([e for e in seen if isinstance(e, ProgressEvent)]) == 1

    @pytest.mark.asyncio
    async def test_cancel_between_keymap_layers(self):
        token = CancellationToken()

        class CancellingDevice(DemoDevice):
            async def set_keymap(self, profile, layer, offset, row):
                await super().set_keymap(profile, layer, offset, row)
                if layer == 1:
                    token.cancel()

        device = CancellingDevice()
        doc = document(profiles={"0": make_profile()})
        result = await SettingsApplier(device).apply(doc, ["profiles"], token)

        assert result.cancelled
        assert [c[2] for c in device.calls if c[0] == "set_keymap"] == [0, 1]
        assert not any(c[0] == "set_tick_rate" for c in device.calls)

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, demo_device):
        token = CancellationToken()
        token.cancel()
        doc = document(profiles={"0": {"tickRate": 1}})

        result = await SettingsApplier(demo_device).apply(doc, ["profiles"], token)

        assert result.cancelled
        assert result.completed == 0
        assert demo_device.calls == []
