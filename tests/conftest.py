"""Shared pytest configuration and fixtures for the configuration transfer tests."""

import json

import pytest
from PySide6.QtCore import QCoreApplication

from kbconfig.comm.demo_device import HE60, DemoDevice


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


# =============================================================================
# Helpers
# =============================================================================

def make_keymap(layers=4, keys=67, base=0x04):
    return [[(base + key + layer) & 0xFF for key in range(keys)] for layer in range(layers)]


def make_profile(layers=4, keys=67, tick_rate=30, **extra):
    profile = {
        "keymap": make_keymap(layers, keys),
        "actuationMap": [{"actuationPoint": 100, "rtDown": 0, "rtUp": 0, "continuous": False}] * keys,
        "advancedKeys": [],
        "tickRate": tick_rate,
    }
    profile.update(extra)
    return profile


def make_config(profiles=None, settings=None, global_settings=None, name="HE60", firmware="2"):
    data = {
        "formatVersion": "1.0",
        "createdAt": "2026-10-18T12:00:00Z",
        "sourceDevice": {"name": name, "firmwareVersion": firmware, "deviceId": "device-123"},
    }
    if profiles is not None:
        data["profiles"] = profiles
    if settings is not None:
        data["settings"] = settings
    if global_settings is not None:
        data["globalSettings"] = global_settings
    return data


def to_bytes(data) -> bytes:
    return json.dumps(data).encode("utf-8")


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def qt_core_app():
    """TransferSession is a QObject; keep one core application alive."""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def capability():
    return HE60


@pytest.fixture
def demo_device():
    return DemoDevice()


@pytest.fixture
def events():
    """Collects emitted events; pass `events.append` as the sink."""
    return []
