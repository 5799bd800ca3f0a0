"""Shared test fixtures for spark_server tests."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from spark_server.adapter import AdapterState, BLEAdapter
from tests.helpers import make_device, make_hr_packet


class EventRecorder:
    """Stand-in for the hub's publish callable that keeps every event."""

    def __init__(self):
        self.events = []

    def __call__(self, event) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.type for event in self.events]

    def of_type(self, type_: str) -> list:
        return [event for event in self.events if event.type == type_]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def published() -> EventRecorder:
    """Records events published by a component."""
    return EventRecorder()


@pytest.fixture
def hr_packet_simple() -> bytes:
    """Simple 8-bit BPM packet (72 bpm)."""
    return make_hr_packet(72)


@pytest.fixture
def hr_packet_16bit() -> bytes:
    """16-bit BPM packet (300 bpm)."""
    return make_hr_packet(300, is_16bit=True)


# Mock fixtures for BLE
@pytest.fixture
def mock_adapter():
    """Create a mock BLEAdapter with a powered-on radio."""
    adapter = MagicMock(spec=BLEAdapter)
    adapter.state = AdapterState.POWERED_ON
    adapter.initialize = AsyncMock()
    adapter.start_scan = AsyncMock()
    adapter.stop_scan = AsyncMock()
    adapter.connect = AsyncMock()
    adapter.discover_characteristic = AsyncMock(return_value="hr-char")
    adapter.subscribe = AsyncMock()
    adapter.unsubscribe = AsyncMock()
    adapter.disconnect = AsyncMock()
    return adapter


@pytest.fixture
def hr_device():
    """Registry record for a heart rate strap."""
    return make_device()


# Mock fixtures for WebSocket
@pytest.fixture
def mock_websocket():
    """Create a mock WebSocket connection."""
    ws = AsyncMock()
    ws.send = AsyncMock()
    ws.close = AsyncMock()
    ws.remote_address = ("127.0.0.1", 50000)
    return ws


# Config fixtures
@pytest.fixture
def sample_config_dict() -> dict:
    """Sample config dict as would be parsed from TOML."""
    return {
        "server": {
            "host": "0.0.0.0",
            "port": 9000,
            "broadcast_timeout": 1.0,
            "send_queue_size": 64,
            "log_level": "DEBUG",
        },
        "ble": {
            "scan_timeout": 10.0,
            "rssi_update_threshold": 5,
            "auto_scan": True,
        },
        "analytics": {
            "realtime_limit": 100,
            "trend_interval": 30.0,
        },
        "thresholds": {
            "resting_min": 45,
            "max_heart_rate": 190,
        },
        "display": {"mode": "icon"},
    }


@pytest.fixture
def partial_config_dict() -> dict:
    """Partial config dict with some values missing."""
    return {
        "server": {"port": 8081},
        "ble": {"scan_timeout": 3.0},
    }
