"""Tests for spark_server.connection module."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from spark_server.connection import ConnectionManager, ConnectionState
from tests.helpers import make_device, make_hr_packet


@pytest.fixture
def manager(mock_adapter, published):
    """ConnectionManager wired to the mock adapter."""
    return ConnectionManager(mock_adapter, published)


class TestConnect:
    """Tests for ConnectionManager.connect."""

    @pytest.mark.asyncio
    async def test_connect_success(self, manager, mock_adapter, published, hr_device):
        """A successful connect subscribes and reports the device."""
        await manager.connect(hr_device)

        mock_adapter.connect.assert_called_once_with("AA:BB:CC:DD:EE:FF")
        mock_adapter.discover_characteristic.assert_called_once_with("AA:BB:CC:DD:EE:FF", "180d", "2a37")
        mock_adapter.subscribe.assert_called_once()
        assert mock_adapter.subscribe.call_args[0][:2] == ("AA:BB:CC:DD:EE:FF", "hr-char")

        assert manager.state == ConnectionState.STREAMING
        assert manager.is_connected
        assert published.types == ["connectionStatus"]
        event = published.events[0]
        assert event.connected is True
        assert event.device == {
            "id": "AA:BB:CC:DD:EE:FF_aabbccddeeff",
            "name": "Polar H10",
            "address": "AA:BB:CC:DD:EE:FF",
        }

    @pytest.mark.asyncio
    async def test_missing_characteristic(self, manager, mock_adapter, published, hr_device):
        """A device without the measurement characteristic is released and reported."""
        mock_adapter.discover_characteristic.return_value = None

        await manager.connect(hr_device)

        assert manager.state == ConnectionState.DISCONNECTED
        mock_adapter.subscribe.assert_not_called()
        mock_adapter.disconnect.assert_called_once_with("AA:BB:CC:DD:EE:FF")
        assert published.types == ["connectionError"]
        assert "characteristic not found" in published.events[0].message

    @pytest.mark.asyncio
    async def test_connect_failure(self, manager, mock_adapter, published, hr_device):
        """A link failure is reported once and never retried."""
        mock_adapter.connect.side_effect = TimeoutError("Connection timed out")

        await manager.connect(hr_device)

        assert manager.state == ConnectionState.DISCONNECTED
        mock_adapter.connect.assert_called_once()
        assert published.types == ["connectionError"]
        assert published.events[0].message == "Connection timed out"

    @pytest.mark.asyncio
    async def test_failure_without_message_uses_type_name(self, manager, mock_adapter, published, hr_device):
        """Exceptions without text are reported by class name."""
        mock_adapter.subscribe.side_effect = RuntimeError()

        await manager.connect(hr_device)

        assert published.events[-1].message == "RuntimeError"

    @pytest.mark.asyncio
    async def test_switch_devices(self, manager, mock_adapter, published, hr_device):
        """Connecting to B while streaming A disconnects A exactly once first."""
        other = make_device(device_id="11:22:33:44:55:66_112233445566", address="11:22:33:44:55:66", name="Wahoo")
        await manager.connect(hr_device)
        published.clear()

        await manager.connect(other)

        assert [(e.type, e.connected) for e in published.events] == [
            ("connectionStatus", False),
            ("connectionStatus", True),
        ]
        assert published.events[1].device["id"] == other.id
        mock_adapter.unsubscribe.assert_called_once_with("AA:BB:CC:DD:EE:FF", "hr-char")
        mock_adapter.disconnect.assert_called_once_with("AA:BB:CC:DD:EE:FF")
        assert manager.current_device["address"] == "11:22:33:44:55:66"

    @pytest.mark.asyncio
    async def test_concurrent_connects_serialize(self, manager, mock_adapter, published, hr_device):
        """Overlapping connect requests end with one session for the last device."""
        other = make_device(device_id="11:22_x", address="11:22", name="Wahoo")

        async def slow_connect(address):
            await asyncio.sleep(0.01)

        mock_adapter.connect.side_effect = slow_connect

        await asyncio.gather(manager.connect(hr_device), manager.connect(other))

        assert published.types == ["connectionStatus"] * 3
        assert [e.connected for e in published.events] == [True, False, True]
        assert manager.current_device["address"] == "11:22"


class TestDisconnect:
    """Tests for ConnectionManager.disconnect."""

    @pytest.mark.asyncio
    async def test_disconnect_when_idle(self, manager, mock_adapter, published):
        """disconnect with no session is a no-op."""
        await manager.disconnect()

        mock_adapter.disconnect.assert_not_called()
        assert published.events == []

    @pytest.mark.asyncio
    async def test_disconnect_streaming(self, manager, mock_adapter, published, hr_device):
        """disconnect unsubscribes, releases the link and reports once."""
        await manager.connect(hr_device)
        published.clear()

        await manager.disconnect()
        await manager.disconnect()

        mock_adapter.unsubscribe.assert_called_once_with("AA:BB:CC:DD:EE:FF", "hr-char")
        mock_adapter.disconnect.assert_called_once_with("AA:BB:CC:DD:EE:FF")
        assert published.types == ["connectionStatus"]
        assert published.events[0].connected is False
        assert manager.state == ConnectionState.DISCONNECTED
        assert manager.current_device is None

    @pytest.mark.asyncio
    async def test_release_errors_are_swallowed(self, manager, mock_adapter, published, hr_device):
        """Adapter failures during teardown do not prevent the disconnect."""
        await manager.connect(hr_device)
        mock_adapter.unsubscribe.side_effect = RuntimeError("gone")
        mock_adapter.disconnect.side_effect = RuntimeError("gone")

        await manager.disconnect()

        assert manager.state == ConnectionState.DISCONNECTED
        assert published.events[-1].connected is False


class TestNotifications:
    """Tests for measurement notification handling."""

    @pytest.mark.asyncio
    async def test_notification_publishes_sample(self, mock_adapter, published, hr_device):
        """Each notification is decoded, published and handed to on_sample."""
        on_sample = MagicMock()
        manager = ConnectionManager(mock_adapter, published, on_sample=on_sample)
        await manager.connect(hr_device)
        callback = mock_adapter.subscribe.call_args[0][2]
        published.clear()

        callback(make_hr_packet(72))

        assert published.types == ["heartRate"]
        assert published.events[0].value == 72
        assert manager.last_sample.value == 72
        on_sample.assert_called_once_with(manager.last_sample)

    @pytest.mark.asyncio
    async def test_malformed_notification_dropped(self, manager, mock_adapter, published, hr_device):
        """Frames that cannot be decoded are logged and skipped."""
        await manager.connect(hr_device)
        callback = mock_adapter.subscribe.call_args[0][2]
        published.clear()

        callback(b"\x01\x50")

        assert published.events == []
        assert manager.last_sample is None

    @pytest.mark.asyncio
    async def test_notification_after_disconnect_ignored(self, manager, mock_adapter, published, hr_device):
        """Late notifications from a released session are dropped."""
        await manager.connect(hr_device)
        callback = mock_adapter.subscribe.call_args[0][2]
        await manager.disconnect()
        published.clear()

        callback(make_hr_packet(80))

        assert published.events == []

    @pytest.mark.asyncio
    async def test_disconnect_clears_last_sample(self, manager, mock_adapter, hr_device):
        """The cached sample belongs to the session."""
        await manager.connect(hr_device)
        mock_adapter.subscribe.call_args[0][2](make_hr_packet(90))
        assert manager.last_sample is not None

        await manager.disconnect()

        assert manager.last_sample is None


class TestLinkLoss:
    """Tests for ConnectionManager.handle_link_loss."""

    @pytest.mark.asyncio
    async def test_link_loss_reports_disconnect(self, manager, published, hr_device):
        """An unexpected drop of the streaming device is published."""
        await manager.connect(hr_device)
        published.clear()

        manager.handle_link_loss("AA:BB:CC:DD:EE:FF")

        assert published.types == ["connectionStatus"]
        assert published.events[0].connected is False
        assert manager.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_link_loss_other_address_ignored(self, manager, published, hr_device):
        """Drops of unrelated peripherals are ignored."""
        await manager.connect(hr_device)
        published.clear()

        manager.handle_link_loss("11:22:33:44:55:66")

        assert published.events == []
        assert manager.is_connected

    @pytest.mark.asyncio
    async def test_link_loss_during_connect_ignored(self, mock_adapter, published, hr_device):
        """A drop while still connecting is left to the connect sequence."""
        manager = ConnectionManager(mock_adapter, published)

        async def drop_during_discovery(address, service_id, characteristic_id):
            manager.handle_link_loss(address)
            raise RuntimeError("Disconnected")

        mock_adapter.discover_characteristic = AsyncMock(side_effect=drop_during_discovery)

        await manager.connect(hr_device)

        assert published.types == ["connectionError"]
