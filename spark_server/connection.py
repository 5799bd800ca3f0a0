"""Exclusive streaming connection to a heart rate sensor."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .adapter import BLEAdapter
from .devices import HR_MEASUREMENT_ID, HR_SERVICE_ID, Device
from .measurement import HeartRateSample, decode_sample
from .messages import ConnectionFailed, ConnectionStatus, HeartRate, Publish

logger = logging.getLogger(__name__)

SampleCallback = Callable[[HeartRateSample], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SERVICE_DISCOVERY = "serviceDiscovery"
    STREAMING = "streaming"
    DISCONNECTING = "disconnecting"


@dataclass
class ConnectionSession:
    device: Device
    state: ConnectionState = ConnectionState.CONNECTING
    characteristic_handle: object | None = None


class ConnectionManager:
    """Holds at most one live sensor session.

    Connect and disconnect sequences run under a lock, so a connect request
    that arrives while another transition is in flight waits for it and then
    tears the previous session down before dialing the new device. Failed
    connects are reported and never retried.
    """

    def __init__(self, adapter: BLEAdapter, publish: Publish, on_sample: SampleCallback | None = None):
        self._adapter = adapter
        self._publish = publish
        self._on_sample = on_sample
        self._session: ConnectionSession | None = None
        self._last_sample: HeartRateSample | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ConnectionState:
        if self._session is None:
            return ConnectionState.DISCONNECTED
        return self._session.state

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.STREAMING

    @property
    def current_device(self) -> dict | None:
        """``{id, name, address}`` of the streaming device, if any."""
        if not self.is_connected:
            return None
        device = self._session.device
        return {"id": device.id, "name": device.display_name, "address": device.address}

    @property
    def last_sample(self) -> HeartRateSample | None:
        return self._last_sample

    async def connect(self, device: Device) -> None:
        """Replace any existing session with a streaming session to ``device``."""
        async with self._lock:
            await self._teardown()
            await self._establish(device)

    async def disconnect(self) -> None:
        """End the current session; does nothing when already disconnected."""
        async with self._lock:
            await self._teardown()

    async def _establish(self, device: Device) -> None:
        session = ConnectionSession(device=device)
        self._session = session
        address = device.address
        logger.info("Connecting to %s [%s]...", device.display_name, address)

        try:
            await self._adapter.connect(address)
            session.state = ConnectionState.SERVICE_DISCOVERY
            handle = await self._adapter.discover_characteristic(address, HR_SERVICE_ID, HR_MEASUREMENT_ID)
            if handle is None:
                logger.warning("%s has no heart rate measurement characteristic", device.display_name)
                await self._abort(session, "Heart rate measurement characteristic not found")
                return
            await self._adapter.subscribe(address, handle, self._notify_handler)
            session.characteristic_handle = handle
        except Exception as e:
            logger.warning("Connection to %s failed: %s", address, e)
            await self._abort(session, str(e) or type(e).__name__)
            return

        session.state = ConnectionState.STREAMING
        logger.info("Streaming heart rate from %s", device.display_name)
        self._publish(ConnectionStatus(connected=True, device=self.current_device))

    async def _abort(self, session: ConnectionSession, message: str) -> None:
        await self._release(session)
        self._session = None
        self._publish(ConnectionFailed(message=message))

    async def _teardown(self) -> None:
        session = self._session
        if session is None:
            return
        session.state = ConnectionState.DISCONNECTING
        await self._release(session)
        self._session = None
        self._last_sample = None
        logger.info("Disconnected from %s", session.device.display_name)
        self._publish(ConnectionStatus(connected=False))

    async def _release(self, session: ConnectionSession) -> None:
        """Best-effort unsubscribe and link teardown."""
        address = session.device.address
        if session.characteristic_handle is not None:
            try:
                await self._adapter.unsubscribe(address, session.characteristic_handle)
            except Exception as e:
                logger.debug("Unsubscribe from %s failed: %s", address, e)
            session.characteristic_handle = None
        try:
            await self._adapter.disconnect(address)
        except Exception as e:
            logger.debug("Disconnect from %s failed: %s", address, e)

    def handle_link_loss(self, address: str) -> None:
        """Adapter reported the link dropped without us asking."""
        session = self._session
        if session is None or session.device.address != address:
            return
        if session.state != ConnectionState.STREAMING:
            return  # our own teardown or connect failure handles it
        logger.warning("Lost connection to %s", session.device.display_name)
        self._session = None
        self._last_sample = None
        self._publish(ConnectionStatus(connected=False))

    def _notify_handler(self, data: bytes) -> None:
        """Decode one measurement notification and fan it out."""
        if not self.is_connected:
            return
        try:
            sample = decode_sample(data)
        except ValueError as e:
            logger.warning("Malformed HR frame: %s", e)
            return

        self._last_sample = sample
        logger.debug("HR: %d bpm", sample.value)
        self._publish(HeartRate(value=sample.value, timestamp=sample.timestamp))
        if self._on_sample:
            self._on_sample(sample)
