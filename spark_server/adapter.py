"""BLE adapter capability and its bleak-backed implementation.

The core only talks to :class:`BLEAdapter`. Discovery, adapter state and
link-loss notifications are pushed back through the handlers given to
:meth:`BLEAdapter.bind`, all on the event loop thread.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError
from bleak.uuids import normalize_uuid_str

logger = logging.getLogger(__name__)

BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"


class AdapterState(str, Enum):
    UNKNOWN = "unknown"
    POWERED_ON = "poweredOn"
    POWERED_OFF = "poweredOff"
    UNAUTHORIZED = "unauthorized"
    UNSUPPORTED = "unsupported"


@dataclass
class Peripheral:
    """One advertisement as reported by the adapter."""

    address: str
    name: str | None
    rssi: int
    service_ids: list[str] = field(default_factory=list)
    identifier: str | None = None


DiscoveryHandler = Callable[[Peripheral], None]
StateHandler = Callable[[AdapterState, str | None], None]
LinkLossHandler = Callable[[str], None]
NotificationHandler = Callable[[bytes], None]


def short_uuid(uuid: str) -> str:
    """Return the 16-bit short form of a Bluetooth base UUID, else the UUID lowercased."""
    uuid = uuid.lower()
    if uuid.endswith(BASE_UUID_SUFFIX) and uuid.startswith("0000"):
        return uuid[4:8]
    return uuid


class BLEAdapter(ABC):
    """Scan and GATT primitives provided by a platform BLE binding."""

    def __init__(self) -> None:
        self._on_discovered: DiscoveryHandler | None = None
        self._on_state_change: StateHandler | None = None
        self._on_disconnected: LinkLossHandler | None = None

    def bind(
        self,
        on_discovered: DiscoveryHandler,
        on_state_change: StateHandler,
        on_disconnected: LinkLossHandler,
    ) -> None:
        """Register the receivers for adapter-originated events."""
        self._on_discovered = on_discovered
        self._on_state_change = on_state_change
        self._on_disconnected = on_disconnected

    def _emit_discovered(self, peripheral: Peripheral) -> None:
        if self._on_discovered:
            self._on_discovered(peripheral)

    def _emit_state(self, state: AdapterState, error: str | None = None) -> None:
        if self._on_state_change:
            self._on_state_change(state, error)

    def _emit_disconnected(self, address: str) -> None:
        if self._on_disconnected:
            self._on_disconnected(address)

    @property
    @abstractmethod
    def state(self) -> AdapterState: ...

    @abstractmethod
    async def initialize(self) -> None:
        """Determine the radio state and report it."""

    @abstractmethod
    async def start_scan(self, allow_duplicates: bool = True) -> None: ...

    @abstractmethod
    async def stop_scan(self) -> None: ...

    @abstractmethod
    async def connect(self, address: str) -> None: ...

    @abstractmethod
    async def discover_characteristic(self, address: str, service_id: str, characteristic_id: str) -> object | None:
        """Return a handle for the characteristic, or None if the device lacks it."""

    @abstractmethod
    async def subscribe(self, address: str, handle: object, callback: NotificationHandler) -> None: ...

    @abstractmethod
    async def unsubscribe(self, address: str, handle: object) -> None: ...

    @abstractmethod
    async def disconnect(self, address: str) -> None: ...


class BleakAdapter(BLEAdapter):
    """BLEAdapter backed by bleak's scanner and client."""

    def __init__(self, probe_timeout: float = 0.5) -> None:
        super().__init__()
        self._state = AdapterState.UNKNOWN
        self._probe_timeout = probe_timeout
        self._scanner: BleakScanner | None = None
        self._devices: dict[str, BLEDevice] = {}
        self._clients: dict[str, BleakClient] = {}

    @property
    def state(self) -> AdapterState:
        return self._state

    def _set_state(self, state: AdapterState, error: str | None = None) -> None:
        changed = state != self._state
        self._state = state
        if changed:
            logger.info("Bluetooth adapter state: %s", state.value)
            self._emit_state(state, error)

    async def initialize(self) -> None:
        if self._scanner is not None:
            return  # a running scan already proves the radio is up
        scanner = BleakScanner()
        try:
            await scanner.start()
            await asyncio.sleep(self._probe_timeout)
            await scanner.stop()
        except BleakError as e:
            logger.warning("Bluetooth adapter unavailable: %s", e)
            self._set_state(AdapterState.POWERED_OFF, str(e))
            return
        self._set_state(AdapterState.POWERED_ON)

    def _detection_callback(self, device: BLEDevice, adv: AdvertisementData) -> None:
        self._devices[device.address] = device
        peripheral = Peripheral(
            address=device.address,
            name=adv.local_name or device.name,
            rssi=adv.rssi,
            service_ids=[short_uuid(uuid) for uuid in adv.service_uuids or []],
            identifier=device.address.replace(":", "").lower(),
        )
        self._emit_discovered(peripheral)

    async def start_scan(self, allow_duplicates: bool = True) -> None:
        if self._scanner is not None:
            return
        scanner = BleakScanner(
            detection_callback=self._detection_callback,
            bluez={"filters": {"DuplicateData": allow_duplicates}},
        )
        try:
            await scanner.start()
        except BleakError as e:
            logger.warning("Failed to start scanning: %s", e)
            self._set_state(AdapterState.POWERED_OFF, str(e))
            return
        self._scanner = scanner
        self._set_state(AdapterState.POWERED_ON)

    async def stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except BleakError as e:
            logger.warning("Failed to stop scanning: %s", e)

    def _client(self, address: str) -> BleakClient:
        client = self._clients.get(address)
        if client is None:
            raise BleakError(f"Not connected to {address}")
        return client

    async def connect(self, address: str) -> None:
        target = self._devices.get(address, address)

        def on_link_lost(_: BleakClient) -> None:
            if self._clients.pop(address, None) is not None:
                self._emit_disconnected(address)

        client = BleakClient(target, disconnected_callback=on_link_lost)
        await client.connect()
        self._clients[address] = client

    async def discover_characteristic(self, address: str, service_id: str, characteristic_id: str) -> object | None:
        client = self._client(address)
        service = client.services.get_service(normalize_uuid_str(service_id))
        if service is None:
            return None
        return service.get_characteristic(normalize_uuid_str(characteristic_id))

    async def subscribe(self, address: str, handle: object, callback: NotificationHandler) -> None:
        def on_notify(_: object, data: bytearray) -> None:
            callback(bytes(data))

        await self._client(address).start_notify(handle, on_notify)

    async def unsubscribe(self, address: str, handle: object) -> None:
        await self._client(address).stop_notify(handle)

    async def disconnect(self, address: str) -> None:
        client = self._clients.pop(address, None)
        if client is not None:
            await client.disconnect()
