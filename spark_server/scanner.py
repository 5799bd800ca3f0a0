"""Device registry and scan lifecycle."""

import asyncio
import logging
import secrets
import sys
from collections.abc import Callable, Coroutine

from .adapter import AdapterState, BLEAdapter, Peripheral
from .devices import HR_SERVICE_ID, Device, classify, display_name, should_show
from .measurement import now_ms
from .messages import BluetoothStatus, DeviceFound, DeviceList, DeviceUpdate, Publish, ScanStatus

logger = logging.getLogger(__name__)


class DeviceScanner:
    """Owns the discovered-device registry for the current scan session.

    The registry is cleared on every scan start. Rediscoveries update the
    stored record in place and only publish an RSSI update when the signal
    moved by at least ``rssi_update_threshold`` dBm.
    """

    def __init__(
        self,
        adapter: BLEAdapter,
        publish: Publish,
        scan_timeout: float = 30.0,
        rssi_update_threshold: int = 8,
        clock: Callable[[], int] = now_ms,
    ):
        self._adapter = adapter
        self._publish = publish
        self._scan_timeout = scan_timeout
        self._rssi_update_threshold = rssi_update_threshold
        self._clock = clock
        self._devices: dict[str, Device] = {}
        self._fallback_ids: dict[str, str] = {}
        self._scanning = False
        self._suspended = False
        self._timeout_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    @property
    def device_count(self) -> int:
        return len(self._devices)

    def devices(self) -> list[dict]:
        """Wire snapshot of every registered device."""
        return [device.to_dict() for device in self._devices.values()]

    def get_device(self, device_id: str) -> Device | None:
        return self._devices.get(device_id)

    async def start_scan(self) -> None:
        """Start a fresh scan session; no-op if already scanning or the radio is not ready."""
        if self._scanning:
            return
        if self._adapter.state != AdapterState.POWERED_ON:
            logger.warning("Bluetooth not ready (state: %s), scan not started", self._adapter.state.value)
            return

        logger.info("Starting scan (clearing %d device(s))", len(self._devices))
        self._devices.clear()
        self._fallback_ids.clear()
        self._scanning = True
        self._suspended = False
        self._publish(ScanStatus(scanning=True))
        self._publish(DeviceList(devices=[]))

        try:
            await self._adapter.start_scan(allow_duplicates=True)
        except Exception:
            self._scanning = False
            self._publish(ScanStatus(scanning=False))
            raise
        if not self._scanning:
            return  # adapter went away while starting
        self._arm_timeout()

    async def stop_scan(self) -> None:
        """Stop the running scan; no-op if not scanning."""
        self._suspended = False
        if not self._scanning:
            return
        self._scanning = False
        logger.info("Stopping scan, %d device(s) found", len(self._devices))
        for device in self._devices.values():
            logger.debug(
                "  %s [%s]%s (id: %s)",
                device.display_name,
                device.address,
                " HR" if device.has_heart_rate else "",
                device.id,
            )
        try:
            await self._adapter.stop_scan()
        except Exception as e:
            logger.warning("Failed to stop scanning: %s", e)
        self._cancel_timeout()
        self._publish(ScanStatus(scanning=False))

    def _arm_timeout(self) -> None:
        self._cancel_timeout()
        self._timeout_task = asyncio.create_task(self._expire())

    def _cancel_timeout(self) -> None:
        task, self._timeout_task = self._timeout_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _expire(self) -> None:
        await asyncio.sleep(self._scan_timeout)
        logger.info("Scan timed out after %.0fs", self._scan_timeout)
        self._timeout_task = None
        try:
            await self.stop_scan()
        except Exception:
            logger.exception("Error stopping timed out scan")

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def handle_adapter_state(self, state: AdapterState, error: str | None = None) -> None:
        """Publish the adapter state; suspend or resume scanning around outages."""
        self._publish(BluetoothStatus(state=state.value, platform=sys.platform, error=error))

        if state != AdapterState.POWERED_ON and self._scanning:
            logger.warning("Bluetooth %s, suspending scan", state.value)
            self._scanning = False
            self._suspended = True
            self._cancel_timeout()
            self._spawn(self._adapter.stop_scan())
            self._publish(ScanStatus(scanning=False))
        elif state == AdapterState.POWERED_ON and self._suspended:
            logger.info("Bluetooth ready again, resuming scan")
            self._suspended = False
            self._spawn(self.start_scan())

    def _device_id(self, peripheral: Peripheral) -> str:
        identifier = peripheral.identifier
        if not identifier:
            identifier = self._fallback_ids.setdefault(peripheral.address, secrets.token_hex(5)[:9])
        return f"{peripheral.address}_{identifier}"

    def on_peripheral_discovered(self, peripheral: Peripheral) -> None:
        """Register or refresh a discovered peripheral; ignored outside a scan."""
        if not self._scanning:
            return

        has_heart_rate = HR_SERVICE_ID in peripheral.service_ids
        classification = classify(peripheral.name, peripheral.service_ids)
        if not should_show(has_heart_rate, classification, peripheral.name):
            return

        device_id = self._device_id(peripheral)
        now = self._clock()
        device = self._devices.get(device_id)

        if device is None:
            device = Device(
                id=device_id,
                address=peripheral.address,
                display_name=display_name(peripheral.name, has_heart_rate, classification, peripheral.address),
                original_name=peripheral.name,
                rssi=peripheral.rssi,
                has_heart_rate=has_heart_rate,
                classification=classification,
                service_ids=set(peripheral.service_ids),
                first_seen=now,
                last_seen=now,
            )
            self._devices[device_id] = device
            logger.info(
                "Found %s [%s] %s RSSI %d",
                device.display_name,
                device.address,
                classification.value,
                device.rssi,
            )
            self._publish(DeviceFound(device=device.to_dict()))
            return

        old_rssi = device.rssi
        device.rssi = peripheral.rssi
        device.last_seen = now
        device.observation_count += 1
        if abs(peripheral.rssi - old_rssi) >= self._rssi_update_threshold:
            logger.debug("Updated %s RSSI %d -> %d", device.display_name, old_rssi, peripheral.rssi)
            self._publish(DeviceUpdate(id=device_id, rssi=peripheral.rssi))
