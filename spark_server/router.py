"""Observer command routing and new-observer bootstrap."""

import logging
import sys
from collections.abc import Awaitable, Callable

from pydantic import ValidationError

from .adapter import AdapterState, BLEAdapter
from .analytics import HeartRateAnalyzer
from .connection import ConnectionManager
from .messages import (
    BluetoothStatus,
    Command,
    ConnectDevice,
    ConnectionFailed,
    ConnectionStatus,
    DataExported,
    DeviceList,
    DisplayModeChange,
    DisplayModeSync,
    ErrorReply,
    Event,
    ExportData,
    HeartRate,
    HeartRateHistory,
    HeartRateStatistics,
    MessageError,
    Publish,
    ThresholdsUpdated,
    UnknownCommandError,
    UpdateThresholds,
    parse_command,
)
from .scanner import DeviceScanner
from .server import Reply
from .settings import DisplaySettings

logger = logging.getLogger(__name__)


class CommandRouter:
    """Dispatches observer commands to the scanner, connection and analytics."""

    def __init__(
        self,
        adapter: BLEAdapter,
        scanner: DeviceScanner,
        connection: ConnectionManager,
        analyzer: HeartRateAnalyzer,
        settings: DisplaySettings,
        publish: Publish,
    ):
        self._adapter = adapter
        self._scanner = scanner
        self._connection = connection
        self._analyzer = analyzer
        self._settings = settings
        self._publish = publish
        self._handlers: dict[str, Callable[[Command, Reply], Awaitable[None]]] = {
            "startScan": self._start_scan,
            "stopScan": self._stop_scan,
            "connectDevice": self._connect_device,
            "disconnect": self._disconnect,
            "displayModeChange": self._display_mode_change,
            "requestHeartRateHistory": self._request_history,
            "requestStatistics": self._request_statistics,
            "updateThresholds": self._update_thresholds,
            "exportData": self._export_data,
        }

    def bootstrap(self) -> list[Event]:
        """State snapshot for a new observer, in protocol order.

        deviceList, bluetoothStatus, displayModeSync, connectionStatus and,
        while streaming with a known value, the last heartRate.
        """
        events: list[Event] = [
            DeviceList(devices=self._scanner.devices()),
            BluetoothStatus(state=self._adapter.state.value, platform=sys.platform),
            DisplayModeSync(mode=self._settings.mode),
        ]
        device = self._connection.current_device
        if device is None:
            events.append(ConnectionStatus(connected=False))
            return events

        events.append(ConnectionStatus(connected=True, device=device))
        sample = self._connection.last_sample
        if sample is not None:
            events.append(HeartRate(value=sample.value, timestamp=sample.timestamp))
        return events

    async def handle(self, raw: str | bytes, reply: Reply) -> None:
        """Parse and execute one observer message; never raises."""
        try:
            command = parse_command(raw)
        except UnknownCommandError as e:
            logger.warning("%s, ignoring", e)
            return
        except ValidationError as e:
            logger.warning("Invalid payload: %s", e.errors(include_url=False))
            reply(ErrorReply(message=f"Invalid payload: {e.error_count()} error(s)"))
            return
        except MessageError as e:
            logger.warning("Malformed message: %s", e)
            reply(ErrorReply(message=str(e)))
            return

        logger.debug("Command: %s", command.type)
        try:
            await self._handlers[command.type](command, reply)
        except Exception as e:
            logger.exception("Failed to handle %s", command.type)
            reply(ErrorReply(message=str(e)))

    async def _start_scan(self, command: Command, reply: Reply) -> None:
        if self._adapter.state != AdapterState.POWERED_ON:
            await self._adapter.initialize()
        await self._scanner.start_scan()

    async def _stop_scan(self, command: Command, reply: Reply) -> None:
        await self._scanner.stop_scan()

    async def _connect_device(self, command: ConnectDevice, reply: Reply) -> None:
        device = self._scanner.get_device(command.device_id)
        if device is None:
            logger.warning("Unknown device: %s", command.device_id)
            self._publish(ConnectionFailed(message=f"Unknown device: {command.device_id}"))
            return
        await self._scanner.stop_scan()
        await self._connection.connect(device)

    async def _disconnect(self, command: Command, reply: Reply) -> None:
        await self._connection.disconnect()

    async def _display_mode_change(self, command: DisplayModeChange, reply: Reply) -> None:
        if not self._settings.set_mode(command.mode):
            logger.warning("Rejected display mode '%s'", command.mode)
            return
        self._publish(DisplayModeSync(mode=command.mode))

    async def _request_history(self, command: Command, reply: Reply) -> None:
        history = self._analyzer.realtime()
        logger.debug("Sending %d history sample(s)", len(history))
        reply(HeartRateHistory(history=history))

    async def _request_statistics(self, command: Command, reply: Reply) -> None:
        reply(HeartRateStatistics(statistics=self._analyzer.get_statistics()))

    async def _update_thresholds(self, command: UpdateThresholds, reply: Reply) -> None:
        thresholds = self._analyzer.update_thresholds(command.thresholds.changes())
        self._publish(ThresholdsUpdated(thresholds=thresholds.to_dict()))

    async def _export_data(self, command: ExportData, reply: Reply) -> None:
        data = self._analyzer.export_data(command.export_type)
        reply(DataExported(data=data, export_type=command.export_type))
