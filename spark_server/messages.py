"""Observer wire protocol: inbound commands and outbound events.

Every message is a JSON object discriminated by its ``type`` field. Inbound
commands are validated with pydantic at the transport boundary; outbound
events are serialized with camelCase keys.
"""

import json
from collections.abc import Callable
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class MessageError(ValueError):
    """Inbound message is not a JSON object with a ``type``."""


class UnknownCommandError(MessageError):
    """Inbound message has a ``type`` this server does not handle."""

    def __init__(self, command_type: object):
        super().__init__(f"Unknown message type: {command_type!r}")
        self.command_type = command_type


# -- Inbound --------------------------------------------------------------


class _Command(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartScan(_Command):
    type: Literal["startScan"]


class StopScan(_Command):
    type: Literal["stopScan"]


class ConnectDevice(_Command):
    type: Literal["connectDevice"]
    device_id: str = Field(..., min_length=1, description="Registry id of the device")


class Disconnect(_Command):
    type: Literal["disconnect"]


class DisplayModeChange(_Command):
    type: Literal["displayModeChange"]
    mode: str


class RequestHeartRateHistory(_Command):
    type: Literal["requestHeartRateHistory"]


class RequestStatistics(_Command):
    type: Literal["requestStatistics"]


class ThresholdUpdate(BaseModel):
    """Partial threshold update; omitted fields keep their current value."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    resting_min: float | None = Field(None, ge=0)
    resting_max: float | None = Field(None, ge=0)
    max_heart_rate: float | None = Field(None, ge=0)
    rapid_change_delta: float | None = Field(None, ge=0)
    variability_floor: float | None = Field(None, ge=0)

    def changes(self) -> dict[str, float]:
        """Fields that were actually provided, keyed by snake_case name."""
        return self.model_dump(exclude_none=True)


class UpdateThresholds(_Command):
    type: Literal["updateThresholds"]
    thresholds: ThresholdUpdate


class ExportData(_Command):
    type: Literal["exportData"]
    export_type: Literal["realtime", "history", "trend", "all"] = "all"


Command = Annotated[
    Union[
        StartScan,
        StopScan,
        ConnectDevice,
        Disconnect,
        DisplayModeChange,
        RequestHeartRateHistory,
        RequestStatistics,
        UpdateThresholds,
        ExportData,
    ],
    Field(discriminator="type"),
]

COMMAND_TYPES = frozenset(
    {
        "startScan",
        "stopScan",
        "connectDevice",
        "disconnect",
        "displayModeChange",
        "requestHeartRateHistory",
        "requestStatistics",
        "updateThresholds",
        "exportData",
    }
)

_command_adapter: TypeAdapter[Command] = TypeAdapter(Command)


def parse_command(raw: str | bytes) -> Command:
    """Decode and validate one inbound observer message.

    Raises:
        MessageError: If the payload is not a JSON object
        UnknownCommandError: If the ``type`` is not a known command
        pydantic.ValidationError: If required fields are missing or invalid
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MessageError("Message must be a JSON object")
    command_type = data.get("type")
    if not isinstance(command_type, str) or command_type not in COMMAND_TYPES:
        raise UnknownCommandError(command_type)
    return _command_adapter.validate_python(data)


# -- Outbound -------------------------------------------------------------


class Event(BaseModel):
    """Base for server-to-observer messages."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class DeviceList(Event):
    type: Literal["deviceList"] = "deviceList"
    devices: list[dict[str, Any]]


class DeviceFound(Event):
    type: Literal["deviceFound"] = "deviceFound"
    device: dict[str, Any]


class DeviceUpdate(Event):
    type: Literal["deviceUpdate"] = "deviceUpdate"
    id: str
    rssi: int


class ScanStatus(Event):
    type: Literal["scanStatus"] = "scanStatus"
    scanning: bool


class ConnectionStatus(Event):
    type: Literal["connectionStatus"] = "connectionStatus"
    connected: bool
    device: dict[str, Any] | None = None


class HeartRate(Event):
    type: Literal["heartRate"] = "heartRate"
    value: int
    timestamp: int


class HeartRateHistory(Event):
    type: Literal["heartRateHistory"] = "heartRateHistory"
    history: list[dict[str, Any]]


class HeartRateStatistics(Event):
    type: Literal["heartRateStatistics"] = "heartRateStatistics"
    statistics: dict[str, Any] | None

    def to_dict(self) -> dict[str, Any]:
        # statistics is sent as null when there is no data yet
        return self.model_dump(by_alias=True)


class HeartRateAnomalies(Event):
    type: Literal["heartRateAnomalies"] = "heartRateAnomalies"
    anomalies: list[dict[str, Any]]
    timestamp: int


class BluetoothStatus(Event):
    type: Literal["bluetoothStatus"] = "bluetoothStatus"
    state: str
    platform: str | None = None
    error: str | None = None


class DisplayModeSync(Event):
    type: Literal["displayModeSync"] = "displayModeSync"
    mode: str


class ConnectionFailed(Event):
    type: Literal["connectionError"] = "connectionError"
    message: str


class ThresholdsUpdated(Event):
    type: Literal["thresholdsUpdated"] = "thresholdsUpdated"
    thresholds: dict[str, float]


class DataExported(Event):
    type: Literal["dataExported"] = "dataExported"
    data: dict[str, Any]
    export_type: str


class ErrorReply(Event):
    type: Literal["error"] = "error"
    message: str


# Components publish through this; the hub fans out to every observer
Publish = Callable[[Event], None]
