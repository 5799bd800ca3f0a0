"""BLE heart rate hub: device discovery, sensor streaming, analytics and WebSocket fan-out."""

from .adapter import AdapterState, BLEAdapter, BleakAdapter, Peripheral
from .analytics import Anomaly, HeartRateAnalyzer, Severity, ThresholdConfig, most_severe
from .config import Config, load_config
from .connection import ConnectionManager, ConnectionState
from .devices import Classification, Device, classify
from .log import setup_logging
from .measurement import HeartRateSample, decode_heart_rate
from .router import CommandRouter
from .scanner import DeviceScanner
from .server import BroadcastHub
from .settings import DisplaySettings

__all__ = [
    "AdapterState",
    "BLEAdapter",
    "BleakAdapter",
    "Peripheral",
    "Anomaly",
    "HeartRateAnalyzer",
    "Severity",
    "ThresholdConfig",
    "most_severe",
    "Config",
    "load_config",
    "ConnectionManager",
    "ConnectionState",
    "Classification",
    "Device",
    "classify",
    "setup_logging",
    "HeartRateSample",
    "decode_heart_rate",
    "CommandRouter",
    "DeviceScanner",
    "BroadcastHub",
    "DisplaySettings",
]
