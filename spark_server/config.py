"""Configuration file loading and defaults."""

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8080
    broadcast_timeout: float = 0.5
    send_queue_size: int = 256
    log_level: str = "INFO"


@dataclass
class BLEConfig:
    scan_timeout: float = 30.0
    rssi_update_threshold: int = 8
    auto_scan: bool = False


@dataclass
class AnalyticsConfig:
    realtime_limit: int = 300
    history_limit: int = 1000
    trend_limit: int = 1440
    trend_interval: float = 60.0  # seconds
    window_size: int = 10


@dataclass
class ThresholdsConfig:
    resting_min: float = 50
    resting_max: float = 100
    max_heart_rate: float = 200
    rapid_change_delta: float = 30
    variability_floor: float = 0.3


@dataclass
class DisplayConfig:
    mode: str = "desktop"


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    ble: BLEConfig = field(default_factory=BLEConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    thresholds: ThresholdsConfig = field(default_factory=ThresholdsConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)


def config_paths() -> list[Path]:
    """Candidate config files, highest priority first."""
    return [
        Path("./config.toml"),
        Path.home() / ".config" / "spark-server" / "config.toml",
    ]


def load_config(paths: list[Path] | None = None) -> Config:
    """Load config from the first existing file, with defaults for missing values."""
    for path in paths if paths is not None else config_paths():
        if not path.exists():
            continue
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.warning("Failed to parse config '%s': %s. Using defaults.", path, e)
            return Config()
        try:
            config = _parse_config(data)
        except TypeError as e:
            logger.warning("Invalid config '%s': %s. Using defaults.", path, e)
            return Config()
        logger.debug("Loaded config from %s", path)
        return config

    return Config()


def _parse_config(data: dict) -> Config:
    """Build Config from a TOML dict.

    Missing sections and keys keep their dataclass defaults; unknown keys
    raise TypeError.
    """
    return Config(
        server=ServerConfig(**data.get("server", {})),
        ble=BLEConfig(**data.get("ble", {})),
        analytics=AnalyticsConfig(**data.get("analytics", {})),
        thresholds=ThresholdsConfig(**data.get("thresholds", {})),
        display=DisplayConfig(**data.get("display", {})),
    )
