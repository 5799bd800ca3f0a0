"""Heart Rate Measurement (0x2A37) frame decoding."""

from dataclasses import dataclass
from time import time_ns

# Flags bit 0: heart rate value format (0 = uint8, 1 = uint16 little-endian)
FLAG_UINT16 = 0b1


@dataclass(frozen=True)
class HeartRateSample:
    """One decoded heart rate value."""

    value: int
    timestamp: int  # epoch milliseconds

    def to_dict(self) -> dict:
        return {"value": self.value, "timestamp": self.timestamp}


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time_ns() // 1_000_000


def decode_heart_rate(data: bytes) -> int:
    """Decode the heart rate value from a measurement notification.

    Args:
        data: Raw characteristic value; byte 0 is the flags byte

    Returns:
        Heart rate in bpm

    Raises:
        ValueError: If the frame is empty or too short for its format
    """
    if not data:
        raise ValueError("Empty heart rate frame")

    is_16_bit = data[0] & FLAG_UINT16 == FLAG_UINT16
    needed = 3 if is_16_bit else 2
    if len(data) < needed:
        raise ValueError(f"Heart rate frame too short: {len(data)} bytes, need {needed}")

    if is_16_bit:
        return int.from_bytes(data[1:3], "little")
    return data[1]


def decode_sample(data: bytes, timestamp: int | None = None) -> HeartRateSample:
    """Decode a frame into a timestamped sample (defaults to now)."""
    value = decode_heart_rate(data)
    return HeartRateSample(value=value, timestamp=now_ms() if timestamp is None else timestamp)
