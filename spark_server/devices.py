"""Discovered device records and classification heuristics."""

from dataclasses import dataclass, field
from enum import Enum

HR_SERVICE_ID = "180d"
HR_MEASUREMENT_ID = "2a37"


class Classification(str, Enum):
    HEARTRATE = "heartrate"
    WEARABLE = "wearable"
    FITNESS = "fitness"
    MOBILE = "mobile"
    AUDIO = "audio"
    SMART = "smart"
    GENERIC_DEVICE = "device"
    UNKNOWN = "unknown"


ICONS = {
    Classification.HEARTRATE: "❤️",
    Classification.WEARABLE: "⌚",
    Classification.FITNESS: "🏃",
    Classification.MOBILE: "📱",
    Classification.AUDIO: "🎧",
    Classification.SMART: "📟",
    Classification.GENERIC_DEVICE: "📡",
    Classification.UNKNOWN: "❓",
}

LABELS = {
    Classification.HEARTRATE: "Heart Rate Device",
    Classification.WEARABLE: "Wearable",
    Classification.FITNESS: "Fitness Equipment",
    Classification.MOBILE: "Mobile Device",
    Classification.AUDIO: "Audio Device",
    Classification.SMART: "Smart Device",
    Classification.GENERIC_DEVICE: "Bluetooth Device",
    Classification.UNKNOWN: "Unknown Device",
}

# Checked in order, first match wins
NAME_PATTERNS: tuple[tuple[Classification, tuple[str, ...]], ...] = (
    (
        Classification.WEARABLE,
        (
            "watch", "band", "tracker", "fit", "health",
            "apple", "samsung", "huawei", "xiaomi", "mi", "vivo", "oppo",
            "polar", "garmin", "fitbit", "amazfit", "honor",
            "手环", "手表", "心率", "运动",
        ),
    ),
    (
        Classification.FITNESS,
        ("treadmill", "bike", "cycle", "elliptical", "rower", "跑步机", "单车", "椭圆机"),
    ),
    (Classification.MOBILE, ("iphone", "android", "phone", "ipad", "tablet")),
    (Classification.AUDIO, ("airpods", "headphone", "speaker", "earbuds", "耳机", "音响")),
)

RELEVANT = {Classification.HEARTRATE, Classification.WEARABLE, Classification.FITNESS}

# Stand-in names some stacks advertise for anonymous peripherals
PLACEHOLDER_NAMES = ("Unknown", "未知")


def _is_placeholder(name: str) -> bool:
    return any(marker in name for marker in PLACEHOLDER_NAMES)


def classify(name: str | None, service_ids: list[str] | set[str]) -> Classification:
    """Classify a peripheral from its advertised name and service ids.

    The Heart Rate Service always wins over name heuristics.
    """
    if HR_SERVICE_ID in service_ids:
        return Classification.HEARTRATE

    name = name or ""
    name_lower = name.lower()
    for category, patterns in NAME_PATTERNS:
        if any(pattern in name_lower for pattern in patterns):
            return category

    if service_ids:
        return Classification.SMART
    if len(name) > 2 and not _is_placeholder(name):
        return Classification.GENERIC_DEVICE
    return Classification.UNKNOWN


def should_show(has_heart_rate: bool, classification: Classification, name: str | None) -> bool:
    """Inclusion filter for discovered peripherals; drops anonymous BLE noise."""
    if has_heart_rate or classification in RELEVANT:
        return True
    return bool(name and name.strip()) and not _is_placeholder(name) and classification != Classification.UNKNOWN


def display_name(name: str | None, has_heart_rate: bool, classification: Classification, address: str) -> str:
    """Advertised name, or a generated label when the device is anonymous."""
    if name and name.strip():
        return name
    suffix = address[-5:]
    if has_heart_rate:
        return f"{LABELS[Classification.HEARTRATE]} {suffix}"
    return f"{LABELS[classification]} {suffix}"


@dataclass
class Device:
    """A peripheral retained by the scanner for the current scan session."""

    id: str
    address: str
    display_name: str
    original_name: str | None
    rssi: int
    has_heart_rate: bool
    classification: Classification
    service_ids: set[str] = field(default_factory=set)
    first_seen: int = 0
    last_seen: int = 0
    observation_count: int = 1

    def to_dict(self) -> dict:
        """Wire representation sent to observers."""
        return {
            "id": self.id,
            "name": self.display_name,
            "address": self.address,
            "rssi": self.rssi,
            "hasHeartRate": self.has_heart_rate,
            "deviceType": {
                "category": self.classification.value,
                "icon": ICONS[self.classification],
            },
            "serviceCount": len(self.service_ids),
        }
