"""Tiered heart rate storage and real-time anomaly detection.

Samples land in three bounded FIFO tiers:

- ``realtime``: the most recent samples, for live display and detection
- ``history``: a longer window, used to average trend points
- ``trend``: one compressed point per elapsed trend interval

Detection runs once per sample over the last ``window_size`` realtime
samples and publishes every triggered anomaly as a single batch.
"""

import logging
import math
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass, replace
from enum import Enum

from .measurement import HeartRateSample, now_ms
from .messages import HeartRateAnomalies, Publish

logger = logging.getLogger(__name__)

CONSECUTIVE_RUN = 5
STATISTICS_HRV_SAMPLES = 20
TIERS = ("realtime", "history", "trend")


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.CRITICAL: 2}


@dataclass
class ThresholdConfig:
    resting_min: float = 50
    resting_max: float = 100
    max_heart_rate: float = 200
    rapid_change_delta: float = 30
    variability_floor: float = 0.3

    def to_dict(self) -> dict[str, float]:
        return {
            "restingMin": self.resting_min,
            "restingMax": self.resting_max,
            "maxHeartRate": self.max_heart_rate,
            "rapidChangeDelta": self.rapid_change_delta,
            "variabilityFloor": self.variability_floor,
        }


@dataclass(frozen=True)
class TrendPoint:
    avg_value: int
    timestamp: int
    sample_count: int

    def to_dict(self) -> dict:
        return {"avgValue": self.avg_value, "timestamp": self.timestamp, "sampleCount": self.sample_count}


@dataclass(frozen=True)
class Anomaly:
    kind: str
    severity: Severity
    value: float
    message: str
    threshold: float | None = None
    previous_value: int | None = None
    change: int | None = None
    count: int | None = None

    def to_dict(self) -> dict:
        data = {
            "type": self.kind,
            "severity": self.severity.value,
            "value": self.value,
            "message": self.message,
            "threshold": self.threshold,
            "previousValue": self.previous_value,
            "change": self.change,
            "count": self.count,
        }
        return {key: value for key, value in data.items() if value is not None}


def most_severe(anomalies: list[Anomaly]) -> Anomaly | None:
    """Highest-severity anomaly of a batch; earliest wins ties."""
    if not anomalies:
        return None
    return max(anomalies, key=lambda anomaly: anomaly.severity.rank)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def rmssd(values: list[int]) -> float:
    """Root mean square of successive differences; 0.0 below two values."""
    if len(values) < 2:
        return 0.0
    squares = sum((b - a) ** 2 for a, b in zip(values, values[1:]))
    return math.sqrt(squares / (len(values) - 1))


class HeartRateAnalyzer:
    """Owns the sample tiers, thresholds and anomaly detection."""

    def __init__(
        self,
        publish: Publish | None = None,
        thresholds: ThresholdConfig | None = None,
        realtime_limit: int = 300,
        history_limit: int = 1000,
        trend_limit: int = 1440,
        trend_interval_ms: int = 60_000,
        window_size: int = 10,
        clock: Callable[[], int] = now_ms,
    ):
        self._publish = publish
        self.thresholds = thresholds or ThresholdConfig()
        self._realtime: deque[HeartRateSample] = deque(maxlen=realtime_limit)
        self._history: deque[HeartRateSample] = deque(maxlen=history_limit)
        self._trend: deque[TrendPoint] = deque(maxlen=trend_limit)
        self._trend_interval = trend_interval_ms
        self._window_size = window_size
        self._clock = clock
        self._last_trend_time = 0

    def ingest(self, sample: HeartRateSample) -> list[Anomaly]:
        return self.add_sample(sample.value, sample.timestamp)

    def add_sample(self, value: int, timestamp: int | None = None) -> list[Anomaly]:
        """Store a sample in every tier, then run detection.

        Returns:
            The anomalies triggered by this sample (also published)
        """
        if timestamp is None:
            timestamp = self._clock()
        sample = HeartRateSample(value=value, timestamp=timestamp)
        self._realtime.append(sample)
        self._history.append(sample)
        self._update_trend(timestamp)

        anomalies = self.detect_anomalies()
        if anomalies:
            self._report(anomalies)
        return anomalies

    def _update_trend(self, timestamp: int) -> None:
        if timestamp - self._last_trend_time < self._trend_interval:
            return
        window_start = timestamp - self._trend_interval
        values = [s.value for s in self._history if s.timestamp >= window_start]
        if not values:
            return
        point = TrendPoint(
            avg_value=round_half_up(sum(values) / len(values)),
            timestamp=timestamp,
            sample_count=len(values),
        )
        self._trend.append(point)
        self._last_trend_time = timestamp
        logger.debug("Trend point: %d bpm over %d sample(s)", point.avg_value, point.sample_count)

    def detect_anomalies(self) -> list[Anomaly]:
        """Evaluate the latest detection window against the thresholds."""
        if len(self._realtime) < self._window_size:
            return []

        window = [s.value for s in list(self._realtime)[-self._window_size :]]
        current = window[-1]
        previous = window[-2] if len(window) > 1 else None
        t = self.thresholds
        anomalies: list[Anomaly] = []

        if current < t.resting_min:
            anomalies.append(
                Anomaly(
                    "low_heart_rate",
                    Severity.WARNING,
                    current,
                    f"Heart rate low ({current} bpm < {t.resting_min:g} bpm)",
                    threshold=t.resting_min,
                )
            )
        elif current > t.max_heart_rate:
            anomalies.append(
                Anomaly(
                    "high_heart_rate",
                    Severity.CRITICAL,
                    current,
                    f"Heart rate too high ({current} bpm > {t.max_heart_rate:g} bpm)",
                    threshold=t.max_heart_rate,
                )
            )
        elif current > t.resting_max:
            anomalies.append(
                Anomaly(
                    "elevated_heart_rate",
                    Severity.INFO,
                    current,
                    f"Heart rate elevated ({current} bpm > {t.resting_max:g} bpm)",
                    threshold=t.resting_max,
                )
            )

        if previous is not None:
            change = abs(current - previous)
            if change > t.rapid_change_delta:
                anomalies.append(
                    Anomaly(
                        "rapid_change",
                        Severity.WARNING,
                        current,
                        f"Rapid heart rate change ({change} bpm)",
                        previous_value=previous,
                        change=change,
                    )
                )

        variability = rmssd(window)
        if variability < t.variability_floor:
            anomalies.append(
                Anomaly(
                    "low_variability",
                    Severity.INFO,
                    round(variability, 3),
                    f"Low heart rate variability (RMSSD {variability:.3f})",
                    threshold=t.variability_floor,
                )
            )

        anomalies.extend(self._consecutive_runs(window))
        return anomalies

    def _consecutive_runs(self, window: list[int]) -> list[Anomaly]:
        """Anomalies for the run of out-of-range samples ending at the newest sample."""
        t = self.thresholds
        high = low = 0
        for value in window:
            if value > t.resting_max:
                high, low = high + 1, 0
            elif value < t.resting_min:
                high, low = 0, low + 1
            else:
                high = low = 0

        current = window[-1]
        if high >= CONSECUTIVE_RUN:
            return [
                Anomaly("consecutive_high", Severity.WARNING, current, f"{high} consecutive elevated readings", count=high)
            ]
        if low >= CONSECUTIVE_RUN:
            return [Anomaly("consecutive_low", Severity.WARNING, current, f"{low} consecutive low readings", count=low)]
        return []

    def _report(self, anomalies: list[Anomaly]) -> None:
        worst = most_severe(anomalies)
        if worst.severity == Severity.CRITICAL:
            logger.warning("Critical heart rate anomaly: %s", worst.message)
        else:
            logger.info("%d heart rate anomal%s detected", len(anomalies), "y" if len(anomalies) == 1 else "ies")
        if self._publish:
            self._publish(HeartRateAnomalies(anomalies=[a.to_dict() for a in anomalies], timestamp=self._clock()))

    def get_statistics(self) -> dict | None:
        """Summary of the realtime tier, or None when it is empty."""
        if not self._realtime:
            return None
        values = [s.value for s in self._realtime]
        return {
            "current": values[-1],
            "average": round_half_up(sum(values) / len(values)),
            "min": min(values),
            "max": max(values),
            "count": len(values),
            "hrv": round(rmssd(values[-STATISTICS_HRV_SAMPLES:]), 3),
            "timeSpan": self._realtime[-1].timestamp - self._realtime[0].timestamp,
        }

    def update_thresholds(self, changes: dict[str, float]) -> ThresholdConfig:
        """Merge a partial update into the thresholds.

        Raises:
            TypeError: If a key is not a threshold field
        """
        self.thresholds = replace(self.thresholds, **changes)
        logger.info("Thresholds updated: %s", asdict(self.thresholds))
        return self.thresholds

    def realtime(self) -> list[dict]:
        return [s.to_dict() for s in self._realtime]

    def history(self) -> list[dict]:
        return [s.to_dict() for s in self._history]

    def trend(self) -> list[dict]:
        return [p.to_dict() for p in self._trend]

    def export_data(self, tier: str = "all") -> dict:
        """Snapshot of one tier (or all of them) plus statistics and thresholds."""
        data = {
            "timestamp": self._clock(),
            "statistics": self.get_statistics(),
            "thresholds": self.thresholds.to_dict(),
        }
        if tier == "all":
            data["realtimeData"] = self.realtime()
            data["historyData"] = self.history()
            data["trendData"] = self.trend()
        elif tier in TIERS:
            data["data"] = getattr(self, tier)()
        else:
            raise ValueError(f"Unknown data tier: {tier!r}")
        return data

    def clear_all(self) -> None:
        """Drop every stored sample and restart trend aggregation."""
        self._realtime.clear()
        self._history.clear()
        self._trend.clear()
        self._last_trend_time = 0
        logger.info("All heart rate data cleared")
