"""
Gesture and wearable signal detectors

Turn raw motion and telemetry samples into trigger candidates. Each
detector keeps only the small amount of state its rule needs.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

from roadie_guard.models import GestureEvent, GestureType, WearableSample


@dataclass(frozen=True)
class Detection:
    """Trigger candidate produced by a detector"""
    confidence: float
    reason: str
    data: Dict


class GestureDetector:
    """
    Panic gesture detector

    A panic button fires immediately. Taps and shakes are counted separately
    and fire once enough of one type land inside the window; that counter
    then starts over.
    """

    def __init__(self, required_count: int = 3, window_ms: int = 1000,
                 sequence_confidence: float = 0.9):
        self.logger = logging.getLogger(__name__)
        self.required_count = required_count
        self.window_ms = window_ms
        self.sequence_confidence = sequence_confidence
        self._recent: Dict[GestureType, Deque[int]] = {}

    def observe(self, event: GestureEvent) -> Optional[Detection]:
        if event.type == GestureType.PANIC_BUTTON:
            self.reset()
            return Detection(1.0, 'panic_button', {'gesture': event.type.value})

        recent = self._recent.setdefault(event.type, deque())

        # Out-of-order samples restart the sequence
        if recent and event.timestamp_ms < recent[-1]:
            recent.clear()

        recent.append(event.timestamp_ms)
        while recent and event.timestamp_ms - recent[0] > self.window_ms:
            recent.popleft()

        if len(recent) >= self.required_count:
            count = len(recent)
            span = event.timestamp_ms - recent[0]
            recent.clear()
            self.logger.info(f"Panic gesture sequence detected ({count} {event.type.value}s in {span}ms)")
            return Detection(self.sequence_confidence, f'{event.type.value}_sequence',
                             {'gesture': event.type.value, 'count': count, 'span_ms': span})
        return None

    def reset(self):
        self._recent.clear()


class WearableMonitor:
    """Heart-rate anomaly and battery watcher for wearable telemetry"""

    def __init__(self, heart_rate_min: float = 50, heart_rate_max: float = 120,
                 critical_min: float = 40, critical_max: float = 150,
                 low_battery_percent: float = 10):
        self.logger = logging.getLogger(__name__)
        self.heart_rate_min = heart_rate_min
        self.heart_rate_max = heart_rate_max
        self.critical_min = critical_min
        self.critical_max = critical_max
        self.low_battery_percent = low_battery_percent

    def check_heart_rate(self, sample: WearableSample) -> Optional[Detection]:
        """Detect a heart rate outside the normal band"""
        heart_rate = sample.heart_rate
        if heart_rate is None:
            return None
        if self.heart_rate_min <= heart_rate <= self.heart_rate_max:
            return None

        critical = heart_rate > self.critical_max or heart_rate < self.critical_min
        severity = 'critical' if critical else 'medium'
        self.logger.warning(
            f"Heart rate anomaly on {sample.device_id}: {heart_rate:.0f} bpm ({severity})"
        )
        return Detection(
            0.95 if critical else 0.7,
            'heart_rate_anomaly',
            {'heart_rate': heart_rate, 'severity': severity, 'device_id': sample.device_id}
        )

    def is_battery_low(self, sample: WearableSample) -> bool:
        return sample.battery_level is not None and sample.battery_level < self.low_battery_percent
