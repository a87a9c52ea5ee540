"""
Trigger data models

Raw producer events (utterances, gestures, wearable telemetry, manual
requests) and the canonical EmergencyTrigger every producer is mapped to.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


class TriggerSource(Enum):
    """Producer a trigger originated from"""
    VOICE = "voice"
    GESTURE = "gesture"
    GEOFENCE = "geofence"
    WEARABLE = "wearable"
    MANUAL = "manual"


class TriggerKind(Enum):
    """Emergency category, ordered by severity"""
    LOCATION_ONLY = "location_only"
    SILENT = "silent"
    GENERAL = "general"
    POLICE = "police"
    FIRE = "fire"
    MEDICAL = "medical"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    def outranks(self, other: 'TriggerKind') -> bool:
        return self.severity > other.severity


_SEVERITY = {
    TriggerKind.LOCATION_ONLY: 0,
    TriggerKind.SILENT: 1,
    TriggerKind.GENERAL: 2,
    TriggerKind.POLICE: 3,
    TriggerKind.FIRE: 4,
    TriggerKind.MEDICAL: 5,
}


@dataclass(frozen=True)
class EmergencyTrigger:
    """Canonical trigger consumed by the SOS state machine"""
    source: TriggerSource
    kind: TriggerKind
    confidence: float
    occurred_at_ms: int = field(default_factory=now_ms)
    payload: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be within [0, 1], got {self.confidence}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source.value,
            'kind': self.kind.value,
            'confidence': self.confidence,
            'occurred_at_ms': self.occurred_at_ms,
            'payload': self.payload
        }


@dataclass(frozen=True)
class Utterance:
    """Candidate phrase decoded by the audio recognition feed"""
    text: str
    timestamp_ms: int = field(default_factory=now_ms)


class GestureType(Enum):
    """Gestures the device motion feed reports"""
    TAP = "tap"
    SHAKE = "shake"
    PANIC_BUTTON = "panic_button"


@dataclass(frozen=True)
class GestureEvent:
    """Single gesture reported by the motion feed"""
    type: GestureType
    timestamp_ms: int = field(default_factory=now_ms)
    intensity: Optional[float] = None


@dataclass(frozen=True)
class WearableSample:
    """Decoded telemetry sample from a paired wearable"""
    device_id: str
    timestamp_ms: int = field(default_factory=now_ms)
    heart_rate: Optional[float] = None
    steps: Optional[int] = None
    battery_level: Optional[float] = None


@dataclass(frozen=True)
class ManualTrigger:
    """Explicit SOS request from the user interface"""
    kind: TriggerKind = TriggerKind.GENERAL
    timestamp_ms: int = field(default_factory=now_ms)
    note: str = ""
