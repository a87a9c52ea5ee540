"""
SOS session data models
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from .location import LocationSample
from .trigger import TriggerKind, TriggerSource


class SessionState(Enum):
    """SOS session lifecycle state"""
    IDLE = "idle"
    COUNTING_DOWN = "counting_down"
    ACTIVE = "active"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"

    @property
    def is_live(self) -> bool:
        return self in (SessionState.COUNTING_DOWN, SessionState.ACTIVE)

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.RESOLVED, SessionState.CANCELLED)


class TransitionReason(Enum):
    """Why a session changed state"""
    TRIGGERED = "triggered"
    COUNTDOWN_ELAPSED = "countdown_elapsed"
    IMMEDIATE = "immediate"
    USER_CANCELLED = "user_cancelled"
    USER_STOPPED = "user_stopped"
    AUTO_EXPIRED = "auto_expired"
    UPGRADED = "upgraded"
    EMERGENCY_CALL = "emergency_call"


@dataclass
class SOSSession:
    """One emergency response lifecycle"""
    kind: TriggerKind
    started_at_ms: int
    id: str = field(default_factory=lambda: f"sos_{uuid.uuid4().hex[:16]}")
    state: SessionState = SessionState.IDLE
    location: Optional[LocationSample] = None
    emergency_services_called: bool = False
    trigger_sources: List[TriggerSource] = field(default_factory=list)
    countdown_seconds: float = 0.0
    activated_at_ms: Optional[int] = None
    ended_at_ms: Optional[int] = None
    end_reason: Optional[TransitionReason] = None

    def is_live(self) -> bool:
        return self.state.is_live

    def snapshot(self) -> 'SOSSession':
        """Copy handed to subscribers so they never see later mutations"""
        return replace(self, trigger_sources=list(self.trigger_sources))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'kind': self.kind.value,
            'state': self.state.value,
            'started_at_ms': self.started_at_ms,
            'activated_at_ms': self.activated_at_ms,
            'ended_at_ms': self.ended_at_ms,
            'end_reason': self.end_reason.value if self.end_reason else None,
            'location': self.location.to_dict() if self.location else None,
            'emergency_services_called': self.emergency_services_called,
            'trigger_sources': [source.value for source in self.trigger_sources]
        }


@dataclass(frozen=True)
class SessionTransition:
    """State change published by the SOS state machine"""
    session: SOSSession
    previous_state: SessionState
    new_state: SessionState
    reason: TransitionReason
    at_ms: int


class CheckInStatus(Enum):
    """Status the user reports in a safety check-in"""
    SAFE = "safe"
    HELP_NEEDED = "help_needed"
    EMERGENCY = "emergency"

    @property
    def label(self) -> str:
        return self.value.replace('_', ' ')


@dataclass(frozen=True)
class SafetyCheck:
    """User check-in shared with every contact"""
    status: CheckInStatus
    timestamp_ms: int
    message: str = ""
    location: Optional[LocationSample] = None
    id: str = field(default_factory=lambda: f"check_{uuid.uuid4().hex[:16]}")
