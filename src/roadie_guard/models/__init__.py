"""
Data models for Roadie Guard

Defines the core structures shared by the trigger, session and
escalation services.
"""

from .phrase import Language, Protocol, TriggerPhrase, PhraseMatch, DEFAULT_TRIGGER_PHRASES
from .location import (
    Coordinate, LocationSample, GeofenceZone, ZoneKind,
    GeofenceEvent, GeofenceTransition
)
from .trigger import (
    EmergencyTrigger, TriggerSource, TriggerKind, Utterance,
    GestureEvent, GestureType, WearableSample, ManualTrigger, now_ms
)
from .session import (
    SOSSession, SessionState, SessionTransition, TransitionReason, CheckInStatus, SafetyCheck
)
from .contact import (
    EmergencyContact, ContactTier, NotifyVia, MessageType, OutgoingMessage,
    NotificationResult, NotifyAttempt, EscalationRun, order_contacts
)

__all__ = [
    'Language', 'Protocol', 'TriggerPhrase', 'PhraseMatch', 'DEFAULT_TRIGGER_PHRASES',
    'Coordinate', 'LocationSample', 'GeofenceZone', 'ZoneKind',
    'GeofenceEvent', 'GeofenceTransition',
    'EmergencyTrigger', 'TriggerSource', 'TriggerKind', 'Utterance',
    'GestureEvent', 'GestureType', 'WearableSample', 'ManualTrigger', 'now_ms',
    'SOSSession', 'SessionState', 'SessionTransition', 'TransitionReason',
    'CheckInStatus', 'SafetyCheck',
    'EmergencyContact', 'ContactTier', 'NotifyVia', 'MessageType', 'OutgoingMessage',
    'NotificationResult', 'NotifyAttempt', 'EscalationRun', 'order_contacts',
]
