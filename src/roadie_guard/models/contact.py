"""
Emergency contact and escalation data models
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ContactTier(Enum):
    """Escalation tier"""
    PRIMARY = "primary"
    SECONDARY = "secondary"


class NotifyVia(Enum):
    """How a contact wants to be reached"""
    SMS = "sms"
    CALL = "call"
    BOTH = "both"

    def methods(self) -> List[str]:
        if self is NotifyVia.BOTH:
            return ['sms', 'call']
        return [self.value]


class MessageType(Enum):
    """Kind of notice sent to a contact"""
    ALERT = "alert"
    RESOLVED = "resolved"
    UPDATE = "update"
    LOCATION = "location"
    CHECK_IN = "check_in"


@dataclass(frozen=True)
class EmergencyContact:
    """Trusted contact notified during a session"""
    id: str
    name: str
    phone: str
    tier: ContactTier = ContactTier.PRIMARY
    notify_via: NotifyVia = NotifyVia.SMS
    can_see_medical_info: bool = False
    priority: int = 1
    email: Optional[str] = None
    relationship: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'phone': self.phone,
            'tier': self.tier.value,
            'notify_via': self.notify_via.value,
            'can_see_medical_info': self.can_see_medical_info,
            'priority': self.priority,
            'email': self.email,
            'relationship': self.relationship
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EmergencyContact':
        return cls(
            id=str(data['id']),
            name=data.get('name', ''),
            phone=data.get('phone', ''),
            tier=ContactTier(data.get('tier', ContactTier.PRIMARY.value)),
            notify_via=NotifyVia(data.get('notify_via', NotifyVia.SMS.value)),
            can_see_medical_info=bool(data.get('can_see_medical_info', False)),
            priority=int(data.get('priority', 1)),
            email=data.get('email'),
            relationship=data.get('relationship', '')
        )


@dataclass(frozen=True)
class OutgoingMessage:
    """Notice handed to the notification gateway"""
    session_id: str
    type: MessageType
    content: str
    is_priority: bool = False
    medical_info: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationResult:
    """Outcome reported by the notification gateway"""
    success: bool
    error: Optional[str] = None


@dataclass
class NotifyAttempt:
    """Recorded outcome of notifying one contact"""
    contact_id: str
    succeeded: bool
    methods_used: List[str]
    at_ms: int
    error: Optional[str] = None
    attempts: int = 1
    message_type: MessageType = MessageType.ALERT

    def to_dict(self) -> Dict[str, Any]:
        return {
            'contact_id': self.contact_id,
            'succeeded': self.succeeded,
            'methods_used': list(self.methods_used),
            'at_ms': self.at_ms,
            'error': self.error,
            'attempts': self.attempts,
            'message_type': self.message_type.value
        }


@dataclass
class EscalationRun:
    """Attempts made for one tier of one session"""
    session_id: str
    tier: ContactTier
    attempts: List[NotifyAttempt] = field(default_factory=list)
    started_at_ms: Optional[int] = None
    completed_at_ms: Optional[int] = None

    def notified_contact_ids(self) -> List[str]:
        """Contacts that received at least one notice, in first-success order"""
        seen: List[str] = []
        for attempt in self.attempts:
            if attempt.succeeded and attempt.contact_id not in seen:
                seen.append(attempt.contact_id)
        return seen

    @property
    def is_complete(self) -> bool:
        return self.completed_at_ms is not None


def order_contacts(contacts: List[EmergencyContact], tier: ContactTier) -> List[EmergencyContact]:
    """Contacts of a tier, ascending priority, ties kept in insertion order"""
    return sorted((c for c in contacts if c.tier == tier), key=lambda c: c.priority)
