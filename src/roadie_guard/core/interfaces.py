"""
External collaborator contracts for Roadie Guard

The engine never talks to a device, a network or a store directly. The
host application supplies implementations of these interfaces when it
builds the engine.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from roadie_guard.models import (
    EmergencyContact, GeofenceZone, LocationSample, NotificationResult,
    NotifyAttempt, NotifyVia, OutgoingMessage, SOSSession, TriggerPhrase,
    EmergencyTrigger
)


class LocationProvider(ABC):
    """Supplies the device position"""

    @abstractmethod
    async def get_current_location(self) -> Optional[LocationSample]:
        """
        Get the current position fix

        Returns:
            The latest sample, or None when location is unavailable
        """


class NotificationGateway(ABC):
    """Delivers notices to contacts over SMS, voice call or both"""

    @abstractmethod
    async def send(self, contact: EmergencyContact, message: OutgoingMessage,
                   via: NotifyVia) -> NotificationResult:
        """
        Send one notice to one contact

        Implementations may raise TransportError instead of returning a
        failed result; the engine treats both the same way.
        """


class DialGateway(ABC):
    """Places a phone call on the user's behalf"""

    @abstractmethod
    async def dial(self, number: str) -> bool:
        """Dial a number; only called after the user confirmed"""


class PersistenceGateway(ABC):
    """Durable store for configuration and audit history"""

    @abstractmethod
    async def load_zones(self) -> List[GeofenceZone]:
        """Load all stored geofence zones"""

    @abstractmethod
    async def load_contacts(self) -> List[EmergencyContact]:
        """Load all stored emergency contacts"""

    @abstractmethod
    async def load_phrases(self) -> List[TriggerPhrase]:
        """Load the stored trigger phrase catalog"""

    @abstractmethod
    async def save_session(self, session: SOSSession) -> None:
        """Insert or update a session record"""

    @abstractmethod
    async def save_attempt(self, session_id: str, tier: str, attempt: NotifyAttempt) -> None:
        """Record one notification attempt"""

    @abstractmethod
    async def save_trigger(self, trigger: EmergencyTrigger, session_id: Optional[str]) -> None:
        """Record a trigger and the session it was applied to"""
