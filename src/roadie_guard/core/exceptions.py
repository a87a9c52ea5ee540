"""
Exception hierarchy for Roadie Guard

Every error raised by the engine carries a stable code so the host
application can map it to user-facing text without string matching.
"""

from typing import Any, Dict, Optional


class RoadieGuardError(Exception):
    """Base exception for all Roadie Guard errors"""

    code: str = "UNKNOWN_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary"""
        return {
            'code': self.code,
            'message': self.message,
            'details': self.details
        }


class ConfigurationError(RoadieGuardError):
    """Malformed zone, phrase, contact or settings data"""
    code = "CONFIGURATION_ERROR"


class TransportError(RoadieGuardError):
    """Notification or dial gateway failure"""
    code = "TRANSPORT_ERROR"


class StateConflictError(RoadieGuardError):
    """Operation attempted on a session in an incompatible state"""
    code = "STATE_CONFLICT"


class PersistenceError(RoadieGuardError):
    """Persistence gateway failure"""
    code = "PERSISTENCE_ERROR"
