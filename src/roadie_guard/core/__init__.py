"""
Core module for Roadie Guard

Contains configuration management, logging, the task scheduler, the
error taxonomy and the external collaborator contracts.
"""

from .exceptions import (
    RoadieGuardError,
    ConfigurationError,
    TransportError,
    StateConflictError,
    PersistenceError
)
from .config import ConfigurationManager
from .scheduler import TaskScheduler, ScheduledTask
from .interfaces import (
    LocationProvider,
    NotificationGateway,
    DialGateway,
    PersistenceGateway
)

__all__ = [
    'RoadieGuardError',
    'ConfigurationError',
    'TransportError',
    'StateConflictError',
    'PersistenceError',
    'ConfigurationManager',
    'TaskScheduler',
    'ScheduledTask',
    'LocationProvider',
    'NotificationGateway',
    'DialGateway',
    'PersistenceGateway'
]
