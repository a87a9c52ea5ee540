"""
Roadie Guard

Emergency trigger and escalation engine: recognizes emergency signals and
escalates confirmed sessions to trusted contacts.
"""

__version__ = "1.0.0"

from .services.emergency import EmergencyEngine

__all__ = ['EmergencyEngine', '__version__']
