"""
Emergency services: SOS lifecycle, escalation and the engine facade
"""

from .sos_state_machine import SOSStateMachine
from .escalation_scheduler import EscalationScheduler
from .dial import DialOffer, EMERGENCY_NUMBERS, build_offer, emergency_number, service_for_kind
from .emergency_service import EmergencyEngine

__all__ = [
    'SOSStateMachine',
    'EscalationScheduler',
    'DialOffer',
    'EMERGENCY_NUMBERS',
    'build_offer',
    'emergency_number',
    'service_for_kind',
    'EmergencyEngine'
]
