"""
Emergency service numbers

Country dial table and the mapping from trigger kinds to the service
offered to the user once a session is active.
"""

from dataclasses import dataclass
from typing import Dict

from roadie_guard.core.exceptions import ConfigurationError
from roadie_guard.models import SOSSession, TriggerKind


EMERGENCY_NUMBERS: Dict[str, Dict[str, str]] = {
    'US': {'emergency': '911', 'police': '911', 'fire': '911', 'medical': '911'},
    'UK': {'emergency': '999', 'police': '999', 'fire': '999', 'medical': '999'},
    'EU': {'emergency': '112', 'police': '112', 'fire': '112', 'medical': '112'},
}

KIND_SERVICES = {
    TriggerKind.POLICE: 'police',
    TriggerKind.FIRE: 'fire',
    TriggerKind.MEDICAL: 'medical',
}


@dataclass(frozen=True)
class DialOffer:
    """Emergency call the user may confirm; never dialed automatically"""
    session_id: str
    service: str
    number: str


def service_for_kind(kind: TriggerKind) -> str:
    return KIND_SERVICES.get(kind, 'emergency')


def emergency_number(country: str, service: str = 'emergency') -> str:
    """
    Look up the number for a service

    Args:
        country: Country code from the dial table (US, UK, EU)
        service: emergency, police, fire or medical

    Returns:
        Number to dial

    Raises:
        ConfigurationError: If the country is not in the table
    """
    numbers = EMERGENCY_NUMBERS.get(str(country).upper())
    if numbers is None:
        raise ConfigurationError(f"No emergency numbers for country '{country}'",
                                 {'supported': sorted(EMERGENCY_NUMBERS)})
    return numbers.get(service, numbers['emergency'])


def build_offer(session: SOSSession, country: str) -> DialOffer:
    service = service_for_kind(session.kind)
    return DialOffer(session_id=session.id, service=service,
                     number=emergency_number(country, service))
