"""
Configuration Loader for trigger phrases, geofence zones and contacts

Validates raw configuration entries against JSON schemas and builds the
domain objects the engine works with. A single bad entry rejects the
whole collection so a half-valid catalog is never installed.
"""

import logging
from typing import Any, Dict, Iterable, List

import jsonschema

from roadie_guard.models import EmergencyContact, GeofenceZone, TriggerPhrase
from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)


PHRASE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["phrase"],
    "properties": {
        "phrase": {"type": "string", "minLength": 1, "pattern": r"\S"},
        "language": {"type": "string"},
        "protocol": {
            "type": "string",
            "enum": ["sos", "silent", "location_only", "location-only"]
        }
    }
}

ZONE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name", "lat", "lon", "radius_meters"],
    "properties": {
        "id": {"type": ["string", "integer"]},
        "name": {"type": "string", "minLength": 1},
        "lat": {"type": "number", "minimum": -90, "maximum": 90},
        "lon": {"type": "number", "minimum": -180, "maximum": 180},
        "radius_meters": {"type": "number", "exclusiveMinimum": 0},
        "kind": {"type": "string", "enum": ["safe", "danger", "home", "work", "school"]},
        "active": {"type": "boolean"},
        "notify": {"type": "boolean"}
    }
}

CONTACT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "name", "phone"],
    "properties": {
        "id": {"type": ["string", "integer"]},
        "name": {"type": "string"},
        "phone": {"type": "string", "minLength": 1},
        "tier": {"type": "string", "enum": ["primary", "secondary"]},
        "notify_via": {"type": "string", "enum": ["sms", "call", "both"]},
        "can_see_medical_info": {"type": "boolean"},
        "priority": {"type": "integer"},
        "email": {"type": ["string", "null"]},
        "relationship": {"type": "string"}
    }
}

_validators = {
    'phrase': jsonschema.Draft7Validator(PHRASE_SCHEMA),
    'zone': jsonschema.Draft7Validator(ZONE_SCHEMA),
    'contact': jsonschema.Draft7Validator(CONTACT_SCHEMA),
}


def validate_entry(entry_type: str, entry: Any) -> List[str]:
    """
    Validate one raw configuration entry.

    Args:
        entry_type: 'phrase', 'zone' or 'contact'
        entry: Raw dictionary from YAML/JSON or the persistence store

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = _validators[entry_type]
    errors = []
    for error in validator.iter_errors(entry):
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        errors.append(f"{path}: {error.message}")
    return errors


def _load_entries(entry_type: str, entries: Iterable[Any], factory) -> List[Any]:
    if entries is None:
        return []
    if not isinstance(entries, (list, tuple)):
        raise ConfigurationError(f"{entry_type} configuration must be a list")

    loaded = []
    problems = []
    for idx, entry in enumerate(entries):
        errors = validate_entry(entry_type, entry)
        if errors:
            problems.append(f"{entry_type} {idx}: {'; '.join(errors)}")
            continue
        try:
            loaded.append(factory(entry))
        except (KeyError, TypeError, ValueError) as e:
            problems.append(f"{entry_type} {idx}: {e}")

    if problems:
        logger.warning(f"Rejected {entry_type} configuration: {problems}")
        raise ConfigurationError(
            f"Invalid {entry_type} configuration: {'; '.join(problems)}",
            {'errors': problems}
        )

    logger.info(f"Loaded {len(loaded)} {entry_type} entries")
    return loaded


def load_trigger_phrases(entries: Iterable[Any]) -> List[TriggerPhrase]:
    """Build the phrase catalog from raw entries"""
    return _load_entries('phrase', entries, TriggerPhrase.from_dict)


def load_geofence_zones(entries: Iterable[Any]) -> List[GeofenceZone]:
    """Build geofence zones from raw entries"""
    zones = _load_entries('zone', entries, GeofenceZone.from_dict)
    ids = [zone.id for zone in zones]
    duplicates = sorted({zone_id for zone_id in ids if ids.count(zone_id) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate zone ids: {', '.join(duplicates)}")
    return zones


def load_emergency_contacts(entries: Iterable[Any]) -> List[EmergencyContact]:
    """Build emergency contacts from raw entries"""
    contacts = _load_entries('contact', entries, EmergencyContact.from_dict)
    ids = [contact.id for contact in contacts]
    duplicates = sorted({contact_id for contact_id in ids if ids.count(contact_id) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate contact ids: {', '.join(duplicates)}")
    return contacts
