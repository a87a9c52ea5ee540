"""
Contact notice templates
"""

from datetime import datetime, timezone

from roadie_guard.models import (
    CheckInStatus, EmergencyContact, LocationSample, MessageType, OutgoingMessage,
    SafetyCheck, SOSSession, TriggerKind
)


LOCATION_UNAVAILABLE = "Location unavailable"

_KIND_LABELS = {
    TriggerKind.GENERAL: "Emergency SOS",
    TriggerKind.MEDICAL: "Medical emergency",
    TriggerKind.FIRE: "Fire emergency",
    TriggerKind.POLICE: "Police emergency",
    TriggerKind.SILENT: "Silent SOS",
    TriggerKind.LOCATION_ONLY: "Location alert",
}


def describe_location(location: LocationSample) -> str:
    if location is None or not location.is_valid():
        return LOCATION_UNAVAILABLE
    text = f"Location: {location.lat:.6f}, {location.lon:.6f} {location.maps_link()}"
    if location.accuracy is not None:
        text += f" (accuracy {location.accuracy:.0f} m)"
    return text


def _format_time(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')


def build_alert(session: SOSSession, contact: EmergencyContact, medical_info: str = "") -> OutgoingMessage:
    """Initial alert for a contact; medical details only for permitted contacts"""
    is_priority = session.kind in (TriggerKind.MEDICAL, TriggerKind.FIRE, TriggerKind.POLICE)
    header = "PRIORITY EMERGENCY" if is_priority else "EMERGENCY ALERT"
    activated_at = session.activated_at_ms or session.started_at_ms
    content = (
        f"{header}\n\n"
        f"{_KIND_LABELS[session.kind]} activated at {_format_time(activated_at)}\n\n"
        f"{describe_location(session.location)}"
    )
    return OutgoingMessage(
        session_id=session.id,
        type=MessageType.ALERT,
        content=content,
        is_priority=is_priority,
        medical_info=medical_info if contact.can_see_medical_info else "",
        metadata={'kind': session.kind.value, 'tier': contact.tier.value}
    )


def build_update(session: SOSSession, contact: EmergencyContact, medical_info: str = "") -> OutgoingMessage:
    content = (
        f"EMERGENCY UPDATE\n\n"
        f"Situation is now a {_KIND_LABELS[session.kind].lower()}\n\n"
        f"{describe_location(session.location)}"
    )
    return OutgoingMessage(
        session_id=session.id,
        type=MessageType.UPDATE,
        content=content,
        is_priority=session.kind == TriggerKind.MEDICAL,
        medical_info=medical_info if contact.can_see_medical_info else "",
        metadata={'kind': session.kind.value}
    )


def build_location_update(session: SOSSession, sample: LocationSample) -> OutgoingMessage:
    return OutgoingMessage(
        session_id=session.id,
        type=MessageType.LOCATION,
        content=f"Live location update\n\n{describe_location(sample)}",
        metadata={'timestamp_ms': sample.timestamp_ms}
    )


def build_resolved(session: SOSSession) -> OutgoingMessage:
    ended_at = session.ended_at_ms or session.started_at_ms
    return OutgoingMessage(
        session_id=session.id,
        type=MessageType.RESOLVED,
        content=f"Emergency situation has been resolved ({_format_time(ended_at)})",
        metadata={'kind': session.kind.value}
    )


def build_check_in(check: SafetyCheck) -> OutgoingMessage:
    content = f"Safety update: {check.status.label}"
    if check.message:
        content += f" - {check.message}"
    content += f"\n\n{describe_location(check.location)}"
    return OutgoingMessage(
        session_id=check.id,
        type=MessageType.CHECK_IN,
        content=content,
        is_priority=check.status != CheckInStatus.SAFE,
        metadata={'status': check.status.value, 'timestamp_ms': check.timestamp_ms}
    )
