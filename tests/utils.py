"""
Test utilities and helper functions for Roadie Guard testing.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional

from roadie_guard.models import (
    Coordinate, ContactTier, EmergencyContact, EmergencyTrigger, GeofenceZone,
    LocationSample, NotifyVia, TriggerKind, TriggerSource, ZoneKind
)


class AsyncTestHelper:
    """Helper class for async testing operations."""

    @staticmethod
    async def wait_for_condition(condition: Callable[[], bool], timeout: float = 1.0) -> bool:
        """Wait for a condition to become true."""
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        while loop.time() - start_time < timeout:
            if condition():
                return True
            await asyncio.sleep(0.005)
        return condition()

    @staticmethod
    async def settle(rounds: int = 5):
        """Let queued callbacks and tasks run."""
        for _ in range(rounds):
            await asyncio.sleep(0)


class TestDataHelper:
    """Builders for domain objects used across tests."""

    @staticmethod
    def contact(contact_id: str, tier: ContactTier = ContactTier.PRIMARY, priority: int = 1,
                notify_via: NotifyVia = NotifyVia.SMS, medical: bool = False) -> EmergencyContact:
        return EmergencyContact(
            id=contact_id,
            name=contact_id.title(),
            phone=f"+1555{abs(hash(contact_id)) % 10000000:07d}",
            tier=tier,
            notify_via=notify_via,
            can_see_medical_info=medical,
            priority=priority
        )

    @staticmethod
    def zone(name: str = "zone", lat: float = 0.0, lon: float = 0.0, radius: float = 100.0,
             kind: ZoneKind = ZoneKind.SAFE, active: bool = True, notify: bool = True,
             zone_id: Optional[str] = None) -> GeofenceZone:
        kwargs = {'id': zone_id} if zone_id else {}
        return GeofenceZone(name=name, center=Coordinate(lat, lon), radius_meters=radius,
                            kind=kind, active=active, notify=notify, **kwargs)

    @staticmethod
    def sample(lat: float, lon: float, timestamp_ms: int = 1_000, accuracy: Optional[float] = None) -> LocationSample:
        return LocationSample(lat=lat, lon=lon, timestamp_ms=timestamp_ms, accuracy=accuracy)

    @staticmethod
    def trigger(kind: TriggerKind = TriggerKind.GENERAL, source: TriggerSource = TriggerSource.MANUAL,
                confidence: float = 1.0, occurred_at_ms: int = 1_000,
                payload: Optional[Dict[str, Any]] = None) -> EmergencyTrigger:
        return EmergencyTrigger(source=source, kind=kind, confidence=confidence,
                                occurred_at_ms=occurred_at_ms, payload=payload or {})


def fast_config(**overrides) -> Dict[str, Any]:
    """Engine configuration with sub-second delays."""
    config: Dict[str, Any] = {
        "logging": {"level": "DEBUG", "console": False},
        "matcher": {"threshold": 0.2, "phrases": []},
        "aggregator": {
            "dedup_window_ms": 50,
            "gesture_tap_count": 3,
            "gesture_window_ms": 1000,
            "heart_rate_min": 50,
            "heart_rate_max": 120,
            "heart_rate_critical_min": 40,
            "heart_rate_critical_max": 150,
            "low_battery_percent": 10
        },
        "sos": {
            "countdown_seconds": {"general": 0.2, "police": 0.2, "fire": 0.3, "medical": 0.3},
            "skip_countdown": ["silent", "location_only"],
            "auto_expire_minutes": 30
        },
        "escalation": {
            "secondary_delay_seconds": 0.3,
            "max_retries": 1,
            "location_share_interval_seconds": 60
        },
        "dial": {"country": "US"}
    }
    for section, values in overrides.items():
        if isinstance(values, dict) and isinstance(config.get(section), dict):
            config[section] = dict(config[section], **values)
        else:
            config[section] = values
    return config


def ids(contacts: List[EmergencyContact]) -> List[str]:
    return [contact.id for contact in contacts]
