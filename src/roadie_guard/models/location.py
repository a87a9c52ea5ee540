"""
Location and geofence data models
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional
import uuid


class ZoneKind(Enum):
    """Geofence zone classification"""
    SAFE = "safe"
    DANGER = "danger"
    HOME = "home"
    WORK = "work"
    SCHOOL = "school"


class GeofenceTransition(Enum):
    """Direction of a zone boundary crossing"""
    ENTER = "enter"
    EXIT = "exit"


@dataclass(frozen=True)
class Coordinate:
    """Latitude/longitude pair in decimal degrees"""
    lat: float
    lon: float

    def is_valid(self) -> bool:
        """Check that both values are finite and within range"""
        try:
            lat = float(self.lat)
            lon = float(self.lon)
        except (TypeError, ValueError):
            return False
        if not (math.isfinite(lat) and math.isfinite(lon)):
            return False
        return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


@dataclass(frozen=True)
class LocationSample:
    """A single position fix from the location provider"""
    lat: float
    lon: float
    timestamp_ms: int
    accuracy: Optional[float] = None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lon)

    def is_valid(self) -> bool:
        return self.coordinate.is_valid()

    def maps_link(self) -> str:
        """Link contacts can open on any phone"""
        return f"https://maps.google.com/?q={self.lat},{self.lon}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lat': self.lat,
            'lon': self.lon,
            'accuracy': self.accuracy,
            'timestamp_ms': self.timestamp_ms
        }


@dataclass(frozen=True)
class GeofenceZone:
    """Circular geofence zone definition"""
    name: str
    center: Coordinate
    radius_meters: float
    kind: ZoneKind = ZoneKind.SAFE
    active: bool = True
    notify: bool = True
    id: str = field(default_factory=lambda: f"zone_{uuid.uuid4().hex[:12]}")

    def with_changes(self, **changes) -> 'GeofenceZone':
        """Return a copy with the given fields replaced"""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'lat': self.center.lat,
            'lon': self.center.lon,
            'radius_meters': self.radius_meters,
            'kind': self.kind.value,
            'active': self.active,
            'notify': self.notify
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GeofenceZone':
        kwargs = {}
        if data.get('id'):
            kwargs['id'] = str(data['id'])
        return cls(
            name=data['name'],
            center=Coordinate(float(data['lat']), float(data['lon'])),
            radius_meters=float(data['radius_meters']),
            kind=ZoneKind(data.get('kind', ZoneKind.SAFE.value)),
            active=bool(data.get('active', True)),
            notify=bool(data.get('notify', True)),
            **kwargs
        )


@dataclass(frozen=True)
class GeofenceEvent:
    """A zone boundary crossing"""
    zone: GeofenceZone
    transition: GeofenceTransition
    sample: LocationSample
    distance_meters: float
