"""
Geofence Evaluation

Detects zone entry and exit from consecutive location samples:
- Great-circle (haversine) distance to each zone center
- Enter/exit transitions computed from the caller's previous sample
- Copy-on-write zone registry shared by the evaluator's callers
"""

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from roadie_guard.core.exceptions import ConfigurationError
from roadie_guard.models import (
    Coordinate, GeofenceEvent, GeofenceTransition, GeofenceZone, LocationSample
)


EARTH_RADIUS_METERS = 6_371_000.0

logger = logging.getLogger(__name__)


def haversine_meters(a: Coordinate, b: Coordinate) -> float:
    """
    Calculate great-circle distance between two coordinates

    Args:
        a: First coordinate
        b: Second coordinate

    Returns:
        Distance in meters
    """
    lat1_rad = math.radians(a.lat)
    lat2_rad = math.radians(b.lat)
    delta_lat = math.radians(b.lat - a.lat)
    delta_lon = math.radians(b.lon - a.lon)

    h = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(max(0.0, 1 - h)))

    return EARTH_RADIUS_METERS * c


def contains(zone: GeofenceZone, sample: LocationSample) -> Tuple[bool, float]:
    """Whether the sample lies inside the zone, and its distance to the center"""
    distance = haversine_meters(zone.center, sample.coordinate)
    return distance <= zone.radius_meters, distance


class GeofenceEvaluator:
    """
    Stateless enter/exit detector

    The caller owns the last-known location and passes it in, so the same
    evaluator can serve any number of location streams.
    """

    def evaluate(self, zones: Sequence[GeofenceZone], previous: Optional[LocationSample],
                 current: LocationSample) -> List[GeofenceEvent]:
        """
        Compute boundary crossings between two samples

        Args:
            zones: Zones in registration order
            previous: Prior sample, or None on the first fix
            current: Newest sample

        Returns:
            One event per crossed zone, in zone order. Never raises; an
            unusable sample simply yields no events.
        """
        if previous is None or current is None:
            return []
        if not _usable(previous) or not _usable(current):
            logger.debug("Skipping geofence evaluation for unusable sample")
            return []

        events: List[GeofenceEvent] = []
        for zone in zones:
            if not zone.active:
                continue
            try:
                was_inside, _ = contains(zone, previous)
                is_inside, distance = contains(zone, current)
            except (TypeError, ValueError) as e:
                logger.warning(f"Cannot evaluate zone {zone.id}: {e}")
                continue

            if is_inside and not was_inside:
                events.append(GeofenceEvent(zone, GeofenceTransition.ENTER, current, distance))
            elif was_inside and not is_inside:
                events.append(GeofenceEvent(zone, GeofenceTransition.EXIT, current, distance))

        return events

    def zones_containing(self, zones: Sequence[GeofenceZone],
                         sample: LocationSample) -> List[GeofenceZone]:
        """Active zones the sample currently lies in"""
        if not _usable(sample):
            return []
        return [zone for zone in zones if zone.active and contains(zone, sample)[0]]


def _usable(sample: LocationSample) -> bool:
    return isinstance(sample, LocationSample) and sample.is_valid()


class ZoneRegistry:
    """
    Copy-on-write registry of geofence zones

    Every mutation builds a new tuple and swaps it in with one assignment,
    so a snapshot taken by an evaluation is never partially updated.
    """

    def __init__(self, zones: Optional[Iterable[GeofenceZone]] = None):
        self.logger = logging.getLogger(__name__)
        self._zones: Tuple[GeofenceZone, ...] = ()
        if zones:
            self.replace(zones)

    def snapshot(self) -> Tuple[GeofenceZone, ...]:
        return self._zones

    def __len__(self) -> int:
        return len(self._zones)

    def get(self, zone_id: str) -> Optional[GeofenceZone]:
        for zone in self._zones:
            if zone.id == zone_id:
                return zone
        return None

    def add(self, zone: GeofenceZone) -> GeofenceZone:
        """Register a new zone after the existing ones"""
        self._check_zone(zone)
        if self.get(zone.id) is not None:
            raise ConfigurationError(f"Zone {zone.id} already exists")
        self._zones = self._zones + (zone,)
        self.logger.info(f"Added geofence zone {zone.id} ({zone.name})")
        return zone

    def update(self, zone: GeofenceZone) -> GeofenceZone:
        """Replace a zone in place, keeping its registration position"""
        self._check_zone(zone)
        if self.get(zone.id) is None:
            raise ConfigurationError(f"Zone {zone.id} does not exist")
        self._zones = tuple(zone if z.id == zone.id else z for z in self._zones)
        self.logger.info(f"Updated geofence zone {zone.id} ({zone.name})")
        return zone

    def remove(self, zone_id: str) -> bool:
        """Remove a zone; it is excluded from every later evaluation"""
        remaining = tuple(z for z in self._zones if z.id != zone_id)
        if len(remaining) == len(self._zones):
            return False
        self._zones = remaining
        self.logger.info(f"Removed geofence zone {zone_id}")
        return True

    def replace(self, zones: Iterable[GeofenceZone]) -> None:
        """Install a complete zone set; invalid input keeps the current set"""
        new_zones = tuple(zones)
        seen: Dict[str, GeofenceZone] = {}
        for zone in new_zones:
            self._check_zone(zone)
            if zone.id in seen:
                raise ConfigurationError(f"Duplicate zone id {zone.id}")
            seen[zone.id] = zone
        self._zones = new_zones
        self.logger.info(f"Installed {len(new_zones)} geofence zones")

    @staticmethod
    def _check_zone(zone: GeofenceZone) -> None:
        if not isinstance(zone, GeofenceZone):
            raise ConfigurationError(f"Not a geofence zone: {zone!r}")
        if not zone.center.is_valid():
            raise ConfigurationError(f"Zone {zone.id} has an invalid center")
        if not (isinstance(zone.radius_meters, (int, float)) and zone.radius_meters > 0
                and math.isfinite(zone.radius_meters)):
            raise ConfigurationError(f"Zone {zone.id} has an invalid radius")
