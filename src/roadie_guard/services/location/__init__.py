"""
Location services: geofence evaluation and the zone registry
"""

from .geofence import GeofenceEvaluator, ZoneRegistry, haversine_meters, EARTH_RADIUS_METERS

__all__ = [
    'GeofenceEvaluator',
    'ZoneRegistry',
    'haversine_meters',
    'EARTH_RADIUS_METERS'
]
