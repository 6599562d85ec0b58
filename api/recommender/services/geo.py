from __future__ import annotations

import math

from ..records import GeoPoint

EARTH_RADIUS_KM = 6371.0088
# Distance reported for absent or invalid points; falls in the lowest location band.
MISSING_DISTANCE_KM = 20000.0


def _usable(point: GeoPoint | None) -> bool:
    return point is not None and point.is_valid()


def distance_km(a: GeoPoint | None, b: GeoPoint | None) -> float:
    if not _usable(a) or not _usable(b):
        return MISSING_DISTANCE_KM
    lat1, lon1 = math.radians(a.latitude), math.radians(a.longitude)
    lat2, lon2 = math.radians(b.latitude), math.radians(b.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def within_radius(point: GeoPoint | None, center: GeoPoint | None, radius_km: float) -> bool:
    if not _usable(point) or not _usable(center):
        return False
    return distance_km(point, center) <= radius_km


def bounding_box(center: GeoPoint, radius_km: float) -> tuple[float, float, float, float]:
    """Return (min_lat, max_lat, min_lon, max_lon) enclosing the radius around center."""
    dlat = math.degrees(radius_km / EARTH_RADIUS_KM)
    cos_lat = math.cos(math.radians(center.latitude))
    if cos_lat < 1e-9:
        dlon = 180.0
    else:
        dlon = min(180.0, math.degrees(radius_km / (EARTH_RADIUS_KM * cos_lat)))
    return (
        max(-90.0, center.latitude - dlat),
        min(90.0, center.latitude + dlat),
        max(-180.0, center.longitude - dlon),
        min(180.0, center.longitude + dlon),
    )
