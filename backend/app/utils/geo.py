from __future__ import annotations

import math

EARTH_RADIUS_KM = 6371.0
FALLBACK_SPEED_KMH = 40.0

# Platform default pickup point (Beirut) used when a seller has no coordinates.
DEFAULT_ORIGIN = (33.8886, 35.4955)

_SAME_POINT_DEGREES = 0.001


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    lat1_r, lng1_r, lat2_r, lng2_r = map(math.radians, (lat1, lng1, lat2, lng2))
    dlat = lat2_r - lat1_r
    dlng = lng2_r - lng1_r
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def minutes_at_fallback_speed(distance_km: float) -> int:
    return int(round((float(distance_km) / FALLBACK_SPEED_KMH) * 60))


def valid_coordinate(lat, lng) -> bool:
    try:
        lat_f = float(lat)
        lng_f = float(lng)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat_f) or math.isnan(lng_f):
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0


def same_point(lat1: float, lng1: float, lat2: float, lng2: float) -> bool:
    return abs(float(lat1) - float(lat2)) < _SAME_POINT_DEGREES and abs(float(lng1) - float(lng2)) < _SAME_POINT_DEGREES
