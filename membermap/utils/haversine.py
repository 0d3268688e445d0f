from math import asin, cos, radians, sin, sqrt
from typing import Iterable, List, Tuple

from membermap.models.dto import Profile

# Mean Earth radius, km
EARTH_RADIUS_KM = 6371.0


def haversine(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km between two points given in decimal degrees."""
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = phi2 - phi1
    dlambda = radians(lng2 - lng1)

    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    # min() guards asin against a rounding overshoot for antipodal points
    return 2 * EARTH_RADIUS_KM * asin(min(1.0, sqrt(a)))


def members_within(
    lat: float,
    lng: float,
    profiles: Iterable[Profile],
    radius_km: float,
) -> List[Tuple[float, Profile]]:
    """
    Members whose public location lies within radius_km of (lat, lng), as
    (distance_km, profile) pairs, nearest first. Ties keep input order.
    """
    found = []
    for profile in profiles:
        distance = haversine(lat, lng, profile.location.lat, profile.location.lng)
        if distance <= radius_km:
            found.append((distance, profile))
    found.sort(key=lambda pair: pair[0])
    return found
