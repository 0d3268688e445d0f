"""
Marker de-overlap.

Fuzzed locations are rounded to ~1 km, so members of the same city tend to
land on the very same coordinate and their markers stack. ``place_users``
buckets members into grid cells and fans every multi-member bucket out into a
sunflower spiral around the bucket centroid:

    angle_i  = base_angle(id) + i * GOLDEN_ANGLE
    radius_i = base_radius * sqrt(n) * (i + 1) / n

``base_angle`` comes from ``stable_hash``, a plain 32-bit polynomial string
hash, so a member keeps the same orientation across renders, processes and
interpreter runs (Python's built-in ``hash`` is salted per process).

Radii are strictly increasing in ``i``, so no two members of a bucket can end
up on the same point. The result only feeds rendering; stored locations are
never touched.
"""

import math
from typing import Dict, Iterable, List, Tuple, Union

import structlog

from membermap.core.config import settings
from membermap.models.dto import DisplayCoordinate, MapPoint
from membermap.services.area_bucketer import AreaBucketer

logger = structlog.get_logger(__name__)

GOLDEN_ANGLE = math.pi * (3 - math.sqrt(5))  # ~137.508 degrees

_MIN_LNG_SCALE = 0.01


def stable_hash(text: str) -> int:
    """
    h = h * 31 + code point, kept to 32 bits.

    Iterates Unicode code points, not UTF-16 code units: for text outside the
    BMP (emoji, rare CJK) this differs from a String.hashCode style hash, so
    a port hashing UTF-16 units places such ids at a different angle.
    """
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h


def base_angle(user_id: str) -> float:
    """Per-member starting angle in radians, in 0.1 degree steps."""
    return math.radians((stable_hash(user_id) % 3600) / 10)


def max_spread(n: int, base_radius: float = None) -> float:
    """Largest offset (degrees of latitude) a bucket of n members can produce."""
    radius = base_radius or settings.SPREAD_BASE_RADIUS_DEGREES
    return radius * math.sqrt(n) if n > 1 else 0.0


def _coerce(user: Union[MapPoint, dict]) -> MapPoint:
    if isinstance(user, MapPoint):
        return user
    if isinstance(user, dict):
        return MapPoint.model_validate(user)
    return MapPoint(id=str(user.id), lat=getattr(user, "lat", None), lng=getattr(user, "lng", None))


def _has_coordinates(point: MapPoint) -> bool:
    return (
        point.lat is not None
        and point.lng is not None
        and math.isfinite(point.lat)
        and math.isfinite(point.lng)
    )


def _wrap_lng(lng: float) -> float:
    if lng > 180.0:
        return lng - 360.0
    if lng < -180.0:
        return lng + 360.0
    return lng


def _collect(users: Iterable[Union[MapPoint, dict]]) -> Dict[str, Tuple[float, float]]:
    points: Dict[str, Tuple[float, float]] = {}
    for user in users:
        point = _coerce(user)
        if point.id in points:
            logger.warning("deoverlap_duplicate_id", user_id=point.id)
        if not _has_coordinates(point):
            # No phantom markers at (0, 0); a later entry without coordinates also wins
            points.pop(point.id, None)
            continue
        points[point.id] = (point.lat, point.lng)
    return points


def group_points(
    points: Dict[str, Tuple[float, float]],
    cell_size: float = None,
) -> Dict[Tuple[int, int], List[str]]:
    """Bucket member ids by grid cell, keeping input order inside each bucket."""
    groups: Dict[Tuple[int, int], List[str]] = {}
    for user_id, (lat, lng) in points.items():
        key = AreaBucketer.cell_key(lat, lng, cell_size)
        groups.setdefault(key, []).append(user_id)
    return groups


def _spread_group(
    member_ids: List[str],
    points: Dict[str, Tuple[float, float]],
    base_radius: float,
) -> Dict[str, DisplayCoordinate]:
    n = len(member_ids)
    center_lat = sum(points[uid][0] for uid in member_ids) / n
    center_lng = sum(points[uid][1] for uid in member_ids) / n
    lng_scale = max(math.cos(math.radians(center_lat)), _MIN_LNG_SCALE)
    spread = max_spread(n, base_radius)

    placed = {}
    for i, user_id in enumerate(member_ids):
        angle = base_angle(user_id) + i * GOLDEN_ANGLE
        radius = spread * (i + 1) / n
        lat = center_lat + radius * math.sin(angle)
        lng = center_lng + radius * math.cos(angle) / lng_scale
        placed[user_id] = DisplayCoordinate(
            user_id=user_id,
            lat=min(90.0, max(-90.0, lat)),
            lng=_wrap_lng(lng),
        )
    return placed


def place_users(
    users: Iterable[Union[MapPoint, dict]],
    cell_size: float = None,
    base_radius: float = None,
) -> Dict[str, DisplayCoordinate]:
    """
    Compute display coordinates for the visible members.

    Args:
        users: Members in a stable order (creation order). Entries without
            coordinates are skipped; for duplicate ids the later entry wins.
        cell_size: Grouping tolerance in degrees (GROUP_CELL_DEGREES).
        base_radius: Spiral base radius in degrees (SPREAD_BASE_RADIUS_DEGREES).

    Returns:
        user id -> DisplayCoordinate, in input order. Identical input gives
        bit-for-bit identical output.
    """
    points = _collect(users)
    if not points:
        return {}

    base_radius = base_radius or settings.SPREAD_BASE_RADIUS_DEGREES
    placements: Dict[str, DisplayCoordinate] = {}
    for key, member_ids in group_points(points, cell_size).items():
        if len(member_ids) == 1:
            user_id = member_ids[0]
            lat, lng = points[user_id]
            placements[user_id] = DisplayCoordinate(user_id=user_id, lat=lat, lng=lng)
            continue
        logger.debug("deoverlap_group", cell=key, size=len(member_ids))
        placements.update(_spread_group(member_ids, points, base_radius))

    return {user_id: placements[user_id] for user_id in points}
