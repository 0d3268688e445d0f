"""
Zoom-dependent marker clustering over display coordinates.

Clusters form by on-screen proximity: points are projected to Web Mercator
pixels at the current zoom and merged greedily, in input order, into the
nearest cluster whose anchor lies within a constant pixel radius. From
DISABLE_CLUSTERING_AT_ZOOM upwards every point is drawn on its own.
"""

import math
from typing import Dict, List, Sequence, Tuple

from membermap.core.config import settings
from membermap.models.dto import BadgeTier, Bounds, ClusterView, DisplayCoordinate

TILE_SIZE = 256
MAX_MERCATOR_LAT = 85.0511287798

# (minimum count, tier, badge diameter in px), largest first
BADGE_TIERS = (
    (100, BadgeTier.LARGE, 56),
    (10, BadgeTier.MEDIUM, 48),
    (0, BadgeTier.SMALL, 40),
)


def clamp_zoom(zoom: float, min_zoom: int = None, max_zoom: int = None) -> float:
    min_zoom = settings.MAP_MIN_ZOOM if min_zoom is None else min_zoom
    max_zoom = settings.MAP_MAX_ZOOM if max_zoom is None else max_zoom
    return min(max(zoom, min_zoom), max_zoom)


def zoom_level(zoom: float, min_zoom: int = None, max_zoom: int = None) -> int:
    """Integer zoom used for clustering; fractional zooms cluster like the level below."""
    return int(math.floor(clamp_zoom(zoom, min_zoom, max_zoom)))


def project(lat: float, lng: float, zoom: float) -> Tuple[float, float]:
    """Web Mercator pixel coordinates of a point at the given zoom."""
    scale = TILE_SIZE * (2 ** zoom)
    lat = min(max(lat, -MAX_MERCATOR_LAT), MAX_MERCATOR_LAT)
    sin_lat = math.sin(math.radians(lat))
    x = (lng + 180.0) / 360.0 * scale
    y = (0.5 - math.log((1 + sin_lat) / (1 - sin_lat)) / (4 * math.pi)) * scale
    return x, y


def badge_tier(count: int) -> Tuple[BadgeTier, int]:
    for minimum, tier, size in BADGE_TIERS:
        if count >= minimum:
            return tier, size
    return BADGE_TIERS[-1][1], BADGE_TIERS[-1][2]


def is_clustering_enabled(
    zoom: float,
    cluster_floor: int = None,
    min_zoom: int = None,
    max_zoom: int = None,
) -> bool:
    floor_zoom = settings.DISABLE_CLUSTERING_AT_ZOOM if cluster_floor is None else cluster_floor
    return zoom_level(zoom, min_zoom, max_zoom) < floor_zoom


def bounds_of(points: Sequence[DisplayCoordinate]) -> Bounds:
    return Bounds(
        south=min(p.lat for p in points),
        west=min(p.lng for p in points),
        north=max(p.lat for p in points),
        east=max(p.lng for p in points),
    )


def fit_bounds_zoom(
    bounds: Bounds,
    width: int,
    height: int,
    min_zoom: int = None,
    max_zoom: int = None,
) -> int:
    """Highest zoom at which the bounds fit inside a width x height viewport."""
    min_zoom = settings.MAP_MIN_ZOOM if min_zoom is None else min_zoom
    max_zoom = settings.MAP_MAX_ZOOM if max_zoom is None else max_zoom
    for zoom in range(max_zoom, min_zoom - 1, -1):
        west, north = project(bounds.north, bounds.west, zoom)
        east, south = project(bounds.south, bounds.east, zoom)
        if east - west <= width and south - north <= height:
            return zoom
    return min_zoom


def _cluster_view(members: List[DisplayCoordinate]) -> ClusterView:
    count = len(members)
    tier, size = badge_tier(count)
    return ClusterView(
        id=f"cluster-{members[0].user_id}",
        lat=sum(p.lat for p in members) / count,
        lng=sum(p.lng for p in members) / count,
        count=count,
        tier=tier,
        icon_size=size,
        bounds=bounds_of(members),
        member_ids=[p.user_id for p in members],
    )


def cluster_points(
    points: Sequence[DisplayCoordinate],
    zoom: float,
    radius_px: int = None,
    cluster_floor: int = None,
    min_zoom: int = None,
    max_zoom: int = None,
) -> Tuple[List[ClusterView], List[DisplayCoordinate]]:
    """
    Split points into clusters (2+ members) and individually drawn points.

    Deterministic for a given point order and zoom. Cluster ids derive from
    the first member, which anchors the cluster.
    """
    if not is_clustering_enabled(zoom, cluster_floor, min_zoom, max_zoom):
        return [], list(points)

    radius = radius_px or settings.MAX_CLUSTER_RADIUS_PX
    level = zoom_level(zoom, min_zoom, max_zoom)

    anchors: List[Tuple[float, float]] = []
    groups: List[List[DisplayCoordinate]] = []
    grid: Dict[Tuple[int, int], List[int]] = {}

    for point in points:
        x, y = project(point.lat, point.lng, level)
        cell = (int(x // radius), int(y // radius))

        best, best_distance = None, None
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                for index in grid.get((cell[0] + dx, cell[1] + dy), ()):
                    ax, ay = anchors[index]
                    distance = math.hypot(x - ax, y - ay)
                    if distance > radius:
                        continue
                    if best is None or (distance, index) < (best_distance, best):
                        best, best_distance = index, distance

        if best is None:
            grid.setdefault(cell, []).append(len(groups))
            anchors.append((x, y))
            groups.append([point])
        else:
            groups[best].append(point)

    clusters = [_cluster_view(members) for members in groups if len(members) > 1]
    singles = [members[0] for members in groups if len(members) == 1]
    return clusters, singles
