"""
Rendering session: all mutable map state for one viewer.

A MapSession owns the visible member set, their display coordinates, the
region filter, the search highlight, the selection and the viewport. Nothing
lives in module globals, so sessions are independent of each other and the
placement/clustering code can be tested without any map surface.

Marker lifecycle:
    CLUSTERED -> STANDALONE (select) -> CLUSTERED (deselect)
    CLUSTERED -> INDIVIDUAL (cluster expanded to/above the clustering floor)
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from membermap.core.config import settings
from membermap.models.dto import (
    ClusterView,
    DisplayCoordinate,
    MapFrame,
    MarkerState,
    MarkerView,
    Profile,
    Viewport,
)
from membermap.services.clustering import (
    clamp_zoom,
    cluster_points,
    fit_bounds_zoom,
    zoom_level,
)
from membermap.services.deoverlap import place_users
from membermap.services.region_normalizer import UNKNOWN, normalize_country, normalize_province

logger = structlog.get_logger(__name__)


class UnknownUserError(KeyError):
    """The user is not part of the visible set."""


class UnknownClusterError(KeyError):
    """No cluster with this id in the current frame."""


@dataclass
class RegionFilter:
    country: Optional[str] = None
    province: Optional[str] = None

    def matches(self, profile: Profile) -> bool:
        location = profile.location
        if self.country and location.country != normalize_country(self.country):
            return False
        if self.province:
            # The sidebar lists countries and provinces side by side
            province = normalize_province(self.province)
            if location.province != province and location.country != province:
                return False
        return True


class MapSession:
    def __init__(
        self,
        viewport: Optional[Viewport] = None,
        *,
        min_zoom: int = None,
        max_zoom: int = None,
        cluster_floor: int = None,
        cluster_radius_px: int = None,
        fly_to_zoom: int = None,
    ):
        self.min_zoom = settings.MAP_MIN_ZOOM if min_zoom is None else min_zoom
        self.max_zoom = settings.MAP_MAX_ZOOM if max_zoom is None else max_zoom
        self.cluster_floor = settings.DISABLE_CLUSTERING_AT_ZOOM if cluster_floor is None else cluster_floor
        self.cluster_radius_px = cluster_radius_px or settings.MAX_CLUSTER_RADIUS_PX
        self.fly_to_zoom = settings.FLY_TO_ZOOM if fly_to_zoom is None else fly_to_zoom

        self.viewport = self._clamped(viewport or Viewport(
            lat=settings.DEFAULT_CENTER[0],
            lng=settings.DEFAULT_CENTER[1],
            zoom=settings.DEFAULT_ZOOM,
            width=settings.VIEWPORT_WIDTH_PX,
            height=settings.VIEWPORT_HEIGHT_PX,
        ))
        self.region_filter = RegionFilter()
        self.search_query = ""
        self.selected_id: Optional[str] = None

        self._profiles: Dict[str, Profile] = {}
        self._placements: Dict[str, DisplayCoordinate] = {}
        self._placement_key: Tuple = ()
        self._states: Dict[str, MarkerState] = {}

    # --- data ---

    def refresh(self, profiles: Iterable[Profile]) -> None:
        """
        Merge a fresh snapshot of profiles. Filter, search and selection
        survive; placement is recomputed only if the visible set changed.
        """
        snapshot: Dict[str, Profile] = {}
        for profile in profiles:
            snapshot[profile.id] = profile
        self._profiles = snapshot
        self._update_placements()

    def visible_profiles(self) -> List[Profile]:
        return [p for p in self._profiles.values() if self.region_filter.matches(p)]

    def display_coordinate(self, user_id: str) -> DisplayCoordinate:
        try:
            return self._placements[user_id]
        except KeyError:
            raise UnknownUserError(user_id) from None

    def _update_placements(self) -> None:
        visible = self.visible_profiles()
        key = tuple((p.id, p.location.lat, p.location.lng) for p in visible)
        if key != self._placement_key:
            self._placements = place_users(
                {"id": p.id, "lat": p.location.lat, "lng": p.location.lng} for p in visible
            )
            self._placement_key = key
            logger.debug("map_placements_recomputed", visible=len(visible))

        if self.selected_id and self.selected_id not in self._placements:
            logger.info("map_selection_dropped", user_id=self.selected_id)
            self.selected_id = None

    # --- filter / search ---

    def apply_filter(self, country: Optional[str] = None, province: Optional[str] = None) -> None:
        self.region_filter = RegionFilter(country=country or None, province=province or None)
        self._update_placements()

    def clear_filter(self) -> None:
        self.apply_filter()

    def search(self, query: Optional[str]) -> List[Profile]:
        """Highlight members whose name contains the query; returns the matches."""
        self.search_query = (query or "").strip()
        return [p for p in self.visible_profiles() if self._is_highlighted(p)]

    def _is_highlighted(self, profile: Profile) -> bool:
        return bool(self.search_query) and self.search_query.casefold() in profile.name.casefold()

    # --- selection / viewport ---

    def set_viewport(self, viewport: Viewport) -> None:
        self.viewport = self._clamped(viewport)

    def _clamped(self, viewport: Viewport) -> Viewport:
        return viewport.model_copy(update={"zoom": clamp_zoom(viewport.zoom, self.min_zoom, self.max_zoom)})

    def select(self, user_id: str, fly_to: bool = True) -> DisplayCoordinate:
        """
        Pull the member out of the clustering layer as a standalone marker and
        fly to its display coordinate. The coordinate itself is not recomputed.
        """
        coordinate = self.display_coordinate(user_id)
        self.selected_id = user_id
        if not fly_to:
            return coordinate
        self.viewport = self._clamped(self.viewport.model_copy(update={
            "lat": coordinate.lat,
            "lng": coordinate.lng,
            "zoom": self.fly_to_zoom,
        }))
        return coordinate

    def deselect(self) -> None:
        self.selected_id = None

    def marker_state(self, user_id: str) -> MarkerState:
        """State of the member's marker in the most recent frame."""
        try:
            return self._states[user_id]
        except KeyError:
            raise UnknownUserError(user_id) from None

    # --- rendering ---

    def _marker(self, user_id: str, state: MarkerState) -> MarkerView:
        profile = self._profiles[user_id]
        coordinate = self._placements[user_id]
        location = profile.location
        label = next(
            (v for v in (location.province, location.country) if v and v != UNKNOWN),
            None,
        )
        return MarkerView(
            user_id=user_id,
            name=profile.name,
            lat=coordinate.lat,
            lng=coordinate.lng,
            state=state,
            highlighted=self._is_highlighted(profile),
            region_label=label,
        )

    def render(self) -> MapFrame:
        clustered_points = [
            coordinate for user_id, coordinate in self._placements.items()
            if user_id != self.selected_id
        ]
        clusters, singles = cluster_points(
            clustered_points,
            self.viewport.zoom,
            radius_px=self.cluster_radius_px,
            cluster_floor=self.cluster_floor,
            min_zoom=self.min_zoom,
            max_zoom=self.max_zoom,
        )

        states: Dict[str, MarkerState] = {}
        for cluster in clusters:
            for member_id in cluster.member_ids:
                states[member_id] = MarkerState.CLUSTERED
        markers = []
        for point in singles:
            states[point.user_id] = MarkerState.INDIVIDUAL
            markers.append(self._marker(point.user_id, MarkerState.INDIVIDUAL))

        standalone = None
        if self.selected_id:
            states[self.selected_id] = MarkerState.STANDALONE
            standalone = self._marker(self.selected_id, MarkerState.STANDALONE)

        self._states = states
        return MapFrame(
            viewport=self.viewport,
            clusters=clusters,
            markers=markers,
            standalone=standalone,
            total_users=len(self._placements),
        )

    def expand(self, cluster_id: str) -> MapFrame:
        """
        Cluster click: zoom to the cluster's bounds. Past the clustering floor
        the members come back as individual markers; when already at max zoom
        the members are spread out in place (spiderfied).
        """
        frame = self.render()
        cluster = self._find_cluster(frame, cluster_id)

        current = zoom_level(self.viewport.zoom, self.min_zoom, self.max_zoom)
        # Only reachable when cluster_floor is above max_zoom; with the default
        # settings (floor 11, max 13) no cluster is rendered at max zoom.
        if current >= self.max_zoom:
            return self._spiderfy(frame, cluster)

        target = max(
            current + 1,
            fit_bounds_zoom(
                cluster.bounds,
                self.viewport.width,
                self.viewport.height,
                self.min_zoom,
                self.max_zoom,
            ),
        )
        self.viewport = self._clamped(self.viewport.model_copy(update={
            "lat": (cluster.bounds.south + cluster.bounds.north) / 2,
            "lng": (cluster.bounds.west + cluster.bounds.east) / 2,
            "zoom": target,
        }))
        logger.debug("map_cluster_expanded", cluster_id=cluster_id, zoom=self.viewport.zoom)
        return self.render()

    def _find_cluster(self, frame: MapFrame, cluster_id: str) -> ClusterView:
        for cluster in frame.clusters:
            if cluster.id == cluster_id:
                return cluster
        raise UnknownClusterError(cluster_id)

    def _spiderfy(self, frame: MapFrame, cluster: ClusterView) -> MapFrame:
        markers = list(frame.markers)
        for member_id in cluster.member_ids:
            self._states[member_id] = MarkerState.INDIVIDUAL
            markers.append(self._marker(member_id, MarkerState.INDIVIDUAL))
        return frame.model_copy(update={
            "clusters": [c for c in frame.clusters if c.id != cluster.id],
            "markers": markers,
        })
