# membermap/api/routes.py
# HTTP surface: geocoding, the caller's own profile location, the public
# member list and stats, and server-side map frames (placement + clustering).

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
import logging
from typing import Optional

from membermap.core.config import settings
from membermap.models.dto import (
    ErrorResponse,
    GeocodeResponse,
    MapFrame,
    MapViewRequest,
    Profile,
    ProfileResponse,
    ProfileUpdateRequest,
    PublicUser,
    RegionsResponse,
    StatsResponse,
    UserLocation,
    UsersResponse,
)
from membermap.services.geocoding import GeocodingClient, GeocodingError
from membermap.services.i18n import region_label
from membermap.services.location_picker import PickerRegistry
from membermap.services.location_privacy import fuzzy_coordinates
from membermap.services.map_session import MapSession, UnknownClusterError, UnknownUserError
from membermap.services.profile_store import ProfileStore, StoreUnavailableError
from membermap.services.region_normalizer import (
    CHINA_REGIONS,
    COUNTRIES,
    UNKNOWN,
    normalize_country,
    normalize_province,
    normalize_region,
)
from membermap.utils.haversine import members_within

router = APIRouter()
logger = logging.getLogger(__name__)

# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------
def get_profile_store(request: Request) -> ProfileStore:
    return request.app.state.profile_store

def get_geocoder(request: Request) -> GeocodingClient:
    return request.app.state.geocoder

def get_picker_registry(request: Request) -> PickerRegistry:
    return request.app.state.pickers

def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """The session layer in front of this service authenticates the caller and forwards the id."""
    if not x_user_id or not x_user_id.strip():
        raise _http_error(status.HTTP_401_UNAUTHORIZED, "AUTH_REQUIRED", "Please sign in first.")
    return x_user_id.strip()

def get_client_ip(request: Request) -> str:
    """
    Client IP behind a standard proxy setup: the first entry of
    X-Forwarded-For, else the direct peer.
    """
    x_forwarded_for = request.headers.get("x-forwarded-for")
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.client.host if request.client else "unknown_ip"

# ----------------------------------------------------------------------
# Error helpers
# ----------------------------------------------------------------------
def _http_error(status_code: int, error: str, detail: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=ErrorResponse(error=error, detail=detail).model_dump(),
    )

def _geocoding_error(e: GeocodingError) -> HTTPException:
    return _http_error(e.status_code, e.error, e.detail)

def _store_error() -> HTTPException:
    return _http_error(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "STORE_UNAVAILABLE",
        "Profile store is temporarily unavailable.",
    )

def _public_user(profile: Profile, distance_km: Optional[float] = None) -> PublicUser:
    return PublicUser(
        id=profile.id,
        name=profile.name,
        location=profile.location,
        created_at=profile.created_at,
        distance_km=distance_km,
    )

# ----------------------------------------------------------------------
# Geocoding
# ----------------------------------------------------------------------
async def _region_or_unknown(geocoder: GeocodingClient, lat: float, lng: float):
    try:
        return await geocoder.reverse_geocode(lat, lng)
    except GeocodingError as e:
        # The coordinate is still useful without names
        logger.warning(f"Reverse geocoding after forward lookup failed: {e.detail}")
        return normalize_region(None, None, None)

@router.get(
    "/geocode",
    response_model=GeocodeResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def geocode(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    address: Optional[str] = None,
    country: Optional[str] = None,
    province: Optional[str] = None,
    city: Optional[str] = None,
    geocoder: GeocodingClient = Depends(get_geocoder),
):
    """Reverse geocode (lat+lng), forward geocode (address) or locate a chosen region."""
    try:
        if lat is not None and lng is not None:
            region = await geocoder.reverse_geocode(lat, lng)
        elif address:
            lat, lng = await geocoder.geocode(address)
            region = await _region_or_unknown(geocoder, lat, lng)
        elif country or province:
            lat, lng = await geocoder.locate_region(
                normalize_country(country) if country else None, province, city
            )
            region = await _region_or_unknown(geocoder, lat, lng)
        else:
            raise _http_error(
                status.HTTP_400_BAD_REQUEST,
                "MISSING_PARAMETERS",
                "Provide lat and lng, an address, or a country/province.",
            )
    except GeocodingError as e:
        raise _geocoding_error(e)

    return GeocodeResponse(lat=lat, lng=lng, **region.model_dump())

@router.get(
    "/geocode/ip",
    response_model=GeocodeResponse,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def geocode_ip(request: Request, geocoder: GeocodingClient = Depends(get_geocoder)):
    """Coarse location of the caller's IP, for when GPS is unavailable."""
    try:
        lat, lng, region = await geocoder.locate_ip(get_client_ip(request))
    except GeocodingError as e:
        raise _geocoding_error(e)
    return GeocodeResponse(lat=lat, lng=lng, **region.model_dump())

@router.get(
    "/geocode/pick",
    response_model=GeocodeResponse,
    responses={401: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def geocode_pick(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    user_id: str = Depends(get_current_user_id),
    geocoder: GeocodingClient = Depends(get_geocoder),
    pickers: PickerRegistry = Depends(get_picker_registry),
):
    """
    Resolve the point the caller is dragging the location marker to. A newer
    pick by the same caller supersedes this one, which then answers 409
    instead of a region for a point the caller already left.
    """
    picker = pickers.picker_for(user_id, geocoder)
    try:
        region = await picker.pick(lat, lng)
    except GeocodingError as e:
        raise _geocoding_error(e)
    if region is None:
        raise _http_error(
            status.HTTP_409_CONFLICT,
            "PICK_SUPERSEDED",
            "A newer location pick replaced this one.",
        )
    return GeocodeResponse(lat=lat, lng=lng, **region.model_dump())

@router.get("/regions", response_model=RegionsResponse)
async def regions():
    return RegionsResponse(countries=COUNTRIES, provinces=CHINA_REGIONS)

# ----------------------------------------------------------------------
# Own profile
# ----------------------------------------------------------------------
@router.get("/profile", response_model=ProfileResponse, responses={401: {"model": ErrorResponse}})
async def get_profile(
    user_id: str = Depends(get_current_user_id),
    store: ProfileStore = Depends(get_profile_store),
):
    try:
        profile = await store.get(user_id)
    except StoreUnavailableError:
        raise _store_error()
    return ProfileResponse(profile=_public_user(profile) if profile else None)

@router.put(
    "/profile",
    response_model=ProfileResponse,
    responses={401: {"model": ErrorResponse}, 502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def update_profile(
    data: ProfileUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    store: ProfileStore = Depends(get_profile_store),
    geocoder: GeocodingClient = Depends(get_geocoder),
):
    """
    Save the caller's location. Region names are normalized (or resolved from
    the raw coordinate) and the coordinate is fuzzed here, once, before storage.
    """
    if any(v for v in (data.country, data.province, data.city)):
        region = normalize_region(data.country, data.province, data.city)
    else:
        try:
            region = await geocoder.reverse_geocode(data.lat, data.lng)
        except GeocodingError as e:
            raise _geocoding_error(e)

    lat, lng = fuzzy_coordinates(data.lat, data.lng)
    location = UserLocation(
        lat=lat,
        lng=lng,
        country=region.country,
        province=region.province,
        city=region.city,
    )
    try:
        profile = await store.save_location(user_id, data.name.strip(), location)
    except StoreUnavailableError:
        raise _store_error()
    return ProfileResponse(profile=_public_user(profile))

@router.delete(
    "/profile",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_profile(
    user_id: str = Depends(get_current_user_id),
    store: ProfileStore = Depends(get_profile_store),
):
    try:
        removed = await store.delete(user_id)
    except StoreUnavailableError:
        raise _store_error()
    if not removed:
        raise _http_error(status.HTTP_404_NOT_FOUND, "PROFILE_NOT_FOUND", "No profile to delete.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)

# ----------------------------------------------------------------------
# Public member list and stats
# ----------------------------------------------------------------------
@router.get("/users", response_model=UsersResponse, responses={503: {"model": ErrorResponse}})
async def list_users(
    country: Optional[str] = None,
    province: Optional[str] = None,
    store: ProfileStore = Depends(get_profile_store),
):
    try:
        profiles = await store.list_profiles(
            country=normalize_country(country) if country else None,
            province=normalize_province(province) if province else None,
        )
    except StoreUnavailableError:
        raise _store_error()
    return UsersResponse(users=[_public_user(p) for p in profiles])

@router.get("/users/nearby", response_model=UsersResponse, responses={503: {"model": ErrorResponse}})
async def nearby_users(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(settings.NEARBY_RADIUS_KM, gt=0, le=20000),
    store: ProfileStore = Depends(get_profile_store),
):
    """Members within radius_km of a point, nearest first."""
    try:
        profiles = await store.list_profiles()
    except StoreUnavailableError:
        raise _store_error()

    nearest = members_within(lat, lng, profiles, radius_km)
    return UsersResponse(users=[_public_user(p, round(d, 2)) for d, p in nearest])

@router.get("/stats", response_model=StatsResponse, responses={503: {"model": ErrorResponse}})
async def stats(
    lang: Optional[str] = None,
    store: ProfileStore = Depends(get_profile_store),
):
    """Member counts per country/province for the region filter."""
    try:
        region_stats = await store.region_stats()
    except StoreUnavailableError:
        raise _store_error()

    if lang:
        for stat in region_stats:
            name = stat.province if stat.province and stat.province != UNKNOWN else stat.country
            stat.label = region_label(name, lang)
    return StatsResponse(stats=region_stats)

# ----------------------------------------------------------------------
# Map frames
# ----------------------------------------------------------------------
async def _map_session(data: MapViewRequest, store: ProfileStore) -> MapSession:
    try:
        profiles = await store.list_profiles()
    except StoreUnavailableError:
        raise _store_error()

    session = MapSession(viewport=data.viewport)
    session.refresh(profiles)
    session.apply_filter(data.country, data.province)
    session.search(data.search)
    return session

def _unknown_user(user_id: str) -> HTTPException:
    return _http_error(status.HTTP_404_NOT_FOUND, "USER_NOT_ON_MAP", f"User {user_id} is not on the map.")

@router.post("/map/view", response_model=MapFrame, responses={404: {"model": ErrorResponse}})
async def map_view(data: MapViewRequest, store: ProfileStore = Depends(get_profile_store)):
    """Display coordinates and clusters for a viewport. Selecting a user flies to it."""
    session = await _map_session(data, store)
    if data.selected_id:
        try:
            session.select(data.selected_id)
        except UnknownUserError:
            raise _unknown_user(data.selected_id)
    return session.render()

@router.post(
    "/map/clusters/{cluster_id}/expand",
    response_model=MapFrame,
    responses={404: {"model": ErrorResponse}},
)
async def expand_cluster(
    cluster_id: str,
    data: MapViewRequest,
    store: ProfileStore = Depends(get_profile_store),
):
    session = await _map_session(data, store)
    if data.selected_id:
        try:
            # Keep the caller's viewport: the cluster is expanded where they are looking
            session.select(data.selected_id, fly_to=False)
        except UnknownUserError:
            raise _unknown_user(data.selected_id)
    try:
        return session.expand(cluster_id)
    except UnknownClusterError:
        raise _http_error(
            status.HTTP_404_NOT_FOUND,
            "CLUSTER_NOT_FOUND",
            f"Cluster {cluster_id} does not exist at this zoom level.",
        )
