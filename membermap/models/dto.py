# Data models for member locations, map rendering and the public API.

from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Union

# --- Provider boundary ---

# Providers return scalars, arrays (Amap uses [] for "no value") or nothing.
ProviderField = Union[str, List[str], None]

class ProviderRegion(BaseModel):
    """Region fields as a geocoding provider returned them, before normalization."""
    country: ProviderField = None
    province: ProviderField = None
    city: ProviderField = None
    district: ProviderField = None

class Region(BaseModel):
    """Canonical region names. Never empty: missing parts hold the unknown sentinel."""
    country: str
    province: str
    city: str
    district: Optional[str] = None

# --- Stored data ---

class UserLocation(BaseModel):
    """Publicly displayable location of a member (already privacy-transformed)."""
    lat: float = Field(..., ge=-90, le=90, description="Latitude.")
    lng: float = Field(..., ge=-180, le=180, description="Longitude.")
    country: str = Field(..., description="Canonical country name.")
    province: Optional[str] = Field(None, description="Canonical province name.")
    city: Optional[str] = Field(None, description="Canonical city name.")

class Profile(BaseModel):
    """The slice of a member profile the map reads."""
    id: str = Field(..., description="Stable member identifier.")
    name: str = Field(..., description="Display name.")
    location: UserLocation
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class RegionStat(BaseModel):
    country: str
    province: Optional[str] = None
    count: int = 0
    label: Optional[str] = Field(None, description="Localized display label, when a language was requested.")

# --- Map rendering (derived, never persisted) ---

class MapPoint(BaseModel):
    """Input to the de-overlap engine. Missing coordinates are skipped, not defaulted."""
    id: str
    lat: Optional[float] = None
    lng: Optional[float] = None

class DisplayCoordinate(BaseModel):
    user_id: str
    lat: float
    lng: float

class Bounds(BaseModel):
    south: float
    west: float
    north: float
    east: float

class Viewport(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    zoom: float
    width: int = Field(1024, gt=0, description="Viewport width in screen pixels.")
    height: int = Field(768, gt=0, description="Viewport height in screen pixels.")

class BadgeTier(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

class MarkerState(str, Enum):
    CLUSTERED = "CLUSTERED"
    INDIVIDUAL = "INDIVIDUAL"
    STANDALONE = "STANDALONE"

class MarkerView(BaseModel):
    user_id: str
    name: str
    lat: float
    lng: float
    state: MarkerState
    highlighted: bool = False
    region_label: Optional[str] = None

class ClusterView(BaseModel):
    id: str
    lat: float
    lng: float
    count: int
    tier: BadgeTier
    icon_size: int = Field(..., description="Badge diameter in pixels.")
    bounds: Bounds
    member_ids: List[str]

class MapFrame(BaseModel):
    """One render pass: what the map surface should draw."""
    viewport: Viewport
    clusters: List[ClusterView] = Field(default_factory=list)
    markers: List[MarkerView] = Field(default_factory=list)
    standalone: Optional[MarkerView] = None
    total_users: int = 0

# --- API Request / Response Models ---

class ProfileUpdateRequest(BaseModel):
    """Body of PUT /api/profile. Coordinates are raw; the server fuzzes them once."""
    name: str = Field(..., min_length=1, max_length=64)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    country: ProviderField = None
    province: ProviderField = None
    city: ProviderField = None

class PublicUser(BaseModel):
    id: str
    name: str
    location: UserLocation
    created_at: datetime
    distance_km: Optional[float] = None

class ProfileResponse(BaseModel):
    profile: Optional[PublicUser] = None

class UsersResponse(BaseModel):
    users: List[PublicUser]

class StatsResponse(BaseModel):
    stats: List[RegionStat]

class GeocodeResponse(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    country: str
    province: str
    city: str
    district: Optional[str] = None

class RegionsResponse(BaseModel):
    countries: List[str]
    provinces: Dict[str, List[str]]

class MapViewRequest(BaseModel):
    viewport: Optional[Viewport] = None
    country: Optional[str] = None
    province: Optional[str] = None
    search: Optional[str] = None
    selected_id: Optional[str] = None

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="A machine-readable error code.")
    detail: str = Field(..., description="A human-readable explanation.")
    retry_after_seconds: Optional[int] = Field(None, description="Time until retry is allowed.")
