# Settings for the member map service.
# Map, privacy and de-overlap constants are tunables, not laws: grouping
# tolerance and fuzz bound are close in magnitude and may need adjusting
# with population density.

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "Kigurumi Map"
    VERSION: str = "0.2.0"
    BRIEF_DESCRIPTION: str = "Map-based member directory: privacy-fuzzed locations, de-overlapped markers and zoom-dependent clusters."

    ENV: str = Field("development", description="Application environment (e.g., production, development)")
    LOG_LEVEL: str = Field("INFO", description="Root log level")

    # --- Geocoding providers ---
    AMAP_SERVER_KEY: Optional[str] = Field(None, description="Amap web-service key; enables Amap as the primary provider")
    NOMINATIM_BASE_URL: str = Field("https://nominatim.openstreetmap.org", description="Nominatim endpoint used as fallback provider")
    NOMINATIM_USER_AGENT: str = Field("KigurumiMap/1.0", description="User-Agent required by the Nominatim usage policy")
    IP_LOCATION_URL: str = Field("https://ipapi.co/{ip}/json/", description="IP location endpoint template")
    GEOCODER_LANGUAGE: str = Field("zh-CN", description="accept-language sent to providers")

    # Timeout per provider request
    GEOCODER_TIMEOUT: int = 8 # seconds
    # Transport retry on timeouts only; callers own any higher-level retry
    GEOCODER_MAX_RETRIES: int = 1
    GEOCODER_INITIAL_BACKOFF: float = 0.5 # seconds

    # --- Profile store ---
    REDIS_URL: Optional[str] = Field(None, description="Redis URL for the profile store")
    ENABLE_REDIS: bool = Field(False, description="Use Redis instead of the in-memory store")
    USER_LIST_LIMIT: int = Field(100, description="Newest N profiles served to the map")

    # --- Location privacy ---
    FUZZ_DECIMALS: int = 2 # ~1.1 km
    FUZZ_MAX_OFFSET: float = 0.01 # degrees, per axis

    # --- De-overlap ---
    GROUP_CELL_DEGREES: float = 0.03 # ~3 km grouping tolerance
    SPREAD_BASE_RADIUS_DEGREES: float = 0.02 # ~2.2 km

    # --- Map / clustering ---
    MAP_MIN_ZOOM: int = 2
    MAP_MAX_ZOOM: int = 13
    DISABLE_CLUSTERING_AT_ZOOM: int = 11
    MAX_CLUSTER_RADIUS_PX: int = 60
    FLY_TO_ZOOM: int = 12
    DEFAULT_CENTER: List[float] = Field([35.0, 105.0], description="Initial map center [lat, lng]")
    DEFAULT_ZOOM: int = 4
    VIEWPORT_WIDTH_PX: int = 1024
    VIEWPORT_HEIGHT_PX: int = 768

    # Nearby search
    NEARBY_RADIUS_KM: float = 50.0

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

settings = Settings()
