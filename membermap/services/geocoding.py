# Geocoding collaborator: Amap (when a server key is configured) with
# Nominatim as fallback, plus coarse IP location. Provider payloads are
# collapsed by the region normalizer before anything else sees them.

import asyncio
import logging
import random
import re
from typing import Optional, Tuple

import httpx
from fastapi import status

from membermap.core.config import settings
from membermap.models.dto import ProviderRegion, Region
from membermap.services.region_normalizer import CHINA, normalize_region

logger = logging.getLogger(__name__)

AMAP_REGEO_URL = "https://restapi.amap.com/v3/geocode/regeo"
AMAP_GEO_URL = "https://restapi.amap.com/v3/geocode/geo"

# "lat,lng" or "lat lng"
COORD_PATTERN = re.compile(r'^([-+]?\d{1,3}(?:\.\d+)?)[,\s]+([-+]?\d{1,3}(?:\.\d+)?)$')


class GeocodingError(Exception):
    """A geocoding request failed; carries the public error code and HTTP status."""

    def __init__(self, error: str, detail: str, status_code: int = status.HTTP_502_BAD_GATEWAY):
        super().__init__(detail)
        self.error = error
        self.detail = detail
        self.status_code = status_code


def parse_coordinates(text: str) -> Optional[Tuple[float, float]]:
    """
    Parse a "lat,lng" string. A first value outside [-90, 90] is taken as the
    longitude ("lng,lat" order, as Amap writes it). Returns None if the text
    is not a coordinate pair.
    """
    match = COORD_PATTERN.match(text.strip())
    if not match:
        return None
    val1, val2 = float(match.group(1)), float(match.group(2))
    if abs(val1) > 90 and abs(val2) <= 90:
        lat, lng = val2, val1
    else:
        lat, lng = val1, val2
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise GeocodingError(
            "INVALID_COORDINATES",
            f"Coordinates {val1},{val2} are out of range.",
            status.HTTP_400_BAD_REQUEST,
        )
    return lat, lng


def region_query(country: Optional[str], province: Optional[str] = None, city: Optional[str] = None) -> str:
    """Free-text query for a manually chosen region."""
    if province:
        address = province + (city or "")
        if country == CHINA:
            address = f"{CHINA}{address}"
        return address
    return country or ""


class GeocodingClient:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, amap_key: Optional[str] = None):
        self.client = client or httpx.AsyncClient(timeout=settings.GEOCODER_TIMEOUT)
        self.amap_key = amap_key if amap_key is not None else settings.AMAP_SERVER_KEY

    async def aclose(self):
        await self.client.aclose()

    async def _get_json(self, url: str, params: dict, headers: Optional[dict] = None):
        max_retries = settings.GEOCODER_MAX_RETRIES
        backoff_time = settings.GEOCODER_INITIAL_BACKOFF

        for attempt in range(max_retries + 1):
            try:
                response = await self.client.get(url, params=params, headers=headers)
                response.raise_for_status()
                return response.json()
            except httpx.TimeoutException:
                logger.warning(f"Geocoder request to {url} timed out (attempt {attempt + 1}).")
                if attempt < max_retries:
                    wait_time = backoff_time * (2 ** attempt) + random.uniform(0, 0.1)
                    await asyncio.sleep(wait_time)
        raise GeocodingError(
            "GEOCODER_TIMEOUT",
            "Geocoding service timed out.",
            status.HTTP_504_GATEWAY_TIMEOUT,
        )

    def _nominatim_headers(self) -> dict:
        return {"User-Agent": settings.NOMINATIM_USER_AGENT}

    # --- reverse geocoding ---

    async def reverse_geocode(self, lat: float, lng: float) -> Region:
        """
        Resolve a coordinate to canonical region names.

        Raises:
            GeocodingError: if every provider failed.
        """
        providers = []
        if self.amap_key:
            providers.append(("amap", self._amap_reverse))
        providers.append(("nominatim", self._nominatim_reverse))

        for name, provider in providers:
            try:
                raw = await provider(lat, lng)
            except (GeocodingError, httpx.HTTPError, ValueError) as e:
                logger.warning(f"Reverse geocoding via {name} failed: {e}")
                continue
            if raw is not None:
                return normalize_region(raw.country, raw.province, raw.city, raw.district)
            logger.info(f"Reverse geocoding via {name} returned no address.")

        raise GeocodingError("GEOCODING_FAILED", "Could not resolve this location.")

    async def _amap_reverse(self, lat: float, lng: float) -> Optional[ProviderRegion]:
        data = await self._get_json(AMAP_REGEO_URL, {
            "key": self.amap_key,
            "location": f"{lng},{lat}",
            "extensions": "base",
        })
        if data.get("status") != "1" or not data.get("regeocode"):
            return None
        addr = data["regeocode"].get("addressComponent") or {}
        return ProviderRegion(
            # Amap leaves the country out for most domestic results
            country=addr.get("country") or CHINA,
            province=addr.get("province"),
            city=addr.get("city"),
            district=addr.get("district"),
        )

    async def _nominatim_reverse(self, lat: float, lng: float, zoom: int = 10) -> Optional[ProviderRegion]:
        data = await self._get_json(
            f"{settings.NOMINATIM_BASE_URL}/reverse",
            {
                "lat": lat,
                "lon": lng,
                "format": "json",
                "accept-language": settings.GEOCODER_LANGUAGE,
                "addressdetails": 1,
                "zoom": zoom,
            },
            headers=self._nominatim_headers(),
        )
        addr = data.get("address") if isinstance(data, dict) else None
        if not addr:
            return None

        city = addr.get("city") or addr.get("municipality") or addr.get("town")
        district = addr.get("county") or addr.get("district") or addr.get("suburb")

        # County-level answers lack the prefecture city; ask one level up
        if not city and district and zoom > 8:
            try:
                upper = await self._nominatim_reverse(lat, lng, zoom=8)
                city = upper.city if upper else None
            except (GeocodingError, httpx.HTTPError):
                city = None

        return ProviderRegion(
            country=addr.get("country"),
            province=addr.get("state") or addr.get("province") or addr.get("region"),
            city=city,
            district=district,
        )

    # --- forward geocoding ---

    async def geocode(self, address: str) -> Tuple[float, float]:
        """
        Geocode a free-text address, or accept a literal "lat,lng" pair.

        Returns:
            A tuple of (latitude, longitude), unfuzzed.

        Raises:
            GeocodingError: invalid input (400) or no provider found the address (404).
        """
        query = (address or "").strip()
        if len(query) < 2:
            raise GeocodingError(
                "INVALID_ADDRESS",
                "Address must be at least 2 characters long.",
                status.HTTP_400_BAD_REQUEST,
            )

        coords = parse_coordinates(query)
        if coords:
            logger.info("Direct coordinate input detected.")
            return coords

        if self.amap_key:
            try:
                data = await self._get_json(AMAP_GEO_URL, {"key": self.amap_key, "address": query})
                if data.get("status") == "1" and data.get("geocodes"):
                    lng, lat = (float(v) for v in data["geocodes"][0]["location"].split(","))
                    return lat, lng
            except (GeocodingError, httpx.HTTPError, ValueError, KeyError) as e:
                logger.warning(f"Amap geocoding failed: {e}")

        try:
            data = await self._get_json(
                f"{settings.NOMINATIM_BASE_URL}/search",
                {
                    "q": query,
                    "format": "json",
                    "accept-language": settings.GEOCODER_LANGUAGE,
                    "limit": 1,
                },
                headers=self._nominatim_headers(),
            )
            if data:
                return float(data[0]["lat"]), float(data[0]["lon"])
        except (GeocodingError, httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning(f"Nominatim geocoding failed: {e}")
            raise GeocodingError("GEOCODING_FAILED", "Geocoding service is unavailable.") from e

        raise GeocodingError(
            "ADDRESS_NOT_FOUND",
            "Could not geocode address. Please check the address and try again.",
            status.HTTP_404_NOT_FOUND,
        )

    async def locate_region(
        self,
        country: Optional[str],
        province: Optional[str] = None,
        city: Optional[str] = None,
    ) -> Tuple[float, float]:
        """Approximate coordinate of a manually chosen country/province/city."""
        return await self.geocode(region_query(country, province, city))

    # --- IP location ---

    async def locate_ip(self, ip: str) -> Tuple[float, float, Region]:
        """Coarse location of an IP address. Less precise than GPS; used as fallback."""
        try:
            data = await self._get_json(settings.IP_LOCATION_URL.format(ip=ip), {})
        except httpx.HTTPError as e:
            raise GeocodingError("IP_LOCATION_FAILED", "IP location service is unavailable.") from e

        if data.get("error") or data.get("latitude") is None or data.get("longitude") is None:
            raise GeocodingError(
                "IP_LOCATION_FAILED",
                data.get("reason") or "IP address could not be located.",
                status.HTTP_404_NOT_FOUND,
            )
        region = normalize_region(data.get("country_name"), data.get("region"), data.get("city"))
        return float(data["latitude"]), float(data["longitude"]), region
