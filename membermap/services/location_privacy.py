"""Location privacy: coarsen and jitter coordinates before they become public."""

import math
import random
import secrets
from typing import Optional, Tuple

import structlog

from membermap.core.config import settings

logger = structlog.get_logger(__name__)

# Cryptographically secure RNG: repeated fuzzes of one point must not be predictable
_secure_random = secrets.SystemRandom()


def _require_finite(name: str, value) -> float:
    if value is None or isinstance(value, bool):
        raise ValueError(f"{name} is required, got {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number, got {value!r}")
    return value


def fuzzy_coordinates(
    lat: float,
    lng: float,
    rng: Optional[random.Random] = None,
) -> Tuple[float, float]:
    """
    Jitter each axis by a uniform offset in [-FUZZ_MAX_OFFSET, +FUZZ_MAX_OFFSET]
    and round to FUZZ_DECIMALS digits (~1.1 km at 2 digits).

    One-way and lossy. Apply exactly once per raw coordinate, where it is first
    accepted; fuzzing a fuzzed coordinate compounds the jitter.

    Raises:
        ValueError: if either coordinate is missing, NaN or infinite.
    """
    lat = _require_finite("lat", lat)
    lng = _require_finite("lng", lng)
    rng = rng or _secure_random

    max_offset = settings.FUZZ_MAX_OFFSET
    decimals = settings.FUZZ_DECIMALS

    fuzzed_lat = round(lat + rng.uniform(-max_offset, max_offset), decimals)
    fuzzed_lng = round(lng + rng.uniform(-max_offset, max_offset), decimals)

    # Clamping moves towards the input point, so the offset bound still holds
    fuzzed_lat = min(90.0, max(-90.0, fuzzed_lat))
    fuzzed_lng = min(180.0, max(-180.0, fuzzed_lng))
    return fuzzed_lat, fuzzed_lng


def is_public_precision(lat: float, lng: float) -> bool:
    decimals = settings.FUZZ_DECIMALS
    return round(lat, decimals) == lat and round(lng, decimals) == lng


def ensure_public_precision(lat: float, lng: float) -> Tuple[float, float]:
    """
    Read-side check. Coordinates stored at public precision pass through
    untouched; anything finer (rows written before fuzzing existed) is fuzzed
    once before it leaves the server.
    """
    lat = _require_finite("lat", lat)
    lng = _require_finite("lng", lng)
    if is_public_precision(lat, lng):
        return lat, lng
    logger.warning("location_precision_exceeded", decimals=settings.FUZZ_DECIMALS)
    return fuzzy_coordinates(lat, lng)
