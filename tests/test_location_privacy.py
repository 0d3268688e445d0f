import math
import random

import pytest

from membermap.services.location_privacy import (
    ensure_public_precision,
    fuzzy_coordinates,
    is_public_precision,
)

# Offset bound plus half a unit of the 2-decimal rounding
MAX_DISPLACEMENT = 0.015 + 1e-9


def test_fuzz_stays_within_bound():
    lat, lng = 39.904211, 116.407395
    for _ in range(500):
        fuzzed_lat, fuzzed_lng = fuzzy_coordinates(lat, lng)
        assert abs(fuzzed_lat - lat) <= MAX_DISPLACEMENT
        assert abs(fuzzed_lng - lng) <= MAX_DISPLACEMENT
        assert is_public_precision(fuzzed_lat, fuzzed_lng)


def test_fuzz_is_not_deterministic():
    results = {fuzzy_coordinates(31.2304, 121.4737) for _ in range(50)}
    assert len(results) > 1


def test_injected_rng_is_reproducible():
    first = fuzzy_coordinates(22.5431, 114.0579, rng=random.Random(7))
    second = fuzzy_coordinates(22.5431, 114.0579, rng=random.Random(7))
    assert first == second


def test_fuzz_keeps_coordinates_in_range():
    rng = random.Random(1)
    for _ in range(100):
        lat, lng = fuzzy_coordinates(90.0, 180.0, rng=rng)
        assert -90.0 <= lat <= 90.0
        assert -180.0 <= lng <= 180.0
        lat, lng = fuzzy_coordinates(-90.0, -180.0, rng=rng)
        assert -90.0 <= lat <= 90.0
        assert -180.0 <= lng <= 180.0


@pytest.mark.parametrize("lat, lng", [
    (math.nan, 116.4),
    (39.9, None),
    (math.inf, 0.0),
    (True, 0.0),
])
def test_fuzz_rejects_invalid_input(lat, lng):
    with pytest.raises(ValueError):
        fuzzy_coordinates(lat, lng)


def test_public_precision_passes_through():
    assert ensure_public_precision(39.9, 116.41) == (39.9, 116.41)


def test_raw_coordinates_are_fuzzed_on_read():
    lat, lng = ensure_public_precision(39.904211, 116.407395)
    assert is_public_precision(lat, lng)
    assert abs(lat - 39.904211) <= MAX_DISPLACEMENT
    assert abs(lng - 116.407395) <= MAX_DISPLACEMENT


def test_ensure_public_precision_rejects_nan():
    with pytest.raises(ValueError):
        ensure_public_precision(math.nan, 0.0)
