"""Resolve a picked map point to a region, tolerating out-of-order replies."""

import asyncio
from typing import Dict, Optional, Protocol

import structlog

from membermap.models.dto import Region
from membermap.utils.generation import RequestGeneration

logger = structlog.get_logger(__name__)


class ReverseGeocoder(Protocol):
    async def reverse_geocode(self, lat: float, lng: float) -> Region: ...


class LocationPicker:
    """
    Holds the point the user last picked and the region resolved for it.

    Every ``pick`` supersedes the previous one: a slow reply for an older
    point is dropped instead of overwriting the newer state, and ``close``
    abandons whatever is still in flight.
    """

    def __init__(self, geocoder: ReverseGeocoder):
        self.geocoder = geocoder
        self.generation = RequestGeneration()
        self.point: Optional[tuple] = None
        self.region: Optional[Region] = None
        self.error: Optional[Exception] = None
        self._inflight: Optional[asyncio.Task] = None

    async def pick(self, lat: float, lng: float) -> Optional[Region]:
        """
        Returns the resolved region, or None when a newer pick superseded
        this one. Provider errors are recorded on ``error`` and re-raised.
        """
        token = self.generation.next()
        self.point = (lat, lng)
        self.error = None

        task = asyncio.ensure_future(self.geocoder.reverse_geocode(lat, lng))
        self._inflight = task
        try:
            region = await task
        except asyncio.CancelledError:
            if self.generation.is_current(token):
                raise
            return None
        except Exception as e:
            if self.generation.is_current(token):
                self.error = e
                raise
            logger.debug("location_pick_stale_error", token=token, error=str(e))
            return None
        finally:
            if self._inflight is task:
                self._inflight = None

        if not self.generation.is_current(token):
            logger.debug("location_pick_stale", token=token, lat=lat, lng=lng)
            return None
        self.region = region
        return region

    def close(self) -> None:
        """Abandon the in-flight request; late replies are discarded."""
        self.generation.invalidate()
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None


class PickerRegistry:
    """
    One LocationPicker per signed-in user, so a user's newer pick supersedes
    only that user's older one.
    """

    def __init__(self):
        self._pickers: Dict[str, LocationPicker] = {}

    def picker_for(self, user_id: str, geocoder: ReverseGeocoder) -> LocationPicker:
        picker = self._pickers.get(user_id)
        if picker is None or picker.geocoder is not geocoder:
            if picker is not None:
                picker.close()
            picker = LocationPicker(geocoder)
            self._pickers[user_id] = picker
        return picker

    def discard(self, user_id: str) -> None:
        picker = self._pickers.pop(user_id, None)
        if picker is not None:
            picker.close()

    def close(self) -> None:
        for picker in self._pickers.values():
            picker.close()
        self._pickers.clear()

    def __len__(self) -> int:
        return len(self._pickers)
