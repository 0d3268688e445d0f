from collections import Counter
from typing import List, Optional

import structlog
from redis.exceptions import RedisError

from membermap.core.config import settings
from membermap.models.dto import Profile, RegionStat, UserLocation
from membermap.services.location_privacy import ensure_public_precision
from membermap.services.region_normalizer import merge_region_stats

logger = structlog.get_logger(__name__)

PROFILE_KEY = "profile:{user_id}"
ORDER_KEY = "profiles:order"


class StoreUnavailableError(RuntimeError):
    """The profile store could not be reached."""


class ProfileStore:
    """
    Profile persistence over a redis-compatible async client.

    Each profile is a JSON document under ``profile:{id}``; ``profiles:order``
    lists ids in creation order, which is also the order the map places
    members in. Failures surface as StoreUnavailableError, no fallback.
    """

    def __init__(self, redis_client):
        self.redis_client = redis_client

    async def _call(self, op: str, *args, **kwargs):
        try:
            return await getattr(self.redis_client, op)(*args, **kwargs)
        except (RedisError, OSError) as e:
            logger.error("profile_store_error", op=op, error=str(e))
            raise StoreUnavailableError("profile_store_unavailable") from e

    async def ping(self) -> bool:
        try:
            return bool(await self._call("ping"))
        except StoreUnavailableError:
            return False

    async def get(self, user_id: str) -> Optional[Profile]:
        raw = await self._call("get", PROFILE_KEY.format(user_id=user_id))
        if raw is None:
            return None
        profile = Profile.model_validate_json(raw)

        location = profile.location
        lat, lng = ensure_public_precision(location.lat, location.lng)
        if (lat, lng) != (location.lat, location.lng):
            # Written back so the one-time fuzz does not repeat on every read
            profile = profile.model_copy(update={
                "location": location.model_copy(update={"lat": lat, "lng": lng}),
            })
            await self._call("set", PROFILE_KEY.format(user_id=user_id), profile.model_dump_json())
        return profile

    async def save_location(self, user_id: str, name: str, location: UserLocation) -> Profile:
        """
        Create or update the owner's profile. Creation time and order are kept
        on update.

        Creation is a SET NX on the profile key: of two concurrent first saves
        only the winner appends to the order list, the other one becomes an
        update of the profile the winner wrote.
        """
        key = PROFILE_KEY.format(user_id=user_id)
        existing = await self.get(user_id)
        if existing is None:
            profile = Profile(id=user_id, name=name, location=location)
            if await self._call("set", key, profile.model_dump_json(), nx=True):
                await self._call("rpush", ORDER_KEY, user_id)
                logger.info("profile_location_saved", user_id=user_id, created=True)
                return profile
            existing = await self.get(user_id)
            if existing is None:
                # Deleted again between the two calls; the delete wins
                raise StoreUnavailableError("profile_store_conflict")

        profile = existing.model_copy(update={"name": name, "location": location})
        await self._call("set", key, profile.model_dump_json())
        logger.info("profile_location_saved", user_id=user_id, created=False)
        return profile

    async def delete(self, user_id: str) -> bool:
        removed = await self._call("delete", PROFILE_KEY.format(user_id=user_id))
        await self._call("lrem", ORDER_KEY, 0, user_id)
        if removed:
            logger.info("profile_deleted", user_id=user_id)
        return bool(removed)

    async def list_profiles(
        self,
        country: Optional[str] = None,
        province: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Profile]:
        """Newest ``limit`` profiles (USER_LIST_LIMIT by default), in creation order."""
        limit = settings.USER_LIST_LIMIT if limit is None else limit
        start = -limit if limit > 0 else 0
        ids = await self._call("lrange", ORDER_KEY, start, -1)

        profiles = []
        for raw_id in ids:
            user_id = raw_id.decode("utf-8") if isinstance(raw_id, bytes) else raw_id
            profile = await self.get(user_id)
            if profile is None:
                continue
            if country and profile.location.country != country:
                continue
            if province and profile.location.province != province:
                continue
            profiles.append(profile)
        return profiles

    async def region_stats(self) -> List[RegionStat]:
        """Member counts per (country, province) over every stored profile."""
        profiles = await self.list_profiles(limit=0)
        counts = Counter((p.location.country, p.location.province) for p in profiles)
        return merge_region_stats(
            RegionStat(country=country, province=province, count=count)
            for (country, province), count in counts.items()
        )
