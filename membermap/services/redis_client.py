# membermap/services/redis_client.py
"""Redis connection for the profile store, plus an in-memory stand-in with the
same async surface (get/set/delete/rpush/lrange/lrem/ping) for development and tests.
"""
import logging
from typing import Dict, List, Optional, Union

from redis.asyncio import Redis

from membermap.core.config import settings

logger = logging.getLogger(__name__)


def create_redis(url: Optional[str] = None) -> Redis:
    url = url or settings.REDIS_URL
    if not url:
        raise ValueError("REDIS_URL is not set in the environment")
    logger.info("Connecting profile store to Redis.")
    return Redis.from_url(url)


def _encode(value: Union[str, bytes, int, float]) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


class InMemoryRedis:
    """Process-local store; values come back as bytes like redis-py returns them."""

    def __init__(self):
        self.store: Dict[str, bytes] = {}
        self.lists: Dict[str, List[bytes]] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self.store.get(key)

    async def set(self, key: str, value, nx: bool = False) -> Optional[bool]:
        if nx and key in self.store:
            return None
        self.store[key] = _encode(value)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            removed += int(self.store.pop(key, None) is not None)
            removed += int(self.lists.pop(key, None) is not None)
        return removed

    async def rpush(self, key: str, *values) -> int:
        items = self.lists.setdefault(key, [])
        items.extend(_encode(v) for v in values)
        return len(items)

    async def lrange(self, key: str, start: int, end: int) -> List[bytes]:
        items = self.lists.get(key, [])
        size = len(items)
        if start < 0:
            start = max(size + start, 0)
        if end < 0:
            end = size + end
        return items[start:end + 1]

    async def lrem(self, key: str, count: int, value) -> int:
        # Only count=0 (remove all occurrences) is used by the store
        items = self.lists.get(key, [])
        encoded = _encode(value)
        kept = [item for item in items if item != encoded]
        self.lists[key] = kept
        return len(items) - len(kept)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass
