import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from membermap.models.dto import Profile, UserLocation
from membermap.services.location_privacy import is_public_precision
from membermap.services.profile_store import ORDER_KEY, ProfileStore, StoreUnavailableError
from membermap.services.redis_client import InMemoryRedis


def _location(lat=39.9, lng=116.4, country="中国", province="北京"):
    return UserLocation(lat=lat, lng=lng, country=country, province=province, city=province)


class BrokenRedis:
    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def lrange(self, key, start, end):
        raise RedisConnectionError("connection refused")

    async def ping(self):
        raise RedisConnectionError("connection refused")


def test_save_and_get():
    async def scenario():
        store = ProfileStore(InMemoryRedis())
        saved = await store.save_location("u1", "Alice", _location())
        return saved, await store.get("u1"), await store.get("missing")

    saved, loaded, missing = asyncio.run(scenario())
    assert loaded == saved
    assert loaded.location.province == "北京"
    assert missing is None


def test_update_keeps_creation_time_and_order():
    async def scenario():
        store = ProfileStore(InMemoryRedis())
        first = await store.save_location("u1", "Alice", _location())
        await store.save_location("u2", "Bob", _location())
        updated = await store.save_location("u1", "Alice B.", _location(31.23, 121.47, province="上海"))
        return first, updated, await store.list_profiles()

    first, updated, profiles = asyncio.run(scenario())
    assert updated.created_at == first.created_at
    assert updated.name == "Alice B."
    assert [p.id for p in profiles] == ["u1", "u2"]


def test_list_profiles_limit_and_filters():
    async def scenario():
        store = ProfileStore(InMemoryRedis())
        for i in range(5):
            province = "上海" if i % 2 else "北京"
            await store.save_location(f"u{i}", f"user {i}", _location(province=province))
        return (
            await store.list_profiles(limit=2),
            await store.list_profiles(limit=0),
            await store.list_profiles(province="上海"),
            await store.list_profiles(country="日本"),
        )

    newest, everyone, shanghai, japan = asyncio.run(scenario())
    assert [p.id for p in newest] == ["u3", "u4"]
    assert len(everyone) == 5
    assert [p.id for p in shanghai] == ["u1", "u3"]
    assert japan == []


def test_delete():
    async def scenario():
        redis_client = InMemoryRedis()
        store = ProfileStore(redis_client)
        await store.save_location("u1", "Alice", _location())
        removed = await store.delete("u1")
        removed_again = await store.delete("u1")
        return removed, removed_again, await store.get("u1"), await redis_client.lrange(ORDER_KEY, 0, -1)

    removed, removed_again, profile, order = asyncio.run(scenario())
    assert removed is True
    assert removed_again is False
    assert profile is None
    assert order == []


def test_region_stats():
    async def scenario():
        store = ProfileStore(InMemoryRedis())
        await store.save_location("u1", "A", _location(province="广东"))
        await store.save_location("u2", "B", _location(province="广东"))
        await store.save_location("u3", "C", _location(country="日本", province="Tokyo"))
        return await store.region_stats()

    stats = asyncio.run(scenario())
    assert [(s.country, s.province, s.count) for s in stats] == [
        ("中国", "广东", 2),
        ("日本", "Tokyo", 1),
    ]


def test_precise_legacy_location_is_fuzzed_once_on_read():
    async def scenario():
        redis_client = InMemoryRedis()
        legacy = Profile(id="old", name="Old", location=_location(39.904211, 116.407395))
        await redis_client.set("profile:old", legacy.model_dump_json())
        await redis_client.rpush(ORDER_KEY, "old")

        store = ProfileStore(redis_client)
        return await store.get("old"), await store.get("old")

    first, second = asyncio.run(scenario())
    assert is_public_precision(first.location.lat, first.location.lng)
    assert abs(first.location.lat - 39.904211) <= 0.015 + 1e-9
    assert second == first


def test_unavailable_store():
    store = ProfileStore(BrokenRedis())
    with pytest.raises(StoreUnavailableError):
        asyncio.run(store.list_profiles())
    assert asyncio.run(store.ping()) is False


class InterleavingRedis(InMemoryRedis):
    """Yields to the event loop on every read and write, like a real network round trip."""

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def set(self, key, value, nx=False):
        await asyncio.sleep(0)
        return await super().set(key, value, nx=nx)


def test_concurrent_first_saves_list_the_member_once():
    async def scenario():
        redis = InterleavingRedis()
        store = ProfileStore(redis)
        await asyncio.gather(
            store.save_location("u1", "Alice", _location()),
            store.save_location("u1", "Alice", _location(lat=31.23, lng=121.47, province="上海")),
        )
        return await redis.lrange(ORDER_KEY, 0, -1), await store.list_profiles()

    order, profiles = asyncio.run(scenario())
    assert order == [b"u1"]
    assert [p.id for p in profiles] == ["u1"]


def test_set_nx_does_not_overwrite():
    async def scenario():
        redis = InMemoryRedis()
        first = await redis.set("k", "a", nx=True)
        second = await redis.set("k", "b", nx=True)
        return first, second, await redis.get("k")

    assert asyncio.run(scenario()) == (True, None, b"a")
