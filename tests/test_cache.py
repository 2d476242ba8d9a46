"""Two-tier weather cache: TTLs, persistent backfill, stampede prevention, degradation."""

import asyncio

import pytest

from dongne.core.exceptions import PersistenceFailure, UpstreamUnavailable
from dongne.domains.weather.cache import CacheKey, CacheTTL, TwoTierWeatherCache
from dongne.domains.weather.repository import CacheRepository
from fakes import FakeClock

KEY = CacheKey("hourly", "서울")
TTL = CacheTTL(memory_seconds=60, persistent_seconds=600)


class BrokenRepository:
    """모든 DB 호출이 실패하는 저장소"""

    async def get(self, cache_key):
        raise PersistenceFailure("db down")

    async def set(self, cache_key, kind, payload, expires_at):
        raise PersistenceFailure("db down")

    async def delete(self, cache_key):
        raise PersistenceFailure("db down")

    async def delete_expired(self, now):
        raise PersistenceFailure("db down")

    async def clear(self):
        raise PersistenceFailure("db down")


def test_key_rendering_is_stable():
    assert CacheKey("hourly", "서울 강남구").render() == "hourly:서울-강남구:shared"
    assert CacheKey("daily", "Seoul", user_id="u1").render() == "daily:seoul:u:u1"


def test_coordinate_keys_keep_their_sign():
    west = CacheKey("location", "37.5,-126.9").render()
    east = CacheKey("location", "37.5,126.9").render()

    assert west == "location:+37.5000,-126.9000:shared"
    assert east == "location:+37.5000,+126.9000:shared"
    assert CacheKey("location", "37.50, 126.90").render() == east


async def test_memory_only_ttl():
    clock = FakeClock()
    cache = TwoTierWeatherCache(repository=None, clock=clock)

    await cache.set(KEY, {"t": 19}, TTL)
    assert await cache.get(KEY) == {"t": 19}

    clock.advance(59)
    assert await cache.get(KEY) == {"t": 19}

    clock.advance(2)
    assert await cache.get(KEY) is None


async def test_persistent_hit_backfills_memory(session_factory):
    clock = FakeClock()
    repository = CacheRepository(session_factory)
    cache = TwoTierWeatherCache(repository, clock=clock)

    await cache.set(KEY, [{"t": 19}], TTL)

    # 메모리 만료, DB 는 유효
    clock.advance(120)
    assert await cache.get(KEY) == [{"t": 19}]
    assert cache.get_stats()["persistent_hits"] == 1

    # 백필된 메모리에서 응답
    assert await cache.get(KEY) == [{"t": 19}]
    assert cache.get_stats()["memory_hits"] == 1

    # DB 도 만료
    clock.advance(600)
    assert await cache.get(KEY) is None


async def test_persistent_tier_is_shared_across_instances(session_factory):
    clock = FakeClock()
    repository = CacheRepository(session_factory)

    await TwoTierWeatherCache(repository, clock=clock).set(KEY, {"t": 1}, TTL)
    other = TwoTierWeatherCache(repository, clock=clock)
    assert await other.get(KEY) == {"t": 1}


async def test_concurrent_misses_trigger_single_fetch():
    cache = TwoTierWeatherCache()
    calls = 0

    async def fetcher():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.05)
        return {"value": "fresh"}

    results = await asyncio.gather(*(cache.get_or_fetch(KEY, fetcher, TTL) for _ in range(10)))

    assert calls == 1
    assert all(result == {"value": "fresh"} for result in results)
    assert cache.get_stats()["fetches"] == 1


async def test_failed_fetch_reaches_all_waiters_and_is_not_cached():
    cache = TwoTierWeatherCache()
    calls = 0

    async def failing():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        raise UpstreamUnavailable("boom")

    results = await asyncio.gather(
        *(cache.get_or_fetch(KEY, failing, TTL) for _ in range(5)),
        return_exceptions=True,
    )
    assert calls == 1
    assert all(isinstance(r, UpstreamUnavailable) for r in results)

    async def ok():
        return {"t": 1}

    assert await cache.get_or_fetch(KEY, ok, TTL) == {"t": 1}


async def test_persistent_failure_degrades_to_memory_only():
    clock = FakeClock()
    cache = TwoTierWeatherCache(BrokenRepository(), clock=clock)

    await cache.set(KEY, {"t": 3}, TTL)
    assert await cache.get(KEY) == {"t": 3}

    clock.advance(61)
    assert await cache.get(KEY) is None

    await cache.invalidate(KEY)
    await cache.clear()
    assert await cache.cleanup_expired() == {"memory_removed": 0, "persistent_removed": 0}
    assert cache.get_stats()["persistent_errors"] >= 4


async def test_stale_value_survives_expiry(session_factory):
    clock = FakeClock()
    cache = TwoTierWeatherCache(CacheRepository(session_factory), clock=clock)

    await cache.set(KEY, {"t": 5}, TTL)
    clock.advance(10_000)

    assert await cache.get(KEY) is None
    assert await cache.get_stale(KEY) == {"t": 5}


async def test_invalidate_and_cleanup(session_factory):
    clock = FakeClock()
    repository = CacheRepository(session_factory)
    cache = TwoTierWeatherCache(repository, clock=clock)

    await cache.set(KEY, {"t": 1}, TTL)
    await cache.invalidate(KEY)
    assert await cache.get(KEY) is None
    assert await repository.count() == 0

    await cache.set(KEY, {"t": 1}, TTL)
    await cache.set(CacheKey("location", "부산"), "key-busan", CacheTTL(60, 60_000))
    clock.advance(700)

    removed = await cache.cleanup_expired()
    assert removed == {"memory_removed": 2, "persistent_removed": 1}
    assert await repository.count() == 1


async def test_failed_persistent_read_is_a_miss_not_an_error():
    cache = TwoTierWeatherCache(BrokenRepository())
    assert await cache.get(KEY) is None

    async def fetcher():
        return {"t": 9}

    async def failing():
        raise UpstreamUnavailable("down")

    with pytest.raises(UpstreamUnavailable):
        await cache.get_or_fetch(CacheKey("daily", "대구"), failing)

    assert await cache.get_or_fetch(KEY, fetcher, TTL) == {"t": 9}
