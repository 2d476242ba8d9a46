"""Forecast service: cache-first lookup, persistence, stale fallback."""

import asyncio

import pytest

from dongne.core.pipeline import build_pipeline
from dongne.domains.search.rag_engine import RAGEngine
from dongne.domains.weather.cache import TwoTierWeatherCache
from dongne.domains.weather.repository import CacheRepository
from fakes import FakeClock, FakeEmbedder, FakeWeatherClient, no_sleep


def assemble(session_factory, client, clock=None):
    cache = TwoTierWeatherCache(CacheRepository(session_factory), clock=clock or FakeClock())
    return build_pipeline(
        session_factory,
        weather_client=client,
        embedder=FakeEmbedder(),
        rag_engine=RAGEngine(model=None),
        cache=cache,
        use_llm=False,
        collector_sleep=no_sleep,
    )


async def test_second_request_is_served_from_cache(pipeline, fake_weather_client):
    service = pipeline.weather_service

    first = await service.get_forecast("서울", "hourly")
    second = await service.get_forecast("서울", "hourly")

    assert first.status == "fresh" and first.source == "live"
    assert second.status == "fresh" and second.source == "cache"
    assert len(second.points) == 12
    assert fake_weather_client.calls["hourly"] == 1


async def test_live_fetch_persists_records_and_embeddings(pipeline, fake_weather_client):
    service = pipeline.weather_service
    await service.get_forecast("서울", "daily", user_id="u1")

    location_key = await service.resolve_location_key("서울")
    records = await pipeline.forecast_repository.get_records(location_key, "daily", user_id="u1")
    assert len(records) == 5
    assert all(r.forecast_at.hour == 0 for r in records)

    stats = await pipeline.embedding_store.get_stats()
    assert stats["by_content_type"] == {"daily": 5}


async def test_known_city_resolves_by_coordinates(pipeline, fake_weather_client):
    key = await pipeline.weather_service.resolve_location_key("서울특별시")
    assert key == "key-37.5665,126.978"

    await pipeline.weather_service.resolve_location_key("서울")
    assert fake_weather_client.calls["resolve"] == 1


async def test_current_conditions_are_not_stored_as_forecast_rows(pipeline):
    result = await pipeline.weather_service.get_forecast("서울", "current")
    assert result.status == "fresh"
    assert len(result.points) == 1

    key = await pipeline.weather_service.resolve_location_key("서울")
    assert await pipeline.forecast_repository.get_records(key, "current") == []


async def test_repeated_refresh_does_not_duplicate_records(pipeline):
    service = pipeline.weather_service
    await service.refresh("서울", "hourly")
    await service.refresh("서울", "hourly")

    key = await service.resolve_location_key("서울")
    assert len(await pipeline.forecast_repository.get_records(key, "hourly")) == 12


async def test_concurrent_requests_share_one_upstream_call(session_factory):
    client = FakeWeatherClient(delay=0.05)
    pipeline = assemble(session_factory, client)

    results = await asyncio.gather(*(pipeline.weather_service.get_forecast("테스트동", "hourly") for _ in range(5)))

    assert client.calls["hourly"] == 1
    assert all(r.status == "fresh" for r in results)


async def test_stale_forecast_is_served_when_upstream_fails(session_factory):
    clock = FakeClock()
    client = FakeWeatherClient(fail_locations=("테스트동",), fail_times={"테스트동": 0})
    pipeline = assemble(session_factory, client, clock)
    service = pipeline.weather_service

    assert (await service.get_forecast("테스트동", "hourly")).status == "fresh"

    # 모든 TTL 만료 + 업스트림 장애
    clock.advance(30 * 24 * 3600)
    client.fail_times["테스트동"] = 10

    result = await service.get_forecast("테스트동", "hourly")
    assert result.status == "stale"
    assert len(result.points) == 12


async def test_stored_forecast_survives_cache_cleanup(session_factory):
    clock = FakeClock()
    client = FakeWeatherClient(fail_locations=("테스트동",), fail_times={"테스트동": 0})
    pipeline = assemble(session_factory, client, clock)
    service = pipeline.weather_service

    assert (await service.get_forecast("테스트동", "hourly")).status == "fresh"

    # 만료된 캐시 행이 정리된 뒤 업스트림 장애
    clock.advance(30 * 24 * 3600)
    cleaned = await pipeline.cache.cleanup_expired()
    assert cleaned["persistent_removed"] > 0
    client.fail_times["테스트동"] = 10

    result = await service.get_forecast("테스트동", "hourly")
    assert result.status == "stale"
    assert len(result.points) == 12
    assert result.points[0].forecast_at < result.points[-1].forecast_at


async def test_unavailable_without_any_cached_value(session_factory):
    client = FakeWeatherClient(fail_locations=("테스트동",))
    pipeline = assemble(session_factory, client)

    result = await pipeline.weather_service.get_forecast("테스트동", "daily")

    assert result.status == "unavailable"
    assert result.points == []


async def test_unknown_granularity_is_rejected(pipeline):
    with pytest.raises(ValueError):
        await pipeline.weather_service.get_forecast("서울", "weekly")
