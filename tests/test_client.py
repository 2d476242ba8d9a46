"""AccuWeather client: rate limiting, error classification, payload parsing, call stats."""

from datetime import datetime

import httpx
import pytest
from sqlalchemy.exc import IntegrityError

from dongne.core.exceptions import QuotaExceeded, UpstreamUnavailable
from dongne.domains.weather.client import AccuWeatherClient
from dongne.domains.weather.rate_limiter import RateLimiter
from dongne.domains.weather.stats import ApiStatsRecorder
from fakes import FakeClock, daily_items, hourly_items


def make_client(handler, limit=10, stats_recorder=None):
    limiter = RateLimiter(limit=limit, clock=FakeClock(), name="accuweather")
    client = AccuWeatherClient(
        api_key="test-key",
        rate_limiter=limiter,
        stats_recorder=stats_recorder,
        base_url="http://accuweather.test",
        transport=httpx.MockTransport(handler),
    )
    return client, limiter


async def test_hourly_forecast_is_parsed_and_normalized():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(200, json=hourly_items(datetime(2025, 9, 28, 14, 0), count=3))

    client, limiter = make_client(handler)
    payloads = await client.fetch_hourly("226081")

    assert len(payloads) == 3
    first = payloads[0].to_point()
    assert first.forecast_at == datetime(2025, 9, 28, 14, 0)
    assert first.temperature == 19.0
    assert first.precipitation_probability == 80

    assert seen[0].url.path == "/forecasts/v1/hourly/12hour/226081"
    assert seen[0].url.params["apikey"] == "test-key"
    assert seen[0].url.params["language"] == "ko-kr"
    assert limiter.get_stats()["used"] == 1


async def test_daily_forecast_reads_daily_forecasts_list():
    def handler(request):
        return httpx.Response(200, json={"DailyForecasts": daily_items(datetime(2025, 9, 28), count=5)})

    client, _ = make_client(handler)
    payloads = await client.fetch_daily("226081")

    assert len(payloads) == 5
    assert payloads[1].to_point().forecast_at == datetime(2025, 9, 29, 0, 0)


async def test_resolve_location_by_name_and_coordinates():
    def handler(request):
        if request.url.path.endswith("geoposition/search"):
            return httpx.Response(200, json={"Key": "2330426"})
        return httpx.Response(200, json=[{"Key": "226081"}, {"Key": "999"}])

    client, _ = make_client(handler)
    assert await client.resolve_location("Seoul") == "226081"
    assert await client.resolve_location("37.5665,126.9780") == "2330426"


async def test_server_error_is_upstream_unavailable():
    def handler(request):
        return httpx.Response(500, text="boom")

    client, _ = make_client(handler)
    with pytest.raises(UpstreamUnavailable) as exc_info:
        await client.fetch_hourly("226081")
    assert exc_info.value.status_code == 500


async def test_malformed_body_is_upstream_unavailable():
    def handler(request):
        return httpx.Response(200, json={"unexpected": True})

    client, _ = make_client(handler)
    with pytest.raises(UpstreamUnavailable):
        await client.fetch_daily("226081")


async def test_quota_exceeded_does_not_touch_network():
    calls = 0

    def handler(request):
        nonlocal calls
        calls += 1
        return httpx.Response(200, json=[])

    client, limiter = make_client(handler, limit=1)
    limiter.record_request()

    with pytest.raises(QuotaExceeded) as exc_info:
        await client.fetch_hourly("226081")

    assert calls == 0
    assert exc_info.value.wait_seconds > 0


async def test_timeout_still_counts_against_limiter():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client, limiter = make_client(handler, limit=5)
    with pytest.raises(UpstreamUnavailable):
        await client.fetch_current("226081")

    assert limiter.get_stats()["used"] == 1


async def test_calls_are_recorded_in_daily_stats(session_factory):
    responses = iter([
        httpx.Response(200, json=hourly_items(datetime(2025, 9, 28, 14, 0), count=2)),
        httpx.Response(503, text="down"),
    ])

    def handler(request):
        return next(responses)

    recorder = ApiStatsRecorder(session_factory)
    client, _ = make_client(handler, stats_recorder=recorder)

    await client.fetch_hourly("226081")
    with pytest.raises(UpstreamUnavailable):
        await client.fetch_hourly("226081")

    stats = await recorder.get_daily_stats(AccuWeatherClient.PROVIDER)
    assert stats["total_calls"] == 2
    assert stats["successful_calls"] == 1
    assert stats["failed_calls"] == 1
    assert sum(stats["hourly_histogram"]) == 2


class RacingStatsRecorder(ApiStatsRecorder):
    """첫 기록 직전에 다른 요청이 그날 행을 먼저 만든 상황"""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.attempts = 0

    async def _apply(self, provider, success, response_ms, now):
        self.attempts += 1
        if self.attempts == 1:
            await super()._apply(provider, True, 100.0, now)
            raise IntegrityError("INSERT INTO daily_api_stats", {}, Exception("UNIQUE constraint failed"))
        await super()._apply(provider, success, response_ms, now)


async def test_conflicting_first_insert_is_merged_into_existing_row(session_factory):
    recorder = RacingStatsRecorder(session_factory)

    await recorder.record(AccuWeatherClient.PROVIDER, success=False, response_ms=300.0)

    stats = await recorder.get_daily_stats(AccuWeatherClient.PROVIDER)
    assert recorder.attempts == 2
    assert stats["total_calls"] == 2
    assert stats["successful_calls"] == 1
    assert stats["failed_calls"] == 1
    assert stats["max_response_ms"] == 300.0
