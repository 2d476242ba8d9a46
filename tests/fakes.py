"""테스트용 가짜 협력 객체 (시계 / 임베더 / AccuWeather 클라이언트)"""

import asyncio
from datetime import datetime, timedelta

from dongne.core.exceptions import UpstreamUnavailable
from dongne.domains.weather.schemas import CurrentPayload, DailyPayload, HourlyPayload
from dongne.utils.timezone import now_kst


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeEmbedder:
    """Deterministic 3-dim vectors. Query text always embeds to [1, 0, 0]."""

    def __init__(self, query_vector=None, document_vector=None, fail_batch=False, fail_texts=()):
        self.query_vector = query_vector or [1.0, 0.0, 0.0]
        self.document_vector = document_vector or [1.0, 0.2, 0.1]
        self.fail_batch = fail_batch
        self.fail_texts = tuple(fail_texts)
        self.embed_calls = 0
        self.batch_calls = 0

    async def embed(self, text, *, is_query=False):
        self.embed_calls += 1
        if any(marker in text for marker in self.fail_texts):
            raise UpstreamUnavailable("fake embed failure")
        return list(self.query_vector if is_query else self.document_vector)

    async def embed_batch(self, texts):
        self.batch_calls += 1
        if self.fail_batch:
            raise UpstreamUnavailable("fake batch failure")
        return [list(self.document_vector) for _ in texts]


def hourly_items(start: datetime, count: int = 12):
    """AccuWeather 12hour 응답 형태 (KST 오프셋 포함)"""
    items = []
    for i in range(count):
        at = start + timedelta(hours=i)
        items.append({
            "DateTime": at.strftime("%Y-%m-%dT%H:%M:%S") + "+09:00",
            "WeatherIcon": 12,
            "IconPhrase": "소나기",
            "Temperature": {"Value": 19.0 + i, "Unit": "C"},
            "PrecipitationProbability": 80,
            "RelativeHumidity": 70,
            "Wind": {"Speed": {"Value": 9.3, "Unit": "km/h"}},
        })
    return items


def daily_items(start: datetime, count: int = 5):
    items = []
    for i in range(count):
        at = (start + timedelta(days=i)).replace(hour=7, minute=0, second=0, microsecond=0)
        items.append({
            "Date": at.strftime("%Y-%m-%dT%H:%M:%S") + "+09:00",
            "Temperature": {"Minimum": {"Value": 12.0}, "Maximum": {"Value": 23.0}},
            "Day": {"Icon": 3, "IconPhrase": "대체로 맑음", "PrecipitationProbability": 10},
        })
    return items


class FakeWeatherClient:
    """AccuWeatherClient 대역. fail_locations 가 위치 키에 포함되면 네트워크 오류를 냅니다."""

    def __init__(self, fail_locations=(), fail_times=None, delay: float = 0.0):
        self.fail_locations = set(fail_locations)
        # 위치별 남은 실패 횟수 (None 이면 항상 실패)
        self.fail_times = fail_times
        self.delay = delay
        self.calls = {"resolve": 0, "hourly": 0, "daily": 0, "current": 0}

    async def resolve_location(self, query):
        self.calls["resolve"] += 1
        return f"key-{query}"

    def _maybe_fail(self, location_key):
        for location in self.fail_locations:
            if location in location_key:
                if self.fail_times is None:
                    raise UpstreamUnavailable(f"fake network error: {location_key}")
                if self.fail_times.get(location, 0) > 0:
                    self.fail_times[location] -= 1
                    raise UpstreamUnavailable(f"fake network error: {location_key}")

    async def fetch_hourly(self, location_key):
        self.calls["hourly"] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self._maybe_fail(location_key)
        # 오늘 0시부터 12시간 (테스트가 시각에 따라 흔들리지 않도록)
        start = now_kst().replace(hour=0, minute=0, second=0, microsecond=0)
        return [HourlyPayload.from_accuweather(item) for item in hourly_items(start)]

    async def fetch_daily(self, location_key):
        self.calls["daily"] += 1
        self._maybe_fail(location_key)
        return [DailyPayload.from_accuweather(item) for item in daily_items(now_kst())]

    async def fetch_current(self, location_key):
        self.calls["current"] += 1
        self._maybe_fail(location_key)
        return CurrentPayload.from_accuweather({
            "LocalObservationDateTime": now_kst().strftime("%Y-%m-%dT%H:%M:%S") + "+09:00",
            "WeatherText": "흐림",
            "WeatherIcon": 7,
            "Temperature": {"Metric": {"Value": 18.5}},
            "RelativeHumidity": 65,
            "Wind": {"Speed": {"Metric": {"Value": 7.0}}},
        })


async def no_sleep(_seconds):
    return None

