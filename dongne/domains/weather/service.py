# dongne/domains/weather/service.py

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dongne.core.exceptions import (
    PersistenceFailure,
    QuotaExceeded,
    UpstreamUnavailable,
    WeatherPipelineError,
)
from dongne.core.logger import log_event
from dongne.domains.weather.cache import CacheKey, TwoTierWeatherCache
from dongne.domains.weather.ingest import to_facts, to_points, to_records
from dongne.domains.weather.schemas import ForecastPoint, ForecastResponse
from dongne.utils.location import find_city

logger = logging.getLogger(__name__)

GRANULARITIES = ("hourly", "daily", "current")

# 예보 테이블 fallback 시 가져올 최근 행 수 (AccuWeather 12시간 / 5일 예보)
STORED_FALLBACK_LIMIT = {"hourly": 12, "daily": 5}


@dataclass
class ForecastResult:
    location: str
    granularity: str
    status: str                          # fresh | stale | unavailable
    source: Optional[str] = None         # cache | live | stale
    points: List[ForecastPoint] = field(default_factory=list)
    message: Optional[str] = None

    def to_response(self) -> ForecastResponse:
        return ForecastResponse(
            location=self.location,
            granularity=self.granularity,
            status=self.status,
            source=self.source,
            forecasts=self.points,
            message=self.message,
        )


class WeatherService:
    """
    예보 조회 서비스
    캐시(메모리 -> DB) -> 실시간 API 순서로 조회하고,
    실시간 조회 결과는 예보 테이블 + 임베딩 저장소 + 캐시에 모두 반영합니다.
    """

    def __init__(self, client, cache: TwoTierWeatherCache, forecast_repository, embedding_store=None):
        self.client = client
        self.cache = cache
        self.forecasts = forecast_repository
        self.embedding_store = embedding_store

    # 1. 위치 키 조회 (7일 캐시)
    async def resolve_location_key(self, location: str, coordinates: Optional[Tuple[float, float]] = None) -> str:
        if coordinates is None:
            city = find_city(location)
            if city:
                coordinates = (city["lat"], city["lon"])
        query = f"{coordinates[0]},{coordinates[1]}" if coordinates else location

        async def fetch():
            return await self.client.resolve_location(query)

        return await self.cache.get_or_fetch(CacheKey("location", query), fetch)

    # 2. 예보 조회 (요청 처리용, 예외 대신 상태값 반환)
    async def get_forecast(self, location: str, granularity: str = "hourly", user_id: Optional[str] = None) -> ForecastResult:
        if granularity not in GRANULARITIES:
            raise ValueError(f"지원하지 않는 예보 단위: {granularity}")

        key = CacheKey(granularity, location)
        fetched = False

        async def fetch():
            nonlocal fetched
            fetched = True
            points = await self.fetch_live(location, granularity, user_id)
            return [p.model_dump(mode="json") for p in points]

        try:
            data = await self.cache.get_or_fetch(key, fetch)
        except (QuotaExceeded, UpstreamUnavailable) as e:
            stale = await self.cache.get_stale(key) or await self._stored_points(location, granularity, user_id)
            if stale:
                log_event(logger, "FORECAST_STALE_FALLBACK", level=logging.WARNING, location=location, granularity=granularity, reason=e.kind)
                return ForecastResult(
                    location=location,
                    granularity=granularity,
                    status="stale",
                    source="stale",
                    points=[ForecastPoint(**item) for item in stale],
                    message="최신 예보를 가져오지 못해 마지막으로 저장된 예보를 보여드립니다.",
                )
            log_event(logger, "FORECAST_UNAVAILABLE", level=logging.WARNING, location=location, granularity=granularity, reason=e.kind)
            return ForecastResult(
                location=location,
                granularity=granularity,
                status="unavailable",
                message="날씨 데이터를 일시적으로 사용할 수 없습니다.",
            )

        if not data:
            return ForecastResult(location=location, granularity=granularity, status="unavailable",
                                  message="예보 데이터가 없습니다.")

        return ForecastResult(
            location=location,
            granularity=granularity,
            status="fresh",
            source="live" if fetched else "cache",
            points=[ForecastPoint(**item) for item in data],
        )

    # 3. 실시간 조회 + 저장 + 임베딩 (캐시는 건드리지 않음)
    async def fetch_live(
        self,
        location: str,
        granularity: str,
        user_id: Optional[str] = None,
        coordinates: Optional[Tuple[float, float]] = None,
    ) -> List[ForecastPoint]:
        location_key = await self.resolve_location_key(location, coordinates)

        if granularity == "hourly":
            points = to_points(await self.client.fetch_hourly(location_key))
        elif granularity == "daily":
            points = to_points(await self.client.fetch_daily(location_key))
        else:
            points = to_points([await self.client.fetch_current(location_key)])

        # 현재 날씨는 캐시/임베딩에만 남기고 예보 테이블에는 저장하지 않음
        if granularity != "current":
            try:
                await self.forecasts.upsert_records(to_records(points, location_key, location, user_id))
            except PersistenceFailure as e:
                log_event(logger, "FORECAST_SAVE_FAILED", level=logging.ERROR, location=location, error=e.message)

        if self.embedding_store is not None and points:
            try:
                await self.embedding_store.bulk_embed_and_store(to_facts(points, location, user_id))
            except WeatherPipelineError as e:
                log_event(logger, "EMBEDDING_UPSERT_FAILED", level=logging.WARNING, location=location, error=e.message)

        return points

    # 4. 강제 갱신 (수집기용, 결과를 캐시에도 반영)
    async def refresh(
        self,
        location: str,
        granularity: str,
        user_id: Optional[str] = None,
        coordinates: Optional[Tuple[float, float]] = None,
    ) -> List[ForecastPoint]:
        points = await self.fetch_live(location, granularity, user_id, coordinates)
        if points:
            await self.cache.set(CacheKey(granularity, location), [p.model_dump(mode="json") for p in points])
        return points

    # 5. 캐시 정리 이후에도 예보 테이블에 남은 마지막 값
    async def _stored_points(self, location: str, granularity: str, user_id: Optional[str] = None) -> list:
        if granularity == "current":
            return []
        try:
            records = await self.forecasts.get_latest_by_name(
                location, granularity, user_id, limit=STORED_FALLBACK_LIMIT[granularity]
            )
        except PersistenceFailure as e:
            log_event(logger, "FORECAST_STORED_FALLBACK_FAILED", level=logging.ERROR, location=location, error=e.message)
            return []
        return [
            ForecastPoint(
                granularity=record.granularity,
                forecast_at=record.forecast_at,
                temperature=record.temperature,
                high_temp=record.high_temp,
                low_temp=record.low_temp,
                precipitation_probability=record.precipitation_probability,
                humidity=record.humidity,
                wind_speed=record.wind_speed,
                condition_code=record.condition_code,
                conditions=record.conditions,
            ).model_dump(mode="json")
            for record in records
        ]
