# dongne/domains/weather/client.py

import logging
import time
from typing import Any, Callable, List

import httpx
from pydantic import ValidationError

from dongne.core.config import settings
from dongne.core.exceptions import QuotaExceeded, UpstreamUnavailable
from dongne.core.logger import log_event
from dongne.domains.weather.rate_limiter import RateLimiter
from dongne.domains.weather.schemas import CurrentPayload, DailyPayload, HourlyPayload
from dongne.utils.location import parse_coordinates

logger = logging.getLogger(__name__)


class AccuWeatherClient:
    """
    AccuWeather 예보 API 클라이언트
    - 호출 전 레이트 리미터 확인 (거부 시 QuotaExceeded)
    - 요청을 보낸 순간 호출 1회로 기록 (타임아웃이어도 차감)
    - 네트워크 / HTTP / 파싱 실패는 모두 UpstreamUnavailable
    """

    PROVIDER = "accuweather"

    def __init__(
        self,
        api_key: str,
        rate_limiter: RateLimiter,
        stats_recorder=None,
        timeout: float = None,
        base_url: str = None,
        transport: httpx.AsyncBaseTransport = None,
    ):
        self.api_key = api_key
        self.rate_limiter = rate_limiter
        self.stats_recorder = stats_recorder
        self.timeout = timeout or settings.UPSTREAM_TIMEOUT_SECONDS
        self.base_url = base_url or settings.ACCUWEATHER_BASE_URL
        self.transport = transport

    # 1. 위치 키 조회 ("37.56,126.97" 이면 좌표 검색, 아니면 도시명 검색)
    async def resolve_location(self, query: str) -> str:
        coords = parse_coordinates(query)
        if coords:
            path = "/locations/v1/cities/geoposition/search"
            params = {"q": f"{coords[0]},{coords[1]}"}
        else:
            path = "/locations/v1/cities/search"
            params = {"q": query}

        def parse(data):
            # 도시명 검색은 리스트, 좌표 검색은 단일 객체
            if isinstance(data, list):
                if not data:
                    raise ValueError(f"위치 검색 결과 없음: {query}")
                data = data[0]
            return str(data["Key"])

        return await self._get(path, params, parse)

    # 2. 12시간 시간별 예보
    async def fetch_hourly(self, location_key: str) -> List[HourlyPayload]:
        return await self._get(
            f"/forecasts/v1/hourly/12hour/{location_key}",
            {"metric": "true", "details": "true"},
            lambda data: [HourlyPayload.from_accuweather(item) for item in data],
        )

    # 3. 5일 일별 예보
    async def fetch_daily(self, location_key: str) -> List[DailyPayload]:
        return await self._get(
            f"/forecasts/v1/daily/5day/{location_key}",
            {"metric": "true", "details": "true"},
            lambda data: [DailyPayload.from_accuweather(item) for item in data["DailyForecasts"]],
        )

    # 4. 현재 날씨
    async def fetch_current(self, location_key: str) -> CurrentPayload:
        def parse(data):
            if not data:
                raise ValueError("현재 날씨 응답이 비어 있음")
            return CurrentPayload.from_accuweather(data[0])

        return await self._get(f"/currentconditions/v1/{location_key}", {"details": "true"}, parse)

    async def _get(self, path: str, params: dict, parse: Callable[[Any], Any]):
        if not self.rate_limiter.can_make_request():
            wait = self.rate_limiter.get_wait_time().total_seconds()
            log_event(logger, "QUOTA_EXCEEDED", level=logging.WARNING, provider=self.PROVIDER, path=path, wait_seconds=wait)
            raise QuotaExceeded(wait_seconds=wait, path=path)

        self.rate_limiter.record_request()
        started = time.perf_counter()

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.get(
                    path, params={"apikey": self.api_key, "language": "ko-kr", **params}
                )
        except httpx.TimeoutException as e:
            await self._fail(path, started, f"타임아웃 ({self.timeout}s)")
            raise UpstreamUnavailable(f"AccuWeather 타임아웃: {path}") from e
        except httpx.RequestError as e:
            await self._fail(path, started, str(e))
            raise UpstreamUnavailable(f"AccuWeather 통신 오류: {path}") from e

        if response.status_code != 200:
            await self._fail(path, started, f"HTTP {response.status_code}")
            raise UpstreamUnavailable(
                f"AccuWeather 응답 오류: {response.status_code}", status_code=response.status_code
            )

        try:
            result = parse(response.json())
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            await self._fail(path, started, f"응답 파싱 실패: {e}")
            raise UpstreamUnavailable(f"AccuWeather 응답 파싱 실패: {path}") from e

        await self._record(True, started)
        return result

    async def _fail(self, path: str, started: float, reason: str):
        log_event(logger, "UPSTREAM_FAILED", level=logging.WARNING, provider=self.PROVIDER, path=path, reason=reason)
        await self._record(False, started)

    async def _record(self, success: bool, started: float):
        if self.stats_recorder is None:
            return
        elapsed_ms = (time.perf_counter() - started) * 1000
        await self.stats_recorder.record(self.PROVIDER, success, elapsed_ms)
