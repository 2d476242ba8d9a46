# dongne/domains/weather/collector.py

import asyncio
import logging
from typing import Optional

from dongne.core.config import settings
from dongne.core.exceptions import PersistenceFailure, QuotaExceeded, UpstreamUnavailable
from dongne.core.logger import log_event

logger = logging.getLogger(__name__)


class WeatherCollector:
    """
    정기 수집기 (0, 6, 12, 18시)
    - 등록된 사용자 위치를 순서대로 수집 (레이트 리미터 보호를 위해 순차 실행)
    - 한 사용자의 실패가 나머지 수집을 막지 않음
    - 다시 실행해도 upsert 라서 중복이 생기지 않음
    """

    def __init__(
        self,
        weather_service,
        forecast_repository,
        embedding_store=None,
        retry_backoff_seconds: float = None,
        user_delay_seconds: float = None,
        sleep=asyncio.sleep,
    ):
        self.weather_service = weather_service
        self.forecasts = forecast_repository
        self.embedding_store = embedding_store
        self.retry_backoff_seconds = (
            settings.COLLECTOR_RETRY_BACKOFF_SECONDS if retry_backoff_seconds is None else retry_backoff_seconds
        )
        self.user_delay_seconds = (
            settings.COLLECTOR_USER_DELAY_SECONDS if user_delay_seconds is None else user_delay_seconds
        )
        self._sleep = sleep

    async def collect_for_all_users(self) -> dict:
        logger.info("⏰ [Weather Collector] 사용자 위치별 날씨 수집 시작...")
        locations = await self.forecasts.list_user_locations()

        per_user_results = []
        success_count = 0
        failure_count = 0

        for index, user_location in enumerate(locations):
            if index > 0 and self.user_delay_seconds:
                await self._sleep(self.user_delay_seconds)

            result = await self._collect_one(user_location)
            per_user_results.append(result)
            if result["success"]:
                success_count += 1
            else:
                failure_count += 1

        removed = await self._remove_duplicates()

        summary = {
            "total_users": len(locations),
            "success_count": success_count,
            "failure_count": failure_count,
            "duplicates_removed": removed,
            "per_user_results": per_user_results,
        }
        logger.info(f"🏁 [Weather Collector] 완료 - 성공: {success_count}, 실패: {failure_count}")
        return summary

    async def _collect_one(self, user_location) -> dict:
        coordinates = None
        if user_location.latitude is not None and user_location.longitude is not None:
            coordinates = (user_location.latitude, user_location.longitude)

        result = {
            "user_id": user_location.user_id,
            "location": user_location.location_name,
            "success": False,
            "hourly_count": 0,
            "daily_count": 0,
            "error": None,
        }

        try:
            hourly, daily = await self._fetch_with_retry(user_location, coordinates)
            result.update(success=True, hourly_count=len(hourly), daily_count=len(daily))
        except QuotaExceeded as e:
            result["error"] = f"{e.kind}: {e.wait_seconds:.0f}초 후 재시도 가능"
            log_event(logger, "COLLECT_USER_FAILED", level=logging.WARNING, user_id=user_location.user_id, reason=e.kind)
        except UpstreamUnavailable as e:
            result["error"] = f"{e.kind}: {e.message}"
            log_event(logger, "COLLECT_USER_FAILED", level=logging.WARNING, user_id=user_location.user_id, reason=e.kind)
        except Exception as e:
            result["error"] = f"{type(e).__name__}: {e}"
            logger.error(f"❌ User {user_location.user_id} 날씨 수집 실패: {e}", exc_info=True)

        return result

    async def _fetch_with_retry(self, user_location, coordinates: Optional[tuple]):
        hourly = await self._refresh_with_retry(user_location, "hourly", coordinates)
        daily = await self._refresh_with_retry(user_location, "daily", coordinates)
        return hourly, daily

    async def _refresh_with_retry(self, user_location, forecast_type: str, coordinates: Optional[tuple]):
        # 네트워크 장애만 1회 재시도, 한도 초과는 재시도하지 않음
        # 이미 성공한 예보 유형은 다시 호출하지 않음
        for attempt in range(2):
            try:
                return await self.weather_service.refresh(
                    user_location.location_name, forecast_type, user_location.user_id, coordinates
                )
            except UpstreamUnavailable:
                if attempt == 1:
                    raise
                logger.info(
                    f"🔁 User {user_location.user_id} {forecast_type} 재시도 ({self.retry_backoff_seconds}s 대기)"
                )
                await self._sleep(self.retry_backoff_seconds)

    async def _remove_duplicates(self) -> int:
        if self.embedding_store is None:
            return 0
        try:
            return await self.embedding_store.remove_duplicates()
        except PersistenceFailure as e:
            log_event(logger, "EMBEDDING_DEDUP_FAILED", level=logging.ERROR, error=e.message)
            return 0
