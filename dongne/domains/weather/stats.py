# dongne/domains/weather/stats.py

import json
import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from dongne.domains.weather.models import DailyApiStats
from dongne.utils.timezone import now_kst

logger = logging.getLogger(__name__)


class ApiStatsRecorder:
    """
    외부 API 호출 일일 통계 (provider + 날짜 단위 1행)
    기록 실패가 메인 로직에 영향을 주지 않도록 예외를 던지지 않습니다.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def record(self, provider: str, success: bool, response_ms: float):
        now = now_kst()
        # 동시에 그날 첫 행을 만들다 충돌하면, 이미 생긴 행을 다시 읽어서 누적
        for attempt in range(2):
            try:
                await self._apply(provider, success, response_ms, now)
                return
            except IntegrityError as e:
                if attempt == 1:
                    logger.warning(f"⚠️ API 호출 통계 기록 실패 ({provider}): {e}")
            except SQLAlchemyError as e:
                logger.warning(f"⚠️ API 호출 통계 기록 실패 ({provider}): {e}")
                return

    async def _apply(self, provider: str, success: bool, response_ms: float, now):
        async with self.session_factory() as db:
            try:
                stmt = select(DailyApiStats).where(
                    DailyApiStats.provider == provider,
                    DailyApiStats.stat_date == now.date(),
                )
                result = await db.execute(stmt)
                stats = result.scalar_one_or_none()

                # 그날 첫 호출이면 생성
                if stats is None:
                    stats = DailyApiStats(
                        provider=provider,
                        stat_date=now.date(),
                        total_calls=0,
                        successful_calls=0,
                        failed_calls=0,
                        avg_response_ms=0.0,
                        max_response_ms=0.0,
                        hourly_histogram=json.dumps([0] * 24),
                    )
                    db.add(stats)

                # 평균 응답시간은 누적 평균으로 갱신
                total = stats.total_calls + 1
                stats.avg_response_ms = ((stats.avg_response_ms * stats.total_calls) + response_ms) / total
                stats.max_response_ms = max(stats.max_response_ms, response_ms)
                stats.total_calls = total
                if success:
                    stats.successful_calls += 1
                else:
                    stats.failed_calls += 1

                histogram = json.loads(stats.hourly_histogram or "[]") or [0] * 24
                histogram[now.hour] += 1
                stats.hourly_histogram = json.dumps(histogram)

                await db.commit()
            except SQLAlchemyError:
                await db.rollback()
                raise

    async def get_daily_stats(self, provider: str, stat_date: Optional[date] = None) -> Optional[dict]:
        stat_date = stat_date or now_kst().date()
        try:
            async with self.session_factory() as db:
                stmt = select(DailyApiStats).where(
                    DailyApiStats.provider == provider,
                    DailyApiStats.stat_date == stat_date,
                )
                result = await db.execute(stmt)
                stats = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.warning(f"⚠️ API 호출 통계 조회 실패 ({provider}): {e}")
            return None

        if stats is None:
            return None

        return {
            "provider": stats.provider,
            "date": stats.stat_date.isoformat(),
            "total_calls": stats.total_calls,
            "successful_calls": stats.successful_calls,
            "failed_calls": stats.failed_calls,
            "avg_response_ms": round(stats.avg_response_ms, 1),
            "max_response_ms": round(stats.max_response_ms, 1),
            "hourly_histogram": json.loads(stats.hourly_histogram or "[]"),
        }
