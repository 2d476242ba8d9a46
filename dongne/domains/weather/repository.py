# dongne/domains/weather/repository.py

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError

from dongne.core.exceptions import PersistenceFailure
from dongne.domains.weather.models import CacheEntry, ForecastRecord, UserLocation

logger = logging.getLogger(__name__)


class CacheRepository:
    """
    캐시 DB 계층 전용 저장소
    SQLAlchemy 예외는 모두 PersistenceFailure로 감싸서 던집니다.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def get(self, cache_key: str):
        """(payload 문자열, 만료 epoch) 또는 None"""
        try:
            async with self.session_factory() as db:
                stmt = select(CacheEntry).where(CacheEntry.cache_key == cache_key)
                result = await db.execute(stmt)
                entry = result.scalar_one_or_none()
                if entry is None:
                    return None
                return entry.payload, entry.expires_at
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"캐시 조회 실패: {e}", key=cache_key) from e

    async def set(self, cache_key: str, kind: str, payload: str, expires_at: float):
        try:
            async with self.session_factory() as db:
                try:
                    stmt = select(CacheEntry).where(CacheEntry.cache_key == cache_key)
                    result = await db.execute(stmt)
                    entry = result.scalar_one_or_none()
                    if entry:
                        entry.payload = payload
                        entry.kind = kind
                        entry.expires_at = expires_at
                    else:
                        db.add(CacheEntry(cache_key=cache_key, kind=kind, payload=payload, expires_at=expires_at))
                    await db.commit()
                except SQLAlchemyError:
                    await db.rollback()
                    raise
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"캐시 저장 실패: {e}", key=cache_key) from e

    async def delete(self, cache_key: str) -> int:
        return await self._delete_where(CacheEntry.cache_key == cache_key)

    async def delete_expired(self, now: float) -> int:
        return await self._delete_where(CacheEntry.expires_at <= now)

    async def clear(self) -> int:
        return await self._delete_where(None)

    async def count(self) -> int:
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(func.count(CacheEntry.id)))
                return result.scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"캐시 개수 조회 실패: {e}") from e

    async def _delete_where(self, condition) -> int:
        try:
            async with self.session_factory() as db:
                stmt = delete(CacheEntry)
                if condition is not None:
                    stmt = stmt.where(condition)
                result = await db.execute(stmt)
                await db.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"캐시 삭제 실패: {e}") from e


class ForecastRepository:

    def __init__(self, session_factory):
        self.session_factory = session_factory

    # 1. [Upsert] 같은 범위(사용자 + 위치 + 단위)의 같은 시각 데이터는 교체
    async def upsert_records(self, records: List[ForecastRecord]) -> int:
        if not records:
            return 0

        first = records[0]
        timestamps = [r.forecast_at for r in records]
        user_filter = (
            ForecastRecord.user_id.is_(None) if first.user_id is None
            else ForecastRecord.user_id == first.user_id
        )

        try:
            async with self.session_factory() as db:
                try:
                    delete_query = delete(ForecastRecord).where(
                        user_filter,
                        ForecastRecord.location_key == first.location_key,
                        ForecastRecord.granularity == first.granularity,
                        ForecastRecord.forecast_at.in_(timestamps),
                    )
                    await db.execute(delete_query)

                    db.add_all(records)
                    await db.commit()
                except SQLAlchemyError:
                    await db.rollback()
                    raise
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"예보 저장 실패: {e}", location_key=first.location_key) from e

        logger.info(f"✅ 예보 {len(records)}건 저장 ({first.granularity}, {first.location_name}, user={first.user_id})")
        return len(records)

    # 2. [Read] 위치 + 단위별 조회
    async def get_records(
        self,
        location_key: str,
        granularity: str,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[ForecastRecord]:
        stmt = select(ForecastRecord).where(
            ForecastRecord.location_key == location_key,
            ForecastRecord.granularity == granularity,
            ForecastRecord.user_id.is_(None) if user_id is None else ForecastRecord.user_id == user_id,
        )
        if since is not None:
            stmt = stmt.where(ForecastRecord.forecast_at >= since)
        stmt = stmt.order_by(ForecastRecord.forecast_at.asc())

        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"예보 조회 실패: {e}", location_key=location_key) from e

    # 2-1. [Read] 지역명 기준 최근 예보 (캐시까지 비었을 때 마지막 값 제공용)
    async def get_latest_by_name(
        self,
        location_name: str,
        granularity: str,
        user_id: Optional[str] = None,
        limit: int = 12,
    ) -> List[ForecastRecord]:
        stmt = (
            select(ForecastRecord)
            .where(
                ForecastRecord.location_name == location_name,
                ForecastRecord.granularity == granularity,
                ForecastRecord.user_id.is_(None) if user_id is None else ForecastRecord.user_id == user_id,
            )
            .order_by(ForecastRecord.forecast_at.desc())
            .limit(limit)
        )

        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return list(reversed(result.scalars().all()))
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"최근 예보 조회 실패: {e}", location_name=location_name) from e

    # 3. [Read] 수집 대상 위치 목록
    async def list_user_locations(self) -> List[UserLocation]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(UserLocation).order_by(UserLocation.id.asc()))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"사용자 위치 조회 실패: {e}") from e

    # 4. [Create] 사용자 위치 등록 (관리/테스트용)
    async def add_user_location(
        self,
        user_id: str,
        location_name: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> UserLocation:
        location = UserLocation(
            user_id=user_id,
            location_name=location_name,
            latitude=latitude,
            longitude=longitude,
        )
        try:
            async with self.session_factory() as db:
                db.add(location)
                await db.commit()
                await db.refresh(location)
                return location
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"사용자 위치 저장 실패: {e}", user_id=user_id) from e
