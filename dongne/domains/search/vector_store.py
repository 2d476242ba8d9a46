# dongne/domains/search/vector_store.py

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError

from dongne.core.config import settings
from dongne.core.exceptions import EmbeddingCorrupt, PersistenceFailure, QuotaExceeded, UpstreamUnavailable
from dongne.core.logger import log_event
from dongne.domains.search.models import WeatherEmbedding
from dongne.domains.search.vectors import parse_vector
from dongne.utils.timezone import now_kst

logger = logging.getLogger(__name__)

WEEKDAYS = ["월", "화", "수", "목", "금", "토", "일"]


def _num(value) -> str:
    # 19.0 -> "19", 19.5 -> "19.5"
    return f"{value:g}" if isinstance(value, (int, float)) else str(value)


@dataclass
class WeatherFact:
    """임베딩 한 건의 원본 (예보 한 시점)"""
    content_type: str                 # hourly | daily | current
    location_name: str
    forecast_date: date
    forecast_hour: Optional[int] = None
    user_id: Optional[str] = None
    temperature: Optional[float] = None
    high_temp: Optional[float] = None
    low_temp: Optional[float] = None
    conditions: Optional[str] = None
    precipitation_probability: Optional[int] = None
    humidity: Optional[int] = None
    wind_speed: Optional[float] = None

    def render(self) -> str:
        """임베딩 모델에 넣을 한국어 문장 (구조화된 필드를 그대로 넣지 않음)"""
        day = self.forecast_date.isoformat()
        parts = []

        if self.content_type == "daily":
            head = f"{self.location_name}의 {day} {WEEKDAYS[self.forecast_date.weekday()]}요일 일별 날씨 예보: "
            if self.high_temp is not None and self.low_temp is not None:
                parts.append(f"최고기온 {_num(self.high_temp)}도, 최저기온 {_num(self.low_temp)}도")
            elif self.temperature is not None:
                parts.append(f"기온 {_num(self.temperature)}도")
        else:
            label = "현재 날씨" if self.content_type == "current" else "시간별 날씨 예보"
            head = f"{self.location_name}의 {day} {self.forecast_hour}시 {label}: "
            if self.temperature is not None:
                parts.append(f"기온 {_num(self.temperature)}도")

        if self.conditions:
            parts.append(f"날씨 {self.conditions}")
        if self.precipitation_probability:
            parts.append(f"강수확률 {self.precipitation_probability}%")
        if self.humidity:
            parts.append(f"습도 {self.humidity}%")
        if self.wind_speed and self.content_type == "current":
            parts.append(f"풍속 {_num(self.wind_speed)}km/h")

        return head + ", ".join(parts)

    def metadata(self) -> dict:
        data = asdict(self)
        data["forecast_date"] = self.forecast_date.isoformat()
        return data


@dataclass
class BulkEmbedResult:
    stored_ids: List[int] = field(default_factory=list)
    failed: int = 0

    @property
    def stored(self) -> int:
        return len(self.stored_ids)


class EmbeddingStore:
    """
    날씨 임베딩 저장소 (SQL DB)
    - 문장과 벡터는 항상 같이 저장
    - 배치 임베딩은 batch_size 단위로 나눠 호출, 청크마다 커밋
    - 배치 실패 시 그 청크만 건별 재시도 (이미 저장된 청크는 유지)
    """

    def __init__(
        self,
        session_factory,
        embedder,
        batch_size: int = None,
        rate_limiter=None,
        expected_dimensions: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.embedder = embedder
        self.batch_size = batch_size or settings.EMBEDDING_BATCH_SIZE
        self.rate_limiter = rate_limiter
        self.expected_dimensions = expected_dimensions

    # 1. 단건 저장
    async def upsert(self, fact: WeatherFact) -> int:
        text = fact.render()
        vector = await self._embed_one(text)
        parse_vector(vector, self.expected_dimensions)
        ids = await self._save([(fact, text, vector)])
        return ids[0]

    # 2. 배치 저장
    async def bulk_embed_and_store(self, facts: Sequence[WeatherFact]) -> BulkEmbedResult:
        result = BulkEmbedResult()
        facts = list(facts)

        for start in range(0, len(facts), self.batch_size):
            chunk = facts[start:start + self.batch_size]
            texts = [f.render() for f in chunk]

            try:
                vectors = await self._embed_batch(texts)
                pairs = list(zip(chunk, texts, vectors))
            except QuotaExceeded:
                # 한도 초과면 남은 항목은 모두 실패 처리
                result.failed += len(facts) - start
                log_event(logger, "EMBEDDING_QUOTA_EXCEEDED", level=logging.WARNING, skipped=len(facts) - start)
                break
            except UpstreamUnavailable:
                log_event(logger, "EMBEDDING_BATCH_RETRY", level=logging.WARNING, items=len(chunk))
                pairs = await self._embed_individually(chunk, texts, result)

            valid = []
            for fact, text, vector in pairs:
                try:
                    parse_vector(vector, self.expected_dimensions)
                    valid.append((fact, text, vector))
                except EmbeddingCorrupt as e:
                    result.failed += 1
                    log_event(logger, "EMBEDDING_CORRUPT", level=logging.WARNING, content=text[:60], error=e.message)

            if not valid:
                continue
            try:
                result.stored_ids.extend(await self._save(valid))
            except PersistenceFailure as e:
                result.failed += len(valid)
                log_event(logger, "EMBEDDING_SAVE_FAILED", level=logging.ERROR, items=len(valid), error=e.message)

        log_event(logger, "EMBEDDING_BULK_DONE", stored=result.stored, failed=result.failed)
        return result

    # 3. 중복 정리 (사용자 + 타입 + 지역 + 날짜 + 시간 이 같으면 최신 1건만 유지)
    async def remove_duplicates(self) -> int:
        try:
            async with self.session_factory() as db:
                stmt = select(
                    WeatherEmbedding.id,
                    WeatherEmbedding.user_id,
                    WeatherEmbedding.content_type,
                    WeatherEmbedding.location_name,
                    WeatherEmbedding.forecast_date,
                    WeatherEmbedding.forecast_hour,
                    WeatherEmbedding.created_at,
                )
                rows = (await db.execute(stmt)).all()

                newest = {}
                for row in rows:
                    group = (row.user_id, row.content_type, row.location_name, row.forecast_date, row.forecast_hour)
                    rank = (row.created_at, row.id)
                    if group not in newest or rank > newest[group]:
                        newest[group] = rank

                keep_ids = {rank[1] for rank in newest.values()}
                remove_ids = [row.id for row in rows if row.id not in keep_ids]

                if remove_ids:
                    await db.execute(delete(WeatherEmbedding).where(WeatherEmbedding.id.in_(remove_ids)))
                    await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"임베딩 중복 정리 실패: {e}") from e

        log_event(logger, "EMBEDDING_DEDUP", removed=len(remove_ids), groups=len(newest))
        return len(remove_ids)

    # 4. 오래된 임베딩 삭제
    async def cleanup_old_embeddings(self, days: int = None) -> int:
        days = days or settings.EMBEDDING_RETENTION_DAYS
        cutoff = now_kst() - timedelta(days=days)
        try:
            async with self.session_factory() as db:
                result = await db.execute(delete(WeatherEmbedding).where(WeatherEmbedding.created_at < cutoff))
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"오래된 임베딩 삭제 실패: {e}") from e

        removed = result.rowcount or 0
        log_event(logger, "EMBEDDING_CLEANUP", removed=removed, days=days)
        return removed

    # 5. 통계
    async def get_stats(self) -> dict:
        try:
            async with self.session_factory() as db:
                total = (await db.execute(select(func.count(WeatherEmbedding.id)))).scalar_one()
                by_type = (await db.execute(
                    select(WeatherEmbedding.content_type, func.count(WeatherEmbedding.id))
                    .group_by(WeatherEmbedding.content_type)
                )).all()
                locations = (await db.execute(
                    select(func.count(func.distinct(WeatherEmbedding.location_name)))
                )).scalar_one()
                newest = (await db.execute(select(func.max(WeatherEmbedding.created_at)))).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"임베딩 통계 조회 실패: {e}") from e

        return {
            "total": total,
            "by_content_type": {content_type: count for content_type, count in by_type},
            "locations": locations,
            "latest_created_at": newest.isoformat() if newest else None,
        }

    # ==========================================
    # 내부 헬퍼
    # ==========================================
    def _check_quota(self):
        if self.rate_limiter is None:
            return
        if not self.rate_limiter.can_make_request():
            raise QuotaExceeded(wait_seconds=self.rate_limiter.get_wait_time().total_seconds(), provider="gemini")
        self.rate_limiter.record_request()

    async def _embed_one(self, text: str) -> List[float]:
        self._check_quota()
        return await self.embedder.embed(text)

    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        self._check_quota()
        return await self.embedder.embed_batch(texts)

    async def _embed_individually(self, chunk, texts, result: BulkEmbedResult):
        outcomes = await asyncio.gather(*(self._embed_one(t) for t in texts), return_exceptions=True)
        pairs = []
        for fact, text, outcome in zip(chunk, texts, outcomes):
            if isinstance(outcome, Exception):
                result.failed += 1
                log_event(logger, "EMBEDDING_ITEM_FAILED", level=logging.WARNING, content=text[:60], error=type(outcome).__name__)
            else:
                pairs.append((fact, text, outcome))
        return pairs

    async def _save(self, items) -> List[int]:
        rows = [
            WeatherEmbedding(
                user_id=fact.user_id,
                content_type=fact.content_type,
                location_name=fact.location_name,
                forecast_date=fact.forecast_date,
                forecast_hour=fact.forecast_hour,
                content=text,
                embedding=json.dumps([float(v) for v in vector]),
                fact_metadata=json.dumps(fact.metadata(), ensure_ascii=False),
            )
            for fact, text, vector in items
        ]
        try:
            async with self.session_factory() as db:
                try:
                    db.add_all(rows)
                    await db.commit()
                except SQLAlchemyError:
                    await db.rollback()
                    raise
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"임베딩 저장 실패: {e}") from e
        return [row.id for row in rows]
