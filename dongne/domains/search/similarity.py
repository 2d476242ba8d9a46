# dongne/domains/search/similarity.py

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import select, or_
from sqlalchemy.exc import SQLAlchemyError

from dongne.core.config import settings
from dongne.core.exceptions import EmbeddingCorrupt, PersistenceFailure
from dongne.core.logger import log_event
from dongne.domains.search.models import WeatherEmbedding
from dongne.domains.search.vectors import cosine_similarity, parse_vector

logger = logging.getLogger(__name__)


@dataclass
class SearchScope:
    user_id: Optional[str] = None
    content_types: Optional[List[str]] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    location_name: Optional[str] = None


@dataclass
class SearchHit:
    id: int
    score: float
    content: str
    content_type: str
    location_name: str
    forecast_date: date
    forecast_hour: Optional[int] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "score": round(self.score, 4),
            "content": self.content,
            "content_type": self.content_type,
            "location_name": self.location_name,
            "forecast_date": self.forecast_date.isoformat(),
            "forecast_hour": self.forecast_hour,
            "metadata": self.metadata,
        }


class SimilaritySearchEngine:
    """
    질의 임베딩 vs 저장된 임베딩 코사인 유사도 검색

    - 범위(사용자 / 타입 / 날짜 / 지역) 필터는 SQL 에서 먼저 적용
    - 점수 내림차순, 동점이면 더 최근 예보(날짜, 시간) -> 더 최근 행
    - 임계값은 적용하지 않음 (라우팅 계층이 판단)
    - 깨진 벡터는 점수 0 으로 포함하고 데이터 품질 로그만 남김
    """

    def __init__(self, session_factory, embedder, candidate_limit: int = None, expected_dimensions: Optional[int] = None):
        self.session_factory = session_factory
        self.embedder = embedder
        self.candidate_limit = candidate_limit or settings.SEARCH_CANDIDATE_LIMIT
        self.expected_dimensions = expected_dimensions

    async def search(self, query_text: str, scope: Optional[SearchScope] = None, top_k: int = None) -> List[SearchHit]:
        scope = scope or SearchScope()
        top_k = top_k or settings.SEARCH_TOP_K

        query_vector = parse_vector(await self.embedder.embed(query_text, is_query=True))
        candidates = await self._load_candidates(scope)

        hits = []
        corrupt = 0
        for row in candidates:
            try:
                vector = parse_vector(row.embedding, self.expected_dimensions or query_vector.size)
                score = cosine_similarity(query_vector, vector)
                if score == 0.0 and not vector.any():
                    raise EmbeddingCorrupt("norm 0 벡터")
            except EmbeddingCorrupt as e:
                corrupt += 1
                score = 0.0
                log_event(logger, "EMBEDDING_CORRUPT", level=logging.WARNING, embedding_id=row.id, error=e.message)
            hits.append(self._to_hit(row, score))

        hits.sort(key=lambda h: (
            -h.score,
            -h.forecast_date.toordinal(),
            -(h.forecast_hour if h.forecast_hour is not None else -1),
            -h.id,
        ))

        log_event(
            logger, "VECTOR_SEARCH",
            candidates=len(candidates), corrupt=corrupt, returned=min(top_k, len(hits)),
            top_score=round(hits[0].score, 4) if hits else None,
        )
        return hits[:top_k]

    async def _load_candidates(self, scope: SearchScope) -> List[WeatherEmbedding]:
        # 다른 사용자 데이터는 절대 포함하지 않음 (사용자 본인 + 지역 공용 데이터만)
        if scope.user_id is not None:
            stmt = select(WeatherEmbedding).where(
                or_(WeatherEmbedding.user_id == scope.user_id, WeatherEmbedding.user_id.is_(None))
            )
        else:
            stmt = select(WeatherEmbedding).where(WeatherEmbedding.user_id.is_(None))

        if scope.content_types:
            stmt = stmt.where(WeatherEmbedding.content_type.in_(scope.content_types))
        if scope.date_from is not None:
            stmt = stmt.where(WeatherEmbedding.forecast_date >= scope.date_from)
        if scope.date_to is not None:
            stmt = stmt.where(WeatherEmbedding.forecast_date <= scope.date_to)
        if scope.location_name:
            stmt = stmt.where(WeatherEmbedding.location_name == scope.location_name)

        stmt = stmt.order_by(
            WeatherEmbedding.forecast_date.desc(),
            WeatherEmbedding.forecast_hour.desc(),
            WeatherEmbedding.id.desc(),
        ).limit(self.candidate_limit)

        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"임베딩 후보 조회 실패: {e}") from e

    @staticmethod
    def _to_hit(row: WeatherEmbedding, score: float) -> SearchHit:
        try:
            metadata = json.loads(row.fact_metadata) if row.fact_metadata else {}
        except ValueError:
            metadata = {}
        return SearchHit(
            id=row.id,
            score=score,
            content=row.content,
            content_type=row.content_type,
            location_name=row.location_name,
            forecast_date=row.forecast_date,
            forecast_hour=row.forecast_hour,
            user_id=row.user_id,
            created_at=row.created_at,
            metadata=metadata,
        )
