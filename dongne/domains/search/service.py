# dongne/domains/search/service.py
import logging

from dongne.core.config import settings
from dongne.core.exceptions import EmbeddingCorrupt, PersistenceFailure, UpstreamUnavailable
from dongne.core.logger import log_event
from dongne.domains.search.intent import IntentClassifier, should_use_vector_search
from dongne.domains.search.rag_engine import RAGEngine
from dongne.domains.search.schemas import WeatherQueryRequest, WeatherQueryResponse
from dongne.domains.search.similarity import SearchScope, SimilaritySearchEngine
from dongne.domains.weather.ingest import to_fact
from dongne.domains.weather.service import WeatherService

logger = logging.getLogger(__name__)


class WeatherRAGService:
    """
    날씨 질의응답 파이프라인: [의도 분석] -> [벡터 검색] -> (부족하면) [실시간 예보] -> [답변 생성]
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        search_engine: SimilaritySearchEngine,
        weather_service: WeatherService,
        rag_engine: RAGEngine,
        min_results: int = None,
        confidence_threshold: float = None,
        top_k: int = None,
    ):
        self.classifier = classifier
        self.search_engine = search_engine
        self.weather_service = weather_service
        self.rag_engine = rag_engine
        self.min_results = settings.VECTOR_MIN_RESULTS if min_results is None else min_results
        self.confidence_threshold = (
            settings.VECTOR_CONFIDENCE_THRESHOLD if confidence_threshold is None else confidence_threshold
        )
        self.top_k = top_k or settings.SEARCH_TOP_K

    async def process_query(self, request: WeatherQueryRequest) -> WeatherQueryResponse:
        logger.info(f"🔎 날씨 질의 시작: {request.query_text} (user={request.user_id})")

        # 1. 의도 분석
        intent = await self.classifier.classify(request.query_text, request.location)

        # 2. 벡터 검색 (범위 필터는 DB 에서)
        date_from, date_to = intent.date_range()
        scope = SearchScope(
            user_id=request.user_id,
            content_types=intent.content_types(),
            date_from=date_from,
            date_to=date_to,
            location_name=intent.location,
        )
        hits = []
        try:
            hits = await self.search_engine.search(request.query_text, scope, self.top_k)
        except (UpstreamUnavailable, PersistenceFailure, EmbeddingCorrupt) as e:
            log_event(logger, "VECTOR_SEARCH_FAILED", level=logging.WARNING, reason=e.kind)

        # 3. 라우팅: 결과 수 + 신뢰도 둘 다 통과해야 벡터 검색 결과 사용
        if should_use_vector_search(len(hits), intent.confidence, self.min_results, self.confidence_threshold):
            facts = [hit.content for hit in hits]
            answer = await self.rag_engine.generate_answer(request.query_text, intent, facts)
            log_event(logger, "QUERY_ROUTED", method="vector_search", results=len(hits), confidence=intent.confidence)
            return WeatherQueryResponse(
                answer=answer,
                method="vector_search",
                confidence=intent.confidence,
                source_data=[hit.to_dict() for hit in hits],
                intent=intent.to_dict(),
            )

        # 4. 실시간 예보로 대체
        log_event(logger, "QUERY_ROUTED", method="live_api", results=len(hits), confidence=intent.confidence)
        granularity = "daily" if intent.type == "daily" else "hourly"
        forecast = await self.weather_service.get_forecast(intent.location, granularity, request.user_id)

        if forecast.status == "unavailable":
            answer = await self.rag_engine.generate_answer(request.query_text, intent, [])
            return WeatherQueryResponse(
                answer=answer,
                method="unavailable",
                confidence=intent.confidence,
                source_data=[],
                intent=intent.to_dict(),
            )

        points = [
            p for p in forecast.points
            if date_from <= p.forecast_at.date() <= date_to
        ] or forecast.points
        facts = [to_fact(p, intent.location, request.user_id).render() for p in points]
        answer = await self.rag_engine.generate_answer(request.query_text, intent, facts)

        return WeatherQueryResponse(
            answer=answer,
            method="live_api",
            confidence=intent.confidence,
            source_data=[
                {"content": fact, "status": forecast.status, **point.model_dump(mode="json")}
                for fact, point in zip(facts, points)
            ],
            intent=intent.to_dict(),
        )
