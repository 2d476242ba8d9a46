# dongne/core/pipeline.py

"""
날씨 파이프라인 조립
캐시 / 레이트 리미터는 모듈 전역이 아니라 여기서 만든 인스턴스를 app.state.pipeline 으로 주입합니다.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from dongne.core.config import settings
from dongne.domains.search.embedding_client import GeminiEmbedder
from dongne.domains.search.intent import GeminiIntentModel, IntentClassifier
from dongne.domains.search.rag_engine import RAGEngine
from dongne.domains.search.service import WeatherRAGService
from dongne.domains.search.similarity import SimilaritySearchEngine
from dongne.domains.search.vector_store import EmbeddingStore
from dongne.domains.weather.cache import TwoTierWeatherCache
from dongne.domains.weather.client import AccuWeatherClient
from dongne.domains.weather.collector import WeatherCollector
from dongne.domains.weather.rate_limiter import RateLimiter
from dongne.domains.weather.repository import CacheRepository, ForecastRepository
from dongne.domains.weather.service import WeatherService
from dongne.domains.weather.stats import ApiStatsRecorder


@dataclass
class WeatherPipeline:
    rate_limiter: RateLimiter
    embedding_rate_limiter: RateLimiter
    cache: TwoTierWeatherCache
    stats_recorder: ApiStatsRecorder
    forecast_repository: ForecastRepository
    embedding_store: EmbeddingStore
    search_engine: SimilaritySearchEngine
    weather_service: WeatherService
    rag_service: WeatherRAGService
    collector: WeatherCollector


def build_pipeline(
    session_factory,
    weather_client=None,
    embedder=None,
    intent_llm: Optional[GeminiIntentModel] = None,
    rag_engine: Optional[RAGEngine] = None,
    rate_limiter: Optional[RateLimiter] = None,
    cache: Optional[TwoTierWeatherCache] = None,
    use_llm: Optional[bool] = None,
    collector_sleep=None,
) -> WeatherPipeline:
    """
    실제 서비스에서는 인자 없이 session_factory 만 넘기고,
    테스트에서는 가짜 클라이언트 / 임베더를 넘겨 외부 호출 없이 조립합니다.
    """
    rate_limiter = rate_limiter or RateLimiter(
        limit=settings.ACCUWEATHER_HOURLY_LIMIT,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        name="accuweather",
    )
    embedding_rate_limiter = RateLimiter(
        limit=settings.EMBEDDING_HOURLY_LIMIT,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        name="gemini-embedding",
    )
    stats_recorder = ApiStatsRecorder(session_factory)
    cache = cache or TwoTierWeatherCache(CacheRepository(session_factory))
    forecast_repository = ForecastRepository(session_factory)

    weather_client = weather_client or AccuWeatherClient(
        api_key=settings.ACCUWEATHER_API_KEY,
        rate_limiter=rate_limiter,
        stats_recorder=stats_recorder,
    )
    expected_dimensions = None
    if embedder is None:
        embedder = GeminiEmbedder()
        expected_dimensions = settings.EMBEDDING_DIMENSIONS

    use_llm = bool(settings.GEMINI_API_KEY) if use_llm is None else use_llm
    if intent_llm is None and use_llm:
        intent_llm = GeminiIntentModel()
    rag_engine = rag_engine or RAGEngine.from_settings()

    embedding_store = EmbeddingStore(
        session_factory,
        embedder,
        batch_size=settings.EMBEDDING_BATCH_SIZE,
        rate_limiter=embedding_rate_limiter,
        expected_dimensions=expected_dimensions,
    )
    search_engine = SimilaritySearchEngine(
        session_factory, embedder, settings.SEARCH_CANDIDATE_LIMIT, expected_dimensions
    )
    weather_service = WeatherService(weather_client, cache, forecast_repository, embedding_store)

    rag_service = WeatherRAGService(
        classifier=IntentClassifier(llm=intent_llm),
        search_engine=search_engine,
        weather_service=weather_service,
        rag_engine=rag_engine,
    )
    collector_kwargs = {"sleep": collector_sleep} if collector_sleep else {}
    collector = WeatherCollector(weather_service, forecast_repository, embedding_store, **collector_kwargs)

    return WeatherPipeline(
        rate_limiter=rate_limiter,
        embedding_rate_limiter=embedding_rate_limiter,
        cache=cache,
        stats_recorder=stats_recorder,
        forecast_repository=forecast_repository,
        embedding_store=embedding_store,
        search_engine=search_engine,
        weather_service=weather_service,
        rag_service=rag_service,
        collector=collector,
    )


# 라우터에서 Depends(get_pipeline) 로 사용
def get_pipeline(request: Request) -> WeatherPipeline:
    return request.app.state.pipeline
