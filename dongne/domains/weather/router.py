# dongne/domains/weather/router.py

from secrets import compare_digest
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from dongne.core.config import settings
from dongne.core.exceptions import PersistenceFailure
from dongne.core.pipeline import WeatherPipeline, get_pipeline
from dongne.domains.weather.schemas import ForecastResponse, UserLocationCreate
from dongne.utils.timezone import now_kst

router = APIRouter()
cron_router = APIRouter()


@router.get("/hourly", response_model=ForecastResponse)
async def get_hourly_forecast(
    location: str = settings.DEFAULT_LOCATION,
    user_id: Optional[str] = None,
    pipeline: WeatherPipeline = Depends(get_pipeline),
):
    """12시간 시간별 예보 (캐시 -> 실시간)"""
    result = await pipeline.weather_service.get_forecast(location, "hourly", user_id)
    return result.to_response()


@router.get("/daily", response_model=ForecastResponse)
async def get_daily_forecast(
    location: str = settings.DEFAULT_LOCATION,
    user_id: Optional[str] = None,
    pipeline: WeatherPipeline = Depends(get_pipeline),
):
    """5일 일별 예보 (캐시 -> 실시간)"""
    result = await pipeline.weather_service.get_forecast(location, "daily", user_id)
    return result.to_response()


@router.get("/current", response_model=ForecastResponse)
async def get_current_weather(
    location: str = settings.DEFAULT_LOCATION,
    pipeline: WeatherPipeline = Depends(get_pipeline),
):
    result = await pipeline.weather_service.get_forecast(location, "current")
    return result.to_response()


@router.get("/stats")
async def get_pipeline_stats(pipeline: WeatherPipeline = Depends(get_pipeline)):
    """캐시 / 호출 한도 / 임베딩 / 오늘 API 호출 통계"""
    try:
        embedding_stats = await pipeline.embedding_store.get_stats()
    except PersistenceFailure as e:
        embedding_stats = {"error": e.message}

    return {
        "cache": pipeline.cache.get_stats(),
        "rate_limiter": pipeline.rate_limiter.get_stats(),
        "embedding_rate_limiter": pipeline.embedding_rate_limiter.get_stats(),
        "embeddings": embedding_stats,
        "api_calls_today": await pipeline.stats_recorder.get_daily_stats("accuweather"),
    }


@router.post("/cache/clear")
async def clear_cache(pipeline: WeatherPipeline = Depends(get_pipeline)):
    await pipeline.cache.clear()
    return {"status": "success", "message": "캐시를 비웠습니다."}


@router.post("/cache/cleanup")
async def cleanup_cache(pipeline: WeatherPipeline = Depends(get_pipeline)):
    removed = await pipeline.cache.cleanup_expired()
    return {"status": "success", **removed}


@router.post("/locations", status_code=201)
async def register_user_location(
    body: UserLocationCreate,
    pipeline: WeatherPipeline = Depends(get_pipeline),
):
    """수집 대상 위치 등록 (관리용)"""
    location = await pipeline.forecast_repository.add_user_location(
        body.user_id, body.location_name, body.latitude, body.longitude
    )
    return {
        "status": "success",
        "id": location.id,
        "user_id": location.user_id,
        "location_name": location.location_name,
    }


# ==========================================
# 외부 크론 트리거 (Authorization: Bearer <CRON_SECRET>)
# ==========================================
def verify_cron_secret(authorization: Optional[str] = Header(default=None)):
    expected = f"Bearer {settings.CRON_SECRET}"
    if not settings.CRON_SECRET or not authorization or not compare_digest(authorization.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="유효하지 않은 크론 인증 정보입니다.")


@cron_router.get("/weather-collector", dependencies=[Depends(verify_cron_secret)])
async def run_weather_collector(
    force: bool = False,
    pipeline: WeatherPipeline = Depends(get_pipeline),
):
    current_hour = now_kst().hour
    if not force and current_hour not in settings.COLLECT_HOURS:
        return {
            "status": "success",
            "skipped": True,
            "message": f"수집 시간이 아닙니다. (현재 {current_hour}시, 수집 시간 {settings.COLLECT_HOURS})",
        }

    summary = await pipeline.collector.collect_for_all_users()
    return {"status": "success", "skipped": False, **summary}
