# dongne/core/lifespan.py

from contextlib import asynccontextmanager
from fastapi import FastAPI
from dongne.core.database import engine, Base, AsyncSessionLocal

# [중요] 테이블 생성을 위해 모든 모델을 미리 메모리에 로드해야 합니다.
from dongne.domains.weather.models import ForecastRecord, CacheEntry, DailyApiStats, UserLocation
from dongne.domains.search.models import WeatherEmbedding

from dongne.core.logger import setup_logging
from dongne.core.pipeline import build_pipeline
from dongne.core.scheduler import create_scheduler
import logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # [Startup] 서버 시작 시 실행
    setup_logging()
    logger.info("🚀 [System] 서버 시작: DB 테이블 생성 및 파이프라인 조립...")

    # 1. DB 테이블 자동 생성 (테이블이 없을 때만 생성됨)
    async with engine.begin() as conn:
        # create_all은 동기 함수이므로 run_sync로 실행
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ [Database] 테이블 체크 및 생성 완료")

    # 2. 캐시 / 레이트 리미터 / 임베딩 저장소 조립 후 app.state 에 보관
    pipeline = build_pipeline(AsyncSessionLocal)
    app.state.pipeline = pipeline

    # 3. 스케줄러 가동
    scheduler = create_scheduler(pipeline)
    scheduler.start()
    logger.info("⏰ [Scheduler] 수집 / 캐시 정리 / 임베딩 정리 작업 등록 완료")

    yield # 서버 실행 중 (여기서 멈춰있음)

    # [Shutdown] 서버 종료 시 실행
    logger.info("🛑 서버 종료: 스케줄러를 정지합니다.")
    scheduler.shutdown()

    # DB 커넥션 종료
    await engine.dispose()
