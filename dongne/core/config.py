# dongne/core/config.py

from typing import List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "dongne (동네 날씨)"

    # 데이터베이스 연결 (운영: mysql+aiomysql, 로컬/테스트: sqlite+aiosqlite)
    DATABASE_URL: str = "sqlite+aiosqlite:///./dongne.db"

    # AccuWeather 예보 API
    ACCUWEATHER_API_KEY: str = ""
    ACCUWEATHER_BASE_URL: str = "https://dataservice.accuweather.com"
    # 무료 플랜 기준 시간당 50회
    ACCUWEATHER_HOURLY_LIMIT: int = 50
    RATE_LIMIT_WINDOW_SECONDS: int = 3600
    UPSTREAM_TIMEOUT_SECONDS: float = 10.0

    # Gemini (임베딩 + 의도 분석 + 답변 생성)
    GEMINI_API_KEY: str = ""
    GEMINI_EMBEDDING_MODEL: str = "models/text-embedding-004"
    GEMINI_CHAT_MODEL: str = "models/gemini-2.5-flash-lite"
    EMBEDDING_DIMENSIONS: int = 768
    EMBEDDING_BATCH_SIZE: int = 50
    EMBEDDING_HOURLY_LIMIT: int = 1000
    EMBEDDING_RETENTION_DAYS: int = 30

    # 캐시 TTL (분 단위, 메모리 / DB)
    HOURLY_MEMORY_TTL_MINUTES: int = 10
    HOURLY_PERSISTENT_TTL_MINUTES: int = 60
    DAILY_MEMORY_TTL_MINUTES: int = 30
    DAILY_PERSISTENT_TTL_MINUTES: int = 360
    CURRENT_MEMORY_TTL_MINUTES: int = 5
    CURRENT_PERSISTENT_TTL_MINUTES: int = 30
    LOCATION_MEMORY_TTL_MINUTES: int = 1440
    LOCATION_PERSISTENT_TTL_MINUTES: int = 10080  # 7일

    # 벡터 검색 / 라우팅 기준
    VECTOR_MIN_RESULTS: int = 2
    VECTOR_CONFIDENCE_THRESHOLD: float = 0.7
    INTENT_LLM_THRESHOLD: float = 0.7
    SEARCH_TOP_K: int = 5
    SEARCH_CANDIDATE_LIMIT: int = 200
    DEFAULT_LOCATION: str = "서울"

    # 스케줄 수집 (KST 기준 0, 6, 12, 18시)
    COLLECT_HOURS: List[int] = [0, 6, 12, 18]
    COLLECTOR_RETRY_BACKOFF_SECONDS: float = 2.0
    COLLECTOR_USER_DELAY_SECONDS: float = 0.5
    CRON_SECRET: str = ""

    # 로그
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = True

    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]

    class Config:
        env_file = ".env"

settings = Settings()
