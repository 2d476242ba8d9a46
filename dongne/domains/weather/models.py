# dongne/domains/weather/models.py

from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Text, UniqueConstraint
from dongne.core.database import Base
from dongne.utils.timezone import now_kst


class ForecastRecord(Base):
    """
    시간별 / 일별 예보 원본 테이블
    - forecast_at 은 항상 KST 기준 naive datetime (normalize_timestamp 통과값)
    - user_id 가 NULL 이면 지역 단위(location-only) 데이터
    """
    __tablename__ = "forecast_records"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(String(64), nullable=True, index=True)
    location_key = Column(String(64), nullable=False, index=True)
    location_name = Column(String(100), nullable=False)

    # hourly | daily
    granularity = Column(String(10), nullable=False)
    forecast_at = Column(DateTime, nullable=False, index=True)

    temperature = Column(Float, nullable=True)
    high_temp = Column(Float, nullable=True)                   # 일별 최고
    low_temp = Column(Float, nullable=True)                    # 일별 최저
    precipitation_probability = Column(Integer, nullable=True) # 강수확률 (%)
    humidity = Column(Integer, nullable=True)                  # 습도 (%)
    wind_speed = Column(Float, nullable=True)                  # 풍속 (km/h)
    condition_code = Column(Integer, nullable=True)            # AccuWeather 아이콘 코드
    conditions = Column(String(100), nullable=True)            # 날씨 설명 (예: 소나기)

    created_at = Column(DateTime, default=now_kst)

    # [중요] 같은 소유 범위에서 위치 + 시각 + 단위가 같으면 중복 저장 금지
    __table_args__ = (
        UniqueConstraint('user_id', 'location_key', 'forecast_at', 'granularity', name='uix_forecast_scope_time'),
    )


class CacheEntry(Base):
    """2단계 캐시의 DB 계층 (만료 시각은 epoch 초)"""
    __tablename__ = "weather_cache_entries"

    id = Column(Integer, primary_key=True, index=True)
    cache_key = Column(String(255), nullable=False, unique=True, index=True)
    kind = Column(String(20), nullable=False, index=True)
    payload = Column(Text, nullable=False)
    expires_at = Column(Float, nullable=False, index=True)
    updated_at = Column(DateTime, default=now_kst, onupdate=now_kst)


class DailyApiStats(Base):
    __tablename__ = "daily_api_stats"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(50), nullable=False)
    stat_date = Column(Date, nullable=False)

    total_calls = Column(Integer, nullable=False, default=0)
    successful_calls = Column(Integer, nullable=False, default=0)
    failed_calls = Column(Integer, nullable=False, default=0)
    avg_response_ms = Column(Float, nullable=False, default=0.0)
    max_response_ms = Column(Float, nullable=False, default=0.0)

    # 시간대(0~23시)별 호출 수 (JSON 배열 문자열)
    hourly_histogram = Column(Text, nullable=False, default="[]")

    __table_args__ = (
        UniqueConstraint('provider', 'stat_date', name='uix_api_stats_provider_date'),
    )


class UserLocation(Base):
    """수집 대상 사용자 위치 (사용자 도메인에서 등록, 여기서는 읽기 위주)"""
    __tablename__ = "user_locations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    location_name = Column(String(100), nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_at = Column(DateTime, default=now_kst)
