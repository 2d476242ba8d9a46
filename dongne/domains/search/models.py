# dongne/domains/search/models.py

from sqlalchemy import Column, Integer, String, Date, DateTime, Text
from dongne.core.database import Base
from dongne.utils.timezone import now_kst


class WeatherEmbedding(Base):
    """
    날씨 사실(문장) + 임베딩 벡터 테이블
    - content 와 embedding 은 항상 함께 생성 (따로 수정 금지)
    - 수정 대신 새 행 추가 -> 중복 정리(remove_duplicates)에서 최신 행만 남김
    """
    __tablename__ = "weather_embeddings"

    id = Column(Integer, primary_key=True, index=True)

    # 사용자 ID (NULL 이면 지역 공용 데이터)
    user_id = Column(String(64), nullable=True, index=True)

    # hourly | daily | current
    content_type = Column(String(20), nullable=False, index=True)

    location_name = Column(String(100), nullable=False, index=True)
    forecast_date = Column(Date, nullable=False, index=True)
    forecast_hour = Column(Integer, nullable=True)  # 일별 데이터는 NULL

    # 임베딩 대상 문장 (예: "서울의 2025-09-28 14시 시간별 날씨 예보: ...")
    content = Column(Text, nullable=False)

    # 벡터 (JSON 배열 문자열)
    embedding = Column(Text, nullable=False)

    # 원본 수치 데이터 (JSON 문자열: temperature, precipitation_probability 등)
    fact_metadata = Column("metadata", Text, nullable=True)

    created_at = Column(DateTime, default=now_kst, index=True)
