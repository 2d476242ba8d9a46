# dongne/domains/search/schemas.py
from typing import List, Literal, Optional
from pydantic import BaseModel, Field


class WeatherQueryRequest(BaseModel):
    query_text: str = Field(..., min_length=1, max_length=500)
    user_id: Optional[str] = None
    location: Optional[str] = None


class WeatherQueryResponse(BaseModel):
    answer: str
    # vector_search: 임베딩 검색 결과로 답변 / live_api: 실시간 예보로 답변 / unavailable: 데이터 없음
    method: Literal["vector_search", "live_api", "unavailable"]
    confidence: float
    source_data: List[dict] = Field(default_factory=list)
    intent: dict
