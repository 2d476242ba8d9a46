# dongne/domains/search/intent.py

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import List, Optional

import google.generativeai as genai

from dongne.core.config import settings
from dongne.core.exceptions import UpstreamUnavailable
from dongne.utils.location import extract_location
from dongne.utils.timezone import today_kst

logger = logging.getLogger(__name__)

INTENT_TYPES = ("current", "hourly", "daily")

# 날씨 관련 키워드
WEATHER_KEYWORDS = [
    "날씨", "기온", "온도", "비", "눈", "바람", "습도", "우산",
    "weather", "강수", "맑음", "흐림", "덥", "춥",
]

# 유형별 패턴 (앞에 있는 유형이 우선)
TYPE_PATTERNS = [
    ("current", ["지금", "현재", "오늘 날씨", "지금 날씨", "현재 날씨"]),
    ("hourly", ["시간별", "몇시간", "시간당", "매시간"]),
    ("daily", ["일별", "매일", "하루", "일간", "예보", "내일", "모레", "주간", "일주일", "며칠", "이번 주", "주말"]),
]

_HOUR_PATTERN = re.compile(r"(오전|오후|밤|저녁)?\s*(\d{1,2})\s*시(?!간)")
_MONTH_DAY_PATTERN = re.compile(r"(\d{1,2})\s*월\s*(\d{1,2})\s*일")

PATTERN_TYPE_MATCH_CONFIDENCE = 0.8
PATTERN_BASE_CONFIDENCE = 0.5
PATTERN_NO_KEYWORD_CONFIDENCE = 0.1
EXPLICIT_DATE_BONUS = 0.05
FORECAST_MIN_CONFIDENCE = 0.9


@dataclass
class WeatherIntent:
    type: str                        # current | hourly | daily
    date: date
    location: str
    confidence: float
    time: Optional[str] = None       # "15:00"
    period_days: int = 1
    source: str = "pattern"          # pattern | llm

    def content_types(self) -> List[str]:
        """검색할 임베딩 타입 (현재 날씨 질문은 시간별 예보로도 답할 수 있음)"""
        if self.type == "current":
            return ["current", "hourly"]
        return [self.type]

    def date_range(self):
        return self.date, self.date + timedelta(days=max(1, self.period_days) - 1)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "date": self.date.isoformat(),
            "time": self.time,
            "location": self.location,
            "confidence": round(self.confidence, 3),
            "period_days": self.period_days,
            "source": self.source,
        }


def clamp_confidence(value) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(1.0, value))


def should_use_vector_search(
    result_count: int,
    confidence: float,
    min_results: int = None,
    threshold: float = None,
) -> bool:
    """
    벡터 검색 결과로 답할지 여부
    결과 개수(min_results 이상)와 의도 신뢰도(threshold 초과)를 둘 다 만족해야 함
    """
    min_results = settings.VECTOR_MIN_RESULTS if min_results is None else min_results
    threshold = settings.VECTOR_CONFIDENCE_THRESHOLD if threshold is None else threshold
    return result_count >= min_results and confidence > threshold


class GeminiIntentModel:
    """LLM 기반 의도 분석 (느린 경로)"""

    def __init__(self, api_key: str = None, model: str = None, timeout: float = None):
        genai.configure(api_key=api_key or settings.GEMINI_API_KEY)
        self.model = genai.GenerativeModel(
            model or settings.GEMINI_CHAT_MODEL,
            generation_config={"response_mime_type": "application/json", "temperature": 0.1},
        )
        self.timeout = timeout or settings.UPSTREAM_TIMEOUT_SECONDS

    async def analyze(self, query_text: str, fallback_location: str, today: date) -> dict:
        prompt = f"""
        당신은 날씨 질문 분석 전문가입니다. 사용자의 날씨 질문에서 날짜, 시간, 위치를 추출하세요.

        [현재 정보]
        - 오늘 날짜: {today.isoformat()}
        - 기본 위치: {fallback_location}

        [사용자 질문]
        "{query_text}"

        [분석 가이드]
        1. "내일" -> 오늘 + 1일, "모레" -> 오늘 + 2일
        2. "3시 날씨" -> 오늘 15:00, hourly 타입
        3. "이번 주", "주간" -> daily 타입, period_days 7
        4. 위치가 없으면 기본 위치 사용
        5. confidence 는 날짜/시간이 명확할수록 높게 (0.0 ~ 1.0)

        [Target JSON Structure]
        {{
            "type": "current|hourly|daily",
            "date": "YYYY-MM-DD",
            "time": "HH:MM 또는 null",
            "location": "String",
            "period_days": 1,
            "confidence": 0.0
        }}
        """
        start_time = time.time()
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self.model.generate_content, prompt),
                timeout=self.timeout,
            )
            parsed = json.loads(response.text)
            if not isinstance(parsed, dict):
                raise ValueError(f"JSON 객체가 아닌 응답: {type(parsed).__name__}")
        except Exception as e:
            error_log = {
                "event": "INTENT_LLM_FAILED",
                "query": query_text,
                "duration": f"{time.time() - start_time:.3f}s",
                "error_cause": str(e) or type(e).__name__,
            }
            logger.warning(json.dumps(error_log, ensure_ascii=False))
            raise UpstreamUnavailable(f"의도 분석 LLM 호출 실패: {e}") from e

        logger.info(json.dumps({
            "event": "INTENT_LLM_SUCCESS",
            "query": query_text,
            "duration": f"{time.time() - start_time:.3f}s",
            "output_response": parsed,
        }, ensure_ascii=False))
        return parsed


class IntentClassifier:
    """
    날씨 질문 의도 분류기 (상태 없음)
    1) 키워드 패턴 (빠른 경로)
    2) 패턴 신뢰도가 기준 미만이고 LLM 이 있으면 LLM (느린 경로)
    LLM 이 없거나 실패하면 패턴 결과를 그대로 사용합니다.
    """

    def __init__(self, llm: Optional[GeminiIntentModel] = None, llm_threshold: float = None, today=today_kst):
        self.llm = llm
        self.llm_threshold = settings.INTENT_LLM_THRESHOLD if llm_threshold is None else llm_threshold
        self._today = today

    async def classify(self, query_text: str, fallback_location: str = None) -> WeatherIntent:
        fallback_location = fallback_location or settings.DEFAULT_LOCATION
        intent = self.classify_by_pattern(query_text, fallback_location)

        if self.llm is None or intent.confidence >= self.llm_threshold:
            return intent

        try:
            parsed = await self.llm.analyze(query_text, fallback_location, self._today())
        except UpstreamUnavailable:
            logger.info(f"⚠️ LLM 의도 분석 불가, 패턴 결과 사용 (confidence={intent.confidence})")
            return intent

        return self._merge_llm_result(intent, parsed)

    def classify_by_pattern(self, query_text: str, fallback_location: str = None) -> WeatherIntent:
        fallback_location = fallback_location or settings.DEFAULT_LOCATION
        message = (query_text or "").lower().strip()
        today = self._today()

        has_weather_keyword = any(keyword in message for keyword in WEATHER_KEYWORDS)

        intent_type = "current"
        matched = False
        for candidate, patterns in TYPE_PATTERNS:
            if any(pattern in message for pattern in patterns):
                intent_type = candidate
                matched = True
                break

        # "3시", "오후 3시" -> 시간별
        hour_text = None
        hour_match = _HOUR_PATTERN.search(message)
        if hour_match:
            hour = int(hour_match.group(2))
            if hour_match.group(1) in ("오후", "밤", "저녁") and hour < 12:
                hour += 12
            if 0 <= hour <= 23:
                hour_text = f"{hour:02d}:00"
                if intent_type == "current":
                    intent_type = "hourly"
                matched = True

        target_date, period_days, explicit_date = self._extract_date(message, today)

        if not has_weather_keyword:
            confidence = PATTERN_NO_KEYWORD_CONFIDENCE
        elif matched:
            confidence = PATTERN_TYPE_MATCH_CONFIDENCE
        else:
            confidence = PATTERN_BASE_CONFIDENCE

        if has_weather_keyword and explicit_date:
            confidence += EXPLICIT_DATE_BONUS
        if has_weather_keyword and "예보" in message:
            confidence = max(confidence, FORECAST_MIN_CONFIDENCE)

        return WeatherIntent(
            type=intent_type,
            date=target_date,
            location=extract_location(message) or fallback_location,
            confidence=clamp_confidence(confidence),
            time=hour_text,
            period_days=period_days,
            source="pattern",
        )

    @staticmethod
    def _extract_date(message: str, today: date):
        """(날짜, 기간(일), 명시적 날짜 표현 여부)"""
        month_day = _MONTH_DAY_PATTERN.search(message)
        if month_day:
            try:
                return date(today.year, int(month_day.group(1)), int(month_day.group(2))), 1, True
            except ValueError:
                pass

        if "모레" in message:
            return today + timedelta(days=2), 1, True
        if "내일" in message:
            return today + timedelta(days=1), 1, True
        if "주말" in message:
            saturday = today + timedelta(days=(5 - today.weekday()) % 7)
            return saturday, 2, True
        if any(word in message for word in ("주간", "일주일", "이번 주", "7일")):
            return today, 7, False
        if "오늘" in message:
            return today, 1, True
        return today, 1, False

    @staticmethod
    def _text_or_none(value) -> Optional[str]:
        if isinstance(value, str):
            return value.strip() or None
        return None

    @classmethod
    def _merge_llm_result(cls, pattern_intent: WeatherIntent, parsed) -> WeatherIntent:
        if not isinstance(parsed, dict):
            logger.info("⚠️ LLM 의도 분석 결과 형식 오류, 패턴 결과 사용")
            return pattern_intent

        intent_type = parsed.get("type")
        if intent_type == "forecast":
            intent_type = "daily"
        if intent_type not in INTENT_TYPES:
            intent_type = pattern_intent.type

        try:
            target_date = date.fromisoformat(parsed.get("date") or "")
        except (TypeError, ValueError):
            target_date = pattern_intent.date

        try:
            period_days = max(1, int(parsed.get("period_days") or pattern_intent.period_days))
        except (TypeError, ValueError):
            period_days = pattern_intent.period_days

        return replace(
            pattern_intent,
            type=intent_type,
            date=target_date,
            time=cls._text_or_none(parsed.get("time")) or pattern_intent.time,
            location=cls._text_or_none(parsed.get("location")) or pattern_intent.location,
            period_days=period_days,
            confidence=clamp_confidence(parsed.get("confidence", pattern_intent.confidence)),
            source="llm",
        )
