"""Intent classification (pattern fast path, LLM slow path) and the vector-search gate."""

from datetime import date

import pytest

from dongne.core.exceptions import UpstreamUnavailable
from dongne.domains.search.intent import (
    GeminiIntentModel,
    IntentClassifier,
    WeatherIntent,
    should_use_vector_search,
)

# 2025-09-24 는 수요일
TODAY = date(2025, 9, 24)


class StubLLM:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def analyze(self, query_text, fallback_location, today):
        self.calls.append((query_text, fallback_location, today))
        if self.error:
            raise self.error
        return self.response


def classifier(llm=None):
    return IntentClassifier(llm=llm, llm_threshold=0.7, today=lambda: TODAY)


async def test_today_weather_is_current_with_high_confidence():
    intent = await classifier().classify("오늘 날씨")

    assert intent.type == "current"
    assert intent.confidence == pytest.approx(0.85)
    assert intent.date == TODAY
    assert intent.location == "서울"
    assert intent.content_types() == ["current", "hourly"]


async def test_tomorrow_forecast_is_daily():
    intent = await classifier().classify("내일 날씨 예보")

    assert intent.type == "daily"
    assert intent.date == date(2025, 9, 25)
    assert intent.confidence == pytest.approx(0.9)


async def test_explicit_hour_is_hourly():
    intent = await classifier().classify("오후 3시 날씨 어때?")

    assert intent.type == "hourly"
    assert intent.time == "15:00"
    assert intent.confidence == pytest.approx(0.8)


async def test_duration_is_not_mistaken_for_clock_hour():
    intent = await classifier().classify("3시간 뒤에 비 와?")

    assert intent.time is None
    assert intent.confidence == pytest.approx(0.5)


async def test_weekend_covers_saturday_and_sunday():
    intent = await classifier().classify("부산 주말 날씨")

    assert intent.type == "daily"
    assert intent.location == "부산"
    assert intent.date_range() == (date(2025, 9, 27), date(2025, 9, 28))


async def test_month_day_expression():
    intent = await classifier().classify("10월 3일 날씨 알려줘")

    assert intent.date == date(2025, 10, 3)
    assert intent.confidence == pytest.approx(0.55)


async def test_non_weather_query_has_low_confidence():
    intent = await classifier().classify("안녕하세요")
    assert intent.confidence == pytest.approx(0.1)


async def test_confident_pattern_skips_llm():
    llm = StubLLM(response={"type": "daily"})
    await classifier(llm).classify("오늘 날씨")
    assert llm.calls == []


async def test_low_confidence_consults_llm_and_merges():
    llm = StubLLM(response={
        "type": "forecast",
        "date": "2025-09-26",
        "time": None,
        "location": "대구",
        "period_days": 2,
        "confidence": 0.92,
    })

    intent = await classifier(llm).classify("비 올까?", fallback_location="서울")

    assert len(llm.calls) == 1
    assert intent.source == "llm"
    assert intent.type == "daily"
    assert intent.date == date(2025, 9, 26)
    assert intent.location == "대구"
    assert intent.period_days == 2
    assert intent.confidence == pytest.approx(0.92)


async def test_llm_failure_falls_back_to_pattern():
    llm = StubLLM(error=UpstreamUnavailable("timeout"))

    intent = await classifier(llm).classify("비 올까?")

    assert intent.source == "pattern"
    assert intent.confidence == pytest.approx(0.5)


async def test_llm_garbage_fields_keep_pattern_values():
    llm = StubLLM(response={"type": "tornado", "date": "not-a-date", "confidence": "high"})

    intent = await classifier(llm).classify("비 올까?")

    assert intent.type == "current"
    assert intent.date == TODAY
    assert intent.confidence == 0.0


async def test_llm_non_object_response_keeps_pattern_intent():
    llm = StubLLM(response=[{"type": "daily"}])

    intent = await classifier(llm).classify("비 올까?")

    assert intent.source == "pattern"
    assert intent.type == "current"
    assert intent.confidence == pytest.approx(0.5)


async def test_llm_wrongly_typed_fields_keep_pattern_values():
    llm = StubLLM(response={"date": 20250926, "location": ["대구"], "time": 15, "type": "daily"})

    intent = await classifier(llm).classify("비 올까?", fallback_location="서울")

    assert intent.source == "llm"
    assert intent.type == "daily"
    assert intent.date == TODAY
    assert intent.location == "서울"
    assert intent.time is None


class ListModel:
    def generate_content(self, prompt):
        return type("Response", (), {"text": '[{"type": "daily"}]'})()


async def test_gemini_array_response_is_upstream_unavailable():
    model = GeminiIntentModel.__new__(GeminiIntentModel)
    model.model = ListModel()
    model.timeout = 5

    with pytest.raises(UpstreamUnavailable):
        await model.analyze("비 올까?", "서울", TODAY)


def test_to_dict_is_serializable():
    intent = WeatherIntent(type="hourly", date=TODAY, location="서울", confidence=0.8, time="15:00")
    assert intent.to_dict() == {
        "type": "hourly",
        "date": "2025-09-24",
        "time": "15:00",
        "location": "서울",
        "confidence": 0.8,
        "period_days": 1,
        "source": "pattern",
    }


@pytest.mark.parametrize(
    "count, confidence, expected",
    [
        (5, 0.85, True),
        (2, 0.71, True),
        (1, 0.95, False),
        (5, 0.7, False),
        (0, 0.0, False),
    ],
)
def test_vector_search_gate(count, confidence, expected):
    assert should_use_vector_search(count, confidence, min_results=2, threshold=0.7) is expected
