# dongne/domains/weather/schemas.py

from datetime import datetime
from typing import List, Literal, Optional, Union
from pydantic import BaseModel, Field

from dongne.utils.timezone import normalize_timestamp


class ForecastPoint(BaseModel):
    """
    내부 표준 예보 형태
    업스트림 JSON은 아래 Payload 모델을 거쳐 반드시 이 형태로 변환된 뒤에만 흘러갑니다.
    """
    granularity: Literal["hourly", "daily", "current"]
    forecast_at: datetime  # KST naive
    temperature: Optional[float] = None
    high_temp: Optional[float] = None
    low_temp: Optional[float] = None
    precipitation_probability: Optional[int] = None
    humidity: Optional[int] = None
    wind_speed: Optional[float] = None
    condition_code: Optional[int] = None
    conditions: Optional[str] = None


# ==========================================
# AccuWeather 응답 (종류별 태그 모델)
# ==========================================
class HourlyPayload(BaseModel):
    kind: Literal["hourly"] = "hourly"
    date_time: str
    temperature: float
    icon_phrase: Optional[str] = None
    weather_icon: Optional[int] = None
    precipitation_probability: Optional[int] = None
    relative_humidity: Optional[int] = None
    wind_speed: Optional[float] = None

    @classmethod
    def from_accuweather(cls, item: dict) -> "HourlyPayload":
        return cls(
            date_time=item["DateTime"],
            temperature=item["Temperature"]["Value"],
            icon_phrase=item.get("IconPhrase"),
            weather_icon=item.get("WeatherIcon"),
            precipitation_probability=item.get("PrecipitationProbability"),
            relative_humidity=item.get("RelativeHumidity"),
            wind_speed=(item.get("Wind") or {}).get("Speed", {}).get("Value"),
        )

    def to_point(self) -> ForecastPoint:
        return ForecastPoint(
            granularity="hourly",
            forecast_at=normalize_timestamp(self.date_time),
            temperature=self.temperature,
            precipitation_probability=self.precipitation_probability,
            humidity=self.relative_humidity,
            wind_speed=self.wind_speed,
            condition_code=self.weather_icon,
            conditions=self.icon_phrase,
        )


class DailyPayload(BaseModel):
    kind: Literal["daily"] = "daily"
    date: str
    minimum: float
    maximum: float
    day_icon_phrase: Optional[str] = None
    day_icon: Optional[int] = None
    day_precipitation_probability: Optional[int] = None

    @classmethod
    def from_accuweather(cls, item: dict) -> "DailyPayload":
        day = item.get("Day") or {}
        return cls(
            date=item["Date"],
            minimum=item["Temperature"]["Minimum"]["Value"],
            maximum=item["Temperature"]["Maximum"]["Value"],
            day_icon_phrase=day.get("IconPhrase"),
            day_icon=day.get("Icon"),
            day_precipitation_probability=day.get("PrecipitationProbability"),
        )

    def to_point(self) -> ForecastPoint:
        # 일별 예보는 날짜 단위로 저장 (시각 정보 버림)
        day = normalize_timestamp(self.date).replace(hour=0, minute=0, second=0, microsecond=0)
        return ForecastPoint(
            granularity="daily",
            forecast_at=day,
            temperature=round((self.minimum + self.maximum) / 2, 1),
            high_temp=self.maximum,
            low_temp=self.minimum,
            precipitation_probability=self.day_precipitation_probability,
            condition_code=self.day_icon,
            conditions=self.day_icon_phrase,
        )


class CurrentPayload(BaseModel):
    kind: Literal["current"] = "current"
    observed_at: str
    temperature: float
    weather_text: Optional[str] = None
    weather_icon: Optional[int] = None
    relative_humidity: Optional[int] = None
    wind_speed: Optional[float] = None

    @classmethod
    def from_accuweather(cls, item: dict) -> "CurrentPayload":
        wind = (item.get("Wind") or {}).get("Speed", {}).get("Metric", {})
        return cls(
            observed_at=item["LocalObservationDateTime"],
            temperature=item["Temperature"]["Metric"]["Value"],
            weather_text=item.get("WeatherText"),
            weather_icon=item.get("WeatherIcon"),
            relative_humidity=item.get("RelativeHumidity"),
            wind_speed=wind.get("Value"),
        )

    def to_point(self) -> ForecastPoint:
        return ForecastPoint(
            granularity="current",
            forecast_at=normalize_timestamp(self.observed_at),
            temperature=self.temperature,
            humidity=self.relative_humidity,
            wind_speed=self.wind_speed,
            condition_code=self.weather_icon,
            conditions=self.weather_text,
        )


WeatherPayload = Union[HourlyPayload, DailyPayload, CurrentPayload]


# ==========================================
# API 요청 / 응답
# ==========================================
class ForecastResponse(BaseModel):
    location: str
    granularity: str
    # fresh: 캐시/실시간 정상, stale: 만료된 마지막 값, unavailable: 데이터 없음
    status: Literal["fresh", "stale", "unavailable"]
    source: Optional[str] = None  # memory | persistent | live | stale
    forecasts: List[ForecastPoint] = Field(default_factory=list)
    message: Optional[str] = None


class UserLocationCreate(BaseModel):
    user_id: str
    location_name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
