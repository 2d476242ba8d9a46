# dongne/domains/weather/ingest.py

"""
수집 경계 변환
업스트림 Payload -> ForecastPoint(KST) -> ForecastRecord / WeatherFact
"""

from typing import Iterable, List, Optional

from dongne.domains.search.vector_store import WeatherFact
from dongne.domains.weather.models import ForecastRecord
from dongne.domains.weather.schemas import ForecastPoint, WeatherPayload


def to_points(payloads: Iterable[WeatherPayload]) -> List[ForecastPoint]:
    return [payload.to_point() for payload in payloads]


def to_records(
    points: Iterable[ForecastPoint],
    location_key: str,
    location_name: str,
    user_id: Optional[str] = None,
) -> List[ForecastRecord]:
    return [
        ForecastRecord(
            user_id=user_id,
            location_key=location_key,
            location_name=location_name,
            granularity=point.granularity,
            forecast_at=point.forecast_at,
            temperature=point.temperature,
            high_temp=point.high_temp,
            low_temp=point.low_temp,
            precipitation_probability=point.precipitation_probability,
            humidity=point.humidity,
            wind_speed=point.wind_speed,
            condition_code=point.condition_code,
            conditions=point.conditions,
        )
        for point in points
    ]


def to_fact(point: ForecastPoint, location_name: str, user_id: Optional[str] = None) -> WeatherFact:
    return WeatherFact(
        content_type=point.granularity,
        location_name=location_name,
        forecast_date=point.forecast_at.date(),
        forecast_hour=None if point.granularity == "daily" else point.forecast_at.hour,
        user_id=user_id,
        temperature=point.temperature,
        high_temp=point.high_temp,
        low_temp=point.low_temp,
        conditions=point.conditions,
        precipitation_probability=point.precipitation_probability,
        humidity=point.humidity,
        wind_speed=point.wind_speed,
    )


def to_facts(points: Iterable[ForecastPoint], location_name: str, user_id: Optional[str] = None) -> List[WeatherFact]:
    return [to_fact(point, location_name, user_id) for point in points]
