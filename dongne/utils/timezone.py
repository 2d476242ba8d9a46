# dongne/utils/timezone.py

from datetime import datetime, date
from typing import Union
import pytz

KST = pytz.timezone("Asia/Seoul")


def normalize_timestamp(value: Union[datetime, str]) -> datetime:
    """
    모든 시간 값을 KST 기준 naive datetime으로 변환합니다.
    수집 경계(클라이언트 응답 -> ForecastRecord)에서 반드시 이 함수를 거칩니다.

    - "2025-09-28T14:00:00+09:00" 같은 ISO 문자열 허용
    - timezone 정보가 있으면 KST로 변환
    - timezone 정보가 없으면 UTC로 간주
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))

    if value.tzinfo is None:
        value = pytz.utc.localize(value)

    return value.astimezone(KST).replace(tzinfo=None)


def now_kst() -> datetime:
    return normalize_timestamp(datetime.now(pytz.utc))


def today_kst() -> date:
    return now_kst().date()
