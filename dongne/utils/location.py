# dongne/utils/location.py

import re
from typing import Optional

# 주요 도시 목록 (AccuWeather geoposition 검색용 위경도)
MAJOR_CITIES = [
  { "name": "서울", "lat": 37.5665, "lon": 126.9780 },
  { "name": "인천", "lat": 37.4563, "lon": 126.7052 },
  { "name": "수원", "lat": 37.2636, "lon": 127.0286 },
  { "name": "춘천", "lat": 37.8813, "lon": 127.7298 },
  { "name": "강릉", "lat": 37.7519, "lon": 128.8761 },
  { "name": "대전", "lat": 36.3504, "lon": 127.3845 },
  { "name": "청주", "lat": 36.6424, "lon": 127.4890 },
  { "name": "광주", "lat": 35.1595, "lon": 126.8526 },
  { "name": "전주", "lat": 35.8242, "lon": 127.1480 },
  { "name": "대구", "lat": 35.8714, "lon": 128.6014 },
  { "name": "울산", "lat": 35.5384, "lon": 129.3114 },
  { "name": "부산", "lat": 35.1796, "lon": 129.0756 },
  { "name": "세종", "lat": 36.4800, "lon": 127.2890 },
  { "name": "제주", "lat": 33.4996, "lon": 126.5312 }
]

# 질문에서 지역명을 뽑을 때 쓰는 목록 (광역 + 자주 묻는 구/시)
LOCATION_KEYWORDS = [city["name"] for city in MAJOR_CITIES] + [
    "경기", "강원", "충북", "충남", "전북", "전남", "경북", "경남",
    "강남", "강북", "송파", "마포", "영등포", "용산", "종로",
    "운정", "일산", "파주", "고양", "성남", "안양", "부천"
]

_COORD_PATTERN = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")
_SLUG_PATTERN = re.compile(r"[^\w]+", re.UNICODE)


def find_city(name: str) -> Optional[dict]:
    """도시명(예: '서울', '서울시', '서울특별시')으로 MAJOR_CITIES 항목을 찾습니다."""
    if not name:
        return None
    name = name.strip()
    for city in MAJOR_CITIES:
        if name == city["name"] or name.startswith(city["name"]):
            return city
    return None


def parse_coordinates(text: str):
    """'37.56,126.97' 형태면 (lat, lon), 아니면 None"""
    match = _COORD_PATTERN.match(text or "")
    if not match:
        return None
    return float(match.group(1)), float(match.group(2))


def extract_location(message: str) -> Optional[str]:
    for location in LOCATION_KEYWORDS:
        if location in message:
            return location
    return None


def slugify_location(name: str) -> str:
    """캐시 키용 지역명 정규화 ('서울 강남구' -> '서울-강남구', 좌표는 부호 유지)"""
    coordinates = parse_coordinates(name)
    if coordinates:
        return f"{coordinates[0]:+.4f},{coordinates[1]:+.4f}"
    slug = _SLUG_PATTERN.sub("-", (name or "").strip().lower()).strip("-")
    return slug or "unknown"
