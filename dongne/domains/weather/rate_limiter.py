# dongne/domains/weather/rate_limiter.py

import time
from collections import deque
from datetime import datetime, timedelta
from typing import Callable


class RateLimiter:
    """
    슬라이딩 윈도우 호출 제한기 (프로세스 로컬)
    - 만료된 기록은 접근할 때 정리 (타이머 스레드 없음)
    - 업스트림을 직접 호출하지 않고, 예외도 던지지 않습니다.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float = 3600,
        clock: Callable[[], float] = time.time,
        name: str = "accuweather",
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._events = deque()

    def _cleanup(self, now: float):
        while self._events and now - self._events[0] >= self.window_seconds:
            self._events.popleft()

    def can_make_request(self) -> bool:
        self._cleanup(self._clock())
        return len(self._events) < self.limit

    def record_request(self):
        now = self._clock()
        self._cleanup(now)
        self._events.append(now)

    def get_wait_time(self) -> timedelta:
        """한도에 걸려 있으면 가장 오래된 기록이 윈도우를 벗어날 때까지 남은 시간"""
        now = self._clock()
        self._cleanup(now)
        if self.limit <= 0:
            # 한도 0 이면 윈도우가 지나도 자리가 생기지 않음
            return timedelta(seconds=self.window_seconds)
        if len(self._events) < self.limit:
            return timedelta(0)
        # 한도를 넘게 기록된 경우(관리자 조작 등) 초과분까지 빠져야 자리가 남
        blocking = self._events[len(self._events) - self.limit]
        return timedelta(seconds=max(0.0, self.window_seconds - (now - blocking)))

    def reset(self):
        self._events.clear()

    def get_stats(self) -> dict:
        now = self._clock()
        self._cleanup(now)
        window_start = self._events[0] if self._events else now
        return {
            "name": self.name,
            "used": len(self._events),
            "limit": self.limit,
            "remaining": max(0, self.limit - len(self._events)),
            "window_start": datetime.fromtimestamp(window_start).isoformat(),
            "wait_seconds": self.get_wait_time().total_seconds(),
        }
