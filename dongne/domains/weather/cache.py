# dongne/domains/weather/cache.py

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from dongne.core.config import settings
from dongne.core.exceptions import PersistenceFailure
from dongne.core.logger import log_event
from dongne.utils.location import slugify_location

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheKey:
    kind: str                          # hourly | daily | current | location
    location: str
    granularity: Optional[str] = None
    user_id: Optional[str] = None

    def render(self) -> str:
        parts = [self.kind, slugify_location(self.location)]
        if self.granularity:
            parts.append(self.granularity)
        parts.append(f"u:{self.user_id}" if self.user_id else "shared")
        return ":".join(parts)


@dataclass(frozen=True)
class CacheTTL:
    memory_seconds: float
    persistent_seconds: float


def ttl_for(kind: str) -> CacheTTL:
    """데이터 종류별 TTL (변동이 큰 데이터일수록 짧게)"""
    minutes = {
        "hourly": (settings.HOURLY_MEMORY_TTL_MINUTES, settings.HOURLY_PERSISTENT_TTL_MINUTES),
        "daily": (settings.DAILY_MEMORY_TTL_MINUTES, settings.DAILY_PERSISTENT_TTL_MINUTES),
        "current": (settings.CURRENT_MEMORY_TTL_MINUTES, settings.CURRENT_PERSISTENT_TTL_MINUTES),
        "location": (settings.LOCATION_MEMORY_TTL_MINUTES, settings.LOCATION_PERSISTENT_TTL_MINUTES),
    }
    memory, persistent = minutes.get(kind, minutes["hourly"])
    return CacheTTL(memory_seconds=memory * 60, persistent_seconds=persistent * 60)


class MemoryTier:
    """
    프로세스 로컬 메모리 계층
    만료된 항목도 cleanup 전까지는 남겨둡니다. (get_stale 용)
    """

    def __init__(self):
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def get(self, key: str, now: float):
        entry = self._entries.get(key)
        if entry is None or entry[1] <= now:
            return None
        return entry[0]

    def get_any(self, key: str):
        entry = self._entries.get(key)
        return entry[0] if entry else None

    def set(self, key: str, value: Any, expires_at: float):
        self._entries[key] = (value, expires_at)

    def delete(self, key: str):
        self._entries.pop(key, None)

    def clear(self):
        self._entries.clear()

    def purge_expired(self, now: float) -> int:
        expired = [k for k, (_, exp) in self._entries.items() if exp <= now]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def __len__(self):
        return len(self._entries)


class TwoTierWeatherCache:
    """
    메모리(분 단위) + DB(시간/일 단위) 2단계 캐시

    조회 순서: 메모리 -> DB -> miss
    - DB hit 은 메모리에 다시 채워 넣습니다.
    - 같은 키의 동시 miss 는 하나의 업스트림 호출로 합칩니다. (get_or_fetch)
    - DB 계층 장애는 로그만 남기고 메모리 전용으로 동작하며, 호출자에게 예외를 던지지 않습니다.
    """

    def __init__(self, repository=None, clock: Callable[[], float] = time.time):
        self.repository = repository
        self._clock = clock
        self._memory = MemoryTier()
        self._inflight: Dict[str, asyncio.Future] = {}
        self._stats = {
            "memory_hits": 0,
            "persistent_hits": 0,
            "misses": 0,
            "fetches": 0,
            "coalesced": 0,
            "persistent_errors": 0,
        }

    # ==========================================
    # 기본 연산
    # ==========================================
    async def get(self, key: CacheKey):
        rendered = key.render()
        now = self._clock()

        value = self._memory.get(rendered, now)
        if value is not None:
            self._stats["memory_hits"] += 1
            log_event(logger, "CACHE_HIT", level=logging.DEBUG, key=rendered, tier="memory")
            return value

        row = await self._read_persistent(rendered)
        if row is not None:
            payload, expires_at = row
            if expires_at > now:
                value = self._decode(rendered, payload)
                if value is not None:
                    memory_ttl = ttl_for(key.kind).memory_seconds
                    self._memory.set(rendered, value, min(now + memory_ttl, expires_at))
                    self._stats["persistent_hits"] += 1
                    log_event(logger, "CACHE_HIT", level=logging.DEBUG, key=rendered, tier="persistent")
                    return value

        self._stats["misses"] += 1
        log_event(logger, "CACHE_MISS", level=logging.DEBUG, key=rendered)
        return None

    async def set(self, key: CacheKey, value: Any, ttl: Optional[CacheTTL] = None):
        ttl = ttl or ttl_for(key.kind)
        rendered = key.render()
        now = self._clock()

        self._memory.set(rendered, value, now + ttl.memory_seconds)

        if self.repository is None:
            return
        try:
            payload = json.dumps(value, ensure_ascii=False, default=str)
            await self.repository.set(rendered, key.kind, payload, now + ttl.persistent_seconds)
        except PersistenceFailure as e:
            self._persistent_failed("set", rendered, e)

    async def invalidate(self, key: CacheKey):
        rendered = key.render()
        self._memory.delete(rendered)
        if self.repository is None:
            return
        try:
            await self.repository.delete(rendered)
        except PersistenceFailure as e:
            self._persistent_failed("invalidate", rendered, e)

    async def clear(self):
        self._memory.clear()
        if self.repository is None:
            return
        try:
            await self.repository.clear()
        except PersistenceFailure as e:
            self._persistent_failed("clear", "*", e)

    def get_stats(self) -> dict:
        hits = self._stats["memory_hits"] + self._stats["persistent_hits"]
        lookups = hits + self._stats["misses"]
        return {
            **self._stats,
            "memory_entries": len(self._memory),
            "inflight": len(self._inflight),
            "hit_rate": round(hits / lookups, 3) if lookups else 0.0,
        }

    # ==========================================
    # 확장 연산
    # ==========================================
    async def get_or_fetch(
        self,
        key: CacheKey,
        fetcher: Callable[[], Awaitable[Any]],
        ttl: Optional[CacheTTL] = None,
    ):
        """
        캐시 조회 후 miss 면 fetcher 를 한 번만 실행합니다.
        같은 키로 동시에 들어온 호출은 먼저 시작된 fetch 결과를 함께 기다립니다.
        fetch 실패는 캐시하지 않고, 기다리던 모든 호출자에게 같은 예외가 전달됩니다.
        """
        rendered = key.render()
        task = self._inflight.get(rendered)

        if task is None:
            value = await self.get(key)
            if value is not None:
                return value

            # get() 을 기다리는 사이 다른 호출이 fetch 를 시작했거나 끝냈을 수 있음
            task = self._inflight.get(rendered)
            if task is None:
                value = self._memory.get(rendered, self._clock())
                if value is not None:
                    return value
                task = asyncio.ensure_future(self._fill(key, fetcher, ttl))
                self._inflight[rendered] = task
                task.add_done_callback(lambda t, k=rendered: self._forget(k, t))
            else:
                self._stats["coalesced"] += 1
        else:
            self._stats["coalesced"] += 1

        return await asyncio.shield(task)

    async def get_stale(self, key: CacheKey):
        """만료 여부와 관계없이 마지막으로 저장된 값 (업스트림 장애 시 대체용)"""
        rendered = key.render()
        value = self._memory.get_any(rendered)
        if value is not None:
            return value
        row = await self._read_persistent(rendered)
        if row is None:
            return None
        return self._decode(rendered, row[0])

    async def cleanup_expired(self) -> dict:
        now = self._clock()
        memory_removed = self._memory.purge_expired(now)
        persistent_removed = 0
        if self.repository is not None:
            try:
                persistent_removed = await self.repository.delete_expired(now)
            except PersistenceFailure as e:
                self._persistent_failed("cleanup", "*", e)
        log_event(logger, "CACHE_CLEANUP", memory_removed=memory_removed, persistent_removed=persistent_removed)
        return {"memory_removed": memory_removed, "persistent_removed": persistent_removed}

    # ==========================================
    # 내부 헬퍼
    # ==========================================
    async def _fill(self, key: CacheKey, fetcher, ttl: Optional[CacheTTL]):
        rendered = key.render()
        self._stats["fetches"] += 1
        try:
            value = await fetcher()
        except Exception as e:
            log_event(logger, "CACHE_FETCH_FAILED", level=logging.WARNING, key=rendered, error=type(e).__name__)
            raise
        if value is not None:
            await self.set(key, value, ttl)
        return value

    def _forget(self, rendered: str, task: asyncio.Future):
        if self._inflight.get(rendered) is task:
            del self._inflight[rendered]

    async def _read_persistent(self, rendered: str):
        if self.repository is None:
            return None
        try:
            return await self.repository.get(rendered)
        except PersistenceFailure as e:
            self._persistent_failed("get", rendered, e)
            return None

    def _decode(self, rendered: str, payload: str):
        try:
            return json.loads(payload)
        except ValueError:
            log_event(logger, "CACHE_PAYLOAD_INVALID", level=logging.WARNING, key=rendered)
            return None

    def _persistent_failed(self, op: str, rendered: str, error: Exception):
        self._stats["persistent_errors"] += 1
        log_event(logger, "CACHE_PERSISTENT_DEGRADED", level=logging.WARNING, op=op, key=rendered, error=str(error))
