from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple

from jobgate.logging import get_logger
from jobgate.storage.redis_cache import RedisCache

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_seconds: int


class RateLimiter(Protocol):
    capacity: int
    window_seconds: float

    async def check(self, key: str) -> RateLimitDecision: ...

    async def allow(self, key: str) -> bool: ...


class InMemoryRateLimiter:
    """Per-process token bucket: ``capacity`` requests per ``window_seconds``.

    A capacity of zero disables limiting.
    """

    def __init__(
        self,
        capacity: int,
        window_seconds: float = 60.0,
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.capacity = capacity
        self.window_seconds = window_seconds if window_seconds > 0 else 60.0
        self._clock = clock or time.monotonic
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._lock = asyncio.Lock()
        self._last_purge = self._clock()

    def _purge_idle(self, now: float) -> None:
        # A bucket untouched for a full window has refilled; dropping it is lossless
        if now - self._last_purge < self.window_seconds:
            return
        self._last_purge = now
        for key, (_, last_ts) in list(self._buckets.items()):
            if now - last_ts >= self.window_seconds:
                self._buckets.pop(key, None)

    async def check(self, key: str) -> RateLimitDecision:
        if self.capacity <= 0:
            return RateLimitDecision(True, 0, 0)
        refill_rate = float(self.capacity) / float(self.window_seconds)
        now = self._clock()
        async with self._lock:
            self._purge_idle(now)
            tokens, last_ts = self._buckets.get(key, (float(self.capacity), now))
            elapsed = max(0.0, now - last_ts)
            tokens = min(float(self.capacity), tokens + elapsed * refill_rate)
            allowed = tokens >= 1
            if allowed:
                tokens -= 1
            self._buckets[key] = (tokens, now)
        reset_seconds = 0 if allowed else max(1, int((1 - tokens) / refill_rate + 0.999))
        return RateLimitDecision(allowed, int(tokens), reset_seconds)

    async def allow(self, key: str) -> bool:
        return (await self.check(key)).allowed


class RedisRateLimiter:
    """Token bucket shared by every worker through a Redis Lua script."""

    def __init__(self, cache: RedisCache, capacity: int, window_seconds: float = 60.0) -> None:
        self.cache = cache
        self.capacity = capacity
        self.window_seconds = window_seconds if window_seconds > 0 else 60.0

    async def check(self, key: str) -> RateLimitDecision:
        if self.capacity <= 0:
            return RateLimitDecision(True, 0, 0)
        allowed, remaining, reset_after = await self.cache.take_token(
            key, self.capacity, self.window_seconds
        )
        return RateLimitDecision(allowed, remaining, reset_after)

    async def allow(self, key: str) -> bool:
        return (await self.check(key)).allowed


def build_rate_limiter(
    capacity: int, window_seconds: float = 60.0, *, cache: Optional[RedisCache] = None
) -> RateLimiter:
    if cache is not None:
        return RedisRateLimiter(cache, capacity, window_seconds)
    return InMemoryRateLimiter(capacity, window_seconds)
