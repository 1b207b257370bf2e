from __future__ import annotations

import hashlib
import json
import time
from datetime import datetime, timezone
from typing import Optional, Tuple

import redis.asyncio as aioredis
from redis import Redis


class RedisCache:
    """Redis wrapper for shared rate-limit buckets and OAuth state."""

    # Atomic refill + consume so concurrent workers share one bucket
    _TOKEN_BUCKET_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local refill_rate = tonumber(ARGV[2])
local capacity = tonumber(ARGV[3])
local cost = tonumber(ARGV[4])

local data = redis.call('HMGET', key, 'tokens', 'ts')
local tokens = tonumber(data[1])
local last = tonumber(data[2])

if tokens == nil or last == nil then
  tokens = capacity
  last = now
end

local delta = math.max(0, now - last)
tokens = math.min(capacity, tokens + delta * refill_rate)

if tokens < cost then
  redis.call('HSET', key, 'tokens', tokens, 'ts', now)
  local reset_after = math.ceil((cost - tokens) / refill_rate)
  redis.call('EXPIRE', key, math.max(reset_after, 1))
  return {0, tostring(tokens), reset_after}
end

tokens = tokens - cost
redis.call('HSET', key, 'tokens', tokens, 'ts', now)
local ttl = math.ceil(capacity / refill_rate)
redis.call('EXPIRE', key, math.max(ttl, 1))
return {1, tostring(tokens), 0}
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._token_bucket = self.client.register_script(self._TOKEN_BUCKET_SCRIPT)

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # Short-lived sync client so the async pool is not bound to a startup loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def close(self) -> None:
        await self.client.aclose()

    @staticmethod
    def _rate_key(key: str) -> str:
        digest = hashlib.sha256(key.encode()).hexdigest()
        return f"rate:{digest}"

    async def take_token(
        self, key: str, capacity: int, window_seconds: float, *, cost: int = 1
    ) -> Tuple[bool, int, int]:
        """Consume ``cost`` tokens from the shared bucket for ``key``.

        Returns ``(allowed, remaining, reset_after_seconds)``.
        """
        refill_rate = float(capacity) / float(window_seconds)
        allowed, tokens, reset_after = await self._token_bucket(
            keys=[self._rate_key(key)],
            args=[time.time(), refill_rate, capacity, max(1, cost)],
        )
        return bool(int(allowed)), max(0, int(float(tokens))), int(reset_after or 0)

    async def set_oauth_state(self, state: str, provider: str, expires_at: datetime) -> None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        ttl = max(1, int((expires_at - datetime.now(timezone.utc)).total_seconds()))
        payload = {"provider": provider, "expires_at": expires_at.isoformat()}
        await self.client.set(f"auth:oauth:{state}", json.dumps(payload), ex=ttl)

    async def pop_oauth_state(self, state: str) -> Optional[tuple[str, datetime]]:
        """Atomically read and delete an OAuth state so it cannot be replayed."""
        cached = await self.client.getdel(f"auth:oauth:{state}")
        if cached is None:
            return None
        try:
            data = json.loads(cached)
            expires_at = datetime.fromisoformat(data["expires_at"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            return None
        return data.get("provider", ""), expires_at
