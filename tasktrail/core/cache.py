"""
Redis-backed cache store for paginated reads.

Thin adapter: values are JSON documents, TTLs are in milliseconds and
pattern lookups use SCAN so large keyspaces never block Redis.
Errors are raised to the caller (RedisError, ValueError); deciding whether
a cache failure matters is the caller's job.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis


class RedisCache:
    """JSON get/set/delete/keys over an async Redis client."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    async def get(self, key: str) -> Any | None:
        raw = await self.redis.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_ms: int) -> None:
        data = json.dumps(value, default=str)
        await self.redis.set(key, data, px=ttl_ms)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self.redis.delete(*keys)

    async def keys(self, pattern: str) -> list[str]:
        """Return every key matching a glob pattern such as ``paginate:task:*``."""
        return [key async for key in self.redis.scan_iter(match=pattern, count=100)]
