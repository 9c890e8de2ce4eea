# tests/fakes.py

from __future__ import annotations

import fnmatch
from collections.abc import AsyncIterator

from redis.exceptions import ConnectionError as RedisConnectionError


class FakeRedis:
    """
    In-memory stand-in for the handful of redis.asyncio calls the cache uses.

    - Records the TTL (px) of every write
    - Counts reads that found a value
    """

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.hits = 0

    async def get(self, key: str) -> str | None:
        value = self.store.get(key)
        if value is not None:
            self.hits += 1
        return value

    async def set(self, key: str, value: str, px: int | None = None) -> bool:
        self.store[key] = value
        self.ttls[key] = px
        return True

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                self.ttls.pop(key, None)
                deleted += 1
        return deleted

    async def scan_iter(self, match: str = "*", count: int | None = None) -> AsyncIterator[str]:
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key


class BrokenRedis:
    """Redis client whose every call fails as if the server were down."""

    async def get(self, key: str) -> str | None:
        raise RedisConnectionError("redis is down")

    async def set(self, key: str, value: str, px: int | None = None) -> bool:
        raise RedisConnectionError("redis is down")

    async def delete(self, *keys: str) -> int:
        raise RedisConnectionError("redis is down")

    async def scan_iter(self, match: str = "*", count: int | None = None) -> AsyncIterator[str]:
        raise RedisConnectionError("redis is down")
        yield ""  # pragma: no cover
