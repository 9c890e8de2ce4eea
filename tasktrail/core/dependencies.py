"""
FastAPI dependency injection functions.

Provides Redis connections, the acting user and the shared page reader.
"""

from __future__ import annotations

from uuid import UUID

import redis.asyncio as aioredis
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from tasktrail.core.cache import RedisCache
from tasktrail.core.config import settings
from tasktrail.core.database import AsyncSessionLocal
from tasktrail.core.security import decode_access_token
from tasktrail.services.pagination_service import PaginationService

# ---------------------------------------------------------------------------
# HTTP Bearer scheme (auto_error=False: a missing token means "system user")
# ---------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    """
    Return a shared async Redis client.

    Uses a module-level pool so connections are reused across requests.
    """
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            str(settings.REDIS_URL),
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None


# ---------------------------------------------------------------------------
# Acting user
# ---------------------------------------------------------------------------

async def get_actor_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UUID | None:
    """
    Return the user id carried by the Bearer JWT, or None without a token.

    Raises 401 if a token is present but invalid, expired or malformed.
    Whether the user still exists is checked by the service that acts.
    """
    if credentials is None:
        return None

    try:
        payload = decode_access_token(credentials.credentials)
        return UUID(payload.get("sub", ""))
    except (JWTError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "INVALID_TOKEN", "message": "Token is invalid or expired"},
            headers={"WWW-Authenticate": "Bearer"},
        )


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

async def get_pagination_service(
    redis: aioredis.Redis = Depends(get_redis),
) -> PaginationService:
    return PaginationService(session_factory=AsyncSessionLocal, cache=RedisCache(redis))
