"""
Paginated, cached reads over a named collection.

A filter is a plain mapping (``{"task_id": ..., "created_at": {"gte": ...}}``)
so it can be canonicalized into a cache key. Count and page fetch run
concurrently on separate sessions. The cache is an optimisation only:
any cache failure is logged and the read goes to the database.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import operator
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from fastapi.encoders import jsonable_encoder
from redis.exceptions import RedisError
from sqlalchemy import func, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from tasktrail.core.cache import RedisCache
from tasktrail.core.config import settings
from tasktrail.models.activity import Activity
from tasktrail.models.base import Base
from tasktrail.models.task import Task

logger = logging.getLogger(__name__)

COLLECTIONS: dict[str, type[Base]] = {
    "activity": Activity,
    "task": Task,
}

_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "gte": operator.ge,
    "lte": operator.le,
    "gt": operator.gt,
    "lt": operator.lt,
    "in": lambda column, value: column.in_(value),
    "contains": lambda column, value: column.ilike(f"%{value}%"),
}

_CACHE_ERRORS = (RedisError, ValueError, TypeError)


def _canonical(value: Any) -> str:
    """Serialize with sorted keys so equal filters always give equal strings."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _row_to_dict(row: Base, include: Sequence[str] = ()) -> dict[str, Any]:
    mapper = inspect(row).mapper
    data: dict[str, Any] = {attr.key: getattr(row, attr.key) for attr in mapper.column_attrs}
    for name in include:
        value = getattr(row, name)
        if value is None:
            data[name] = None
        elif isinstance(value, list):
            data[name] = [_row_to_dict(item) for item in value]
        else:
            data[name] = _row_to_dict(value)
    return data


class PaginationService:
    """Offset pagination with a short-lived Redis cache in front of it."""

    DEFAULT_CACHE_PREFIX = "paginate"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: RedisCache,
        default_limit: int | None = None,
        max_limit: int | None = None,
        cache_ttl_ms: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.cache = cache
        self.default_limit = default_limit or settings.PAGINATION_DEFAULT_LIMIT
        self.max_limit = max_limit or settings.PAGINATION_MAX_LIMIT
        self.cache_ttl_ms = cache_ttl_ms or settings.PAGINATION_CACHE_TTL_MS

    # -----------------------------------------------------------------------
    # Paginate
    # -----------------------------------------------------------------------

    async def paginate(
        self,
        collection: str,
        *,
        where: Mapping[str, Any] | None = None,
        include: Sequence[str] | None = None,
        order_by: Mapping[str, str] | Sequence[Mapping[str, str]] | None = None,
        page: int | None = None,
        limit: int | None = None,
        cache_key_prefix: str | None = None,
    ) -> dict[str, Any]:
        """
        Return ``{"data": [...], "meta": {...}}`` for one page of a collection.

        Rows are JSON-safe dicts (columns plus the ``include`` relationships),
        identical whether they come from the cache or the database.

        Raises:
            ValueError: Unknown collection, column or relationship.
            SQLAlchemyError: The count or fetch failed.
        """
        model = self._get_model(collection)
        where = dict(where or {})
        include = list(include or [])
        take, skip, page = self.calculate_pagination(page, limit)

        criteria = self._build_criteria(model, where)
        ordering = self._build_ordering(model, order_by)
        self._check_include(model, include)

        cache_key = self.generate_cache_key(
            collection, where, order_by, take, page, cache_key_prefix
        )

        cached = await self._get_from_cache(cache_key)
        if cached is not None:
            logger.debug("Page cache hit: %s", cache_key)
            return self._format_response(cached, page, take)

        data, total = await asyncio.gather(
            self._fetch(model, criteria, ordering, include, take, skip),
            self._count(model, criteria),
        )
        result = {"data": data, "total": total}

        await self._set_cache(cache_key, result)

        return self._format_response(result, page, take)

    def calculate_pagination(
        self, page: int | None, limit: int | None
    ) -> tuple[int, int, int]:
        """Return ``(take, skip, page)``; ``limit`` is clamped, never rejected."""
        take = min(limit or self.default_limit, self.max_limit)
        page = page or 1
        skip = (page - 1) * take
        return take, skip, page

    def generate_cache_key(
        self,
        collection: str,
        where: Mapping[str, Any] | None,
        order_by: Any,
        limit: int,
        page: int,
        cache_key_prefix: str | None = None,
    ) -> str:
        return ":".join(
            [
                cache_key_prefix or self.DEFAULT_CACHE_PREFIX,
                collection,
                _canonical(dict(where or {})),
                _canonical(order_by) if order_by else "",
                f"limit={limit}",
                f"page={page}",
            ]
        )

    # -----------------------------------------------------------------------
    # Invalidation
    # -----------------------------------------------------------------------

    async def clear_cache_for_model(
        self, collection: str, cache_key_prefix: str | None = None
    ) -> int:
        """
        Drop every cached page of a collection, whatever its filter.

        Returns the number of keys deleted (0 if the cache is unreachable).
        """
        pattern = f"{cache_key_prefix or self.DEFAULT_CACHE_PREFIX}:{collection}:*"
        try:
            keys = await self.cache.keys(pattern)
            deleted = await self.cache.delete(*keys)
        except _CACHE_ERRORS as exc:
            logger.warning("Cache clear error for %s: %s", pattern, exc)
            return 0
        logger.info("Cleared %d cached pages for %s", deleted, collection)
        return deleted

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _fetch(
        self,
        model: type[Base],
        criteria: list[Any],
        ordering: list[Any],
        include: list[str],
        take: int,
        skip: int,
    ) -> list[dict[str, Any]]:
        stmt = select(model).where(*criteria).order_by(*ordering).offset(skip).limit(take)
        for name in include:
            stmt = stmt.options(selectinload(getattr(model, name)))

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
            return [jsonable_encoder(_row_to_dict(row, include)) for row in rows]

    async def _count(self, model: type[Base], criteria: list[Any]) -> int:
        stmt = select(func.count()).select_from(model).where(*criteria)
        async with self.session_factory() as session:
            return (await session.execute(stmt)).scalar_one()

    async def _get_from_cache(self, cache_key: str) -> dict[str, Any] | None:
        try:
            cached = await self.cache.get(cache_key)
        except _CACHE_ERRORS as exc:
            logger.warning("Cache get error for %s: %s", cache_key, exc)
            return None
        if not isinstance(cached, dict) or "data" not in cached or "total" not in cached:
            return None
        return cached

    async def _set_cache(self, cache_key: str, value: dict[str, Any]) -> None:
        try:
            await self.cache.set(cache_key, value, self.cache_ttl_ms)
        except _CACHE_ERRORS as exc:
            logger.warning("Cache set error for %s: %s", cache_key, exc)

    @staticmethod
    def _format_response(result: Mapping[str, Any], page: int, take: int) -> dict[str, Any]:
        total = result["total"]
        return {
            "data": result["data"],
            "meta": {
                "total": total,
                "page": page,
                "per_page": take,
                "total_pages": math.ceil(total / take),
            },
        }

    @staticmethod
    def _get_model(collection: str) -> type[Base]:
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection!r}") from None

    @staticmethod
    def _column(model: type[Base], name: str) -> Any:
        columns = inspect(model).columns
        if name not in columns:
            raise ValueError(f"Unknown column {name!r} on {model.__name__}")
        return getattr(model, name)

    def _build_criteria(self, model: type[Base], where: Mapping[str, Any]) -> list[Any]:
        criteria: list[Any] = []
        for name, value in where.items():
            column = self._column(model, name)
            if isinstance(value, Mapping):
                for op, operand in value.items():
                    if op not in _OPERATORS:
                        raise ValueError(f"Unknown filter operator {op!r} on {name!r}")
                    criteria.append(_OPERATORS[op](column, operand))
            elif value is None:
                criteria.append(column.is_(None))
            else:
                criteria.append(column == value)
        return criteria

    def _build_ordering(self, model: type[Base], order_by: Any) -> list[Any]:
        if not order_by:
            return []
        specs = [order_by] if isinstance(order_by, Mapping) else list(order_by)
        ordering: list[Any] = []
        for spec in specs:
            for name, direction in spec.items():
                column = self._column(model, name)
                if direction not in ("asc", "desc"):
                    raise ValueError(f"Unknown sort direction {direction!r} on {name!r}")
                ordering.append(column.desc() if direction == "desc" else column.asc())
        return ordering

    @staticmethod
    def _check_include(model: type[Base], include: Sequence[str]) -> None:
        relationships = inspect(model).relationships
        for name in include:
            if name not in relationships:
                raise ValueError(f"Unknown relationship {name!r} on {model.__name__}")
