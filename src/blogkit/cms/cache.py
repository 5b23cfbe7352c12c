"""Keyed read cache backed by Redis.

Caching is an optimization only. With no Redis configured, or with Redis
unreachable, every read goes straight to the backend.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

DEFAULT_TTL_SECONDS = 300


class ReadCache:
    """JSON-serialized pydantic models stored under string keys with a TTL."""

    def __init__(self, redis: Redis, ttl: int = DEFAULT_TTL_SECONDS) -> None:
        self._redis = redis
        self._ttl = ttl

    @classmethod
    def from_url(cls, url: str, ttl: int = DEFAULT_TTL_SECONDS) -> ReadCache:
        return cls(Redis.from_url(url, decode_responses=True), ttl=ttl)

    async def get_or_set(
        self,
        key: str,
        model: type[M],
        loader: Callable[[], Awaitable[M | None]],
    ) -> M | None:
        """Return the cached value for ``key`` or load, store and return it.

        ``None`` results are not stored. An entry that no longer matches
        ``model`` is reloaded and overwritten.
        """
        try:
            raw = await self._redis.get(key)
        except RedisError:
            logger.warning("Cache read failed for %s, reading from backend", key, exc_info=True)
            return await loader()

        if raw:
            try:
                return model.model_validate_json(raw)
            except ValidationError:
                logger.warning("Discarding unreadable cache entry %s", key, exc_info=True)

        value = await loader()
        if value is not None:
            try:
                await self._redis.set(key, value.model_dump_json(), ex=self._ttl)
            except RedisError:
                logger.warning("Cache write failed for %s", key, exc_info=True)
        return value

    async def invalidate(self, *keys: str, patterns: tuple[str, ...] = ()) -> None:
        """Delete exact keys and every key matching the glob ``patterns``."""
        try:
            doomed = list(keys)
            for pattern in patterns:
                doomed.extend([k async for k in self._redis.scan_iter(match=pattern)])
            if doomed:
                await self._redis.delete(*doomed)
                logger.debug("Invalidated %d cache keys", len(doomed))
        except RedisError:
            logger.warning("Cache invalidation failed", exc_info=True)

    async def aclose(self) -> None:
        await self._redis.aclose()


async def cached(
    cache: ReadCache | None,
    key: str,
    model: type[M],
    loader: Callable[[], Awaitable[M | None]],
) -> M | None:
    """Read through ``cache`` when there is one, else call ``loader`` directly."""
    if cache is None:
        return await loader()
    return await cache.get_or_set(key, model, loader)
