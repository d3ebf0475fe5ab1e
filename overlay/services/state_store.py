"""Redis-backed JSON store shared by every invocation."""

from __future__ import annotations

import functools
import json
import logging
from typing import Any, Callable, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from overlay.core.config import get_settings
from overlay.services.errors import StoreError

logger = logging.getLogger(__name__)

# Returned by a compare_and_swap mutator to leave the key untouched.
NO_CHANGE = object()


def create_redis_client(url: Optional[str] = None) -> redis.Redis:
    settings = get_settings()
    return redis.Redis.from_url(url or settings.redis_url, decode_responses=True)


def _store_call(func):
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except RedisError as exc:
            raise StoreError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


class StateStore:
    """Typed JSON access to the shared key-value store.

    Values are stored as JSON strings. Lists are Redis lists of JSON strings.
    Every Redis failure surfaces as ``StoreError``.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, cas_retries: Optional[int] = None):
        settings = get_settings()
        self._client = redis_client or create_redis_client()
        self._cas_retries = cas_retries if cas_retries is not None else settings.cas_retries

    @property
    def client(self) -> redis.Redis:
        return self._client

    @staticmethod
    def _decode(raw: Optional[str]) -> Any:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable store value: %.80r", raw)
            return None

    @_store_call
    async def get_json(self, key: str) -> Any:
        return self._decode(await self._client.get(key))

    @_store_call
    async def get_many(self, *keys: str) -> List[Any]:
        return [self._decode(raw) for raw in await self._client.mget(list(keys))]

    @_store_call
    async def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        await self._client.set(key, json.dumps(value), ex=ttl_seconds)

    @_store_call
    async def delete(self, *keys: str) -> None:
        await self._client.delete(*keys)

    @_store_call
    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Atomically create ``key`` with an expiry. False if it already exists."""
        result = await self._client.set(key, json.dumps(value), nx=True, ex=ttl_seconds)
        return bool(result)

    async def compare_and_swap(self, key: str, mutate: Callable[[Any], Any]) -> Any:
        """Optimistically replace the value under ``key``.

        ``mutate`` receives the decoded current value (None when absent) and
        returns the new value, None to delete the key, or ``NO_CHANGE``.
        It may run several times when other writers race on the same key and
        may raise to abort the update.
        """
        for attempt in range(1, self._cas_retries + 1):
            try:
                async with self._client.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    current = self._decode(await pipe.get(key))
                    updated = mutate(current)
                    if updated is NO_CHANGE:
                        await pipe.unwatch()
                        return current
                    pipe.multi()
                    if updated is None:
                        pipe.delete(key)
                    else:
                        pipe.set(key, json.dumps(updated))
                    await pipe.execute()
                    return updated
            except WatchError:
                logger.debug("Write conflict on %s (attempt %d)", key, attempt)
            except RedisError as exc:
                raise StoreError(f"compare_and_swap failed: {exc}") from exc
        raise StoreError(f"Gave up updating {key} after {self._cas_retries} conflicting writes")

    # === Lists ===

    @_store_call
    async def push(self, key: str, value: Any) -> int:
        return await self._client.rpush(key, json.dumps(value))

    @_store_call
    async def push_front(self, key: str, value: Any) -> int:
        return await self._client.lpush(key, json.dumps(value))

    @_store_call
    async def pop_first(self, key: str) -> Any:
        return self._decode(await self._client.lpop(key))

    @_store_call
    async def list_all(self, key: str) -> List[Any]:
        return [self._decode(raw) for raw in await self._client.lrange(key, 0, -1)]

    @_store_call
    async def list_length(self, key: str) -> int:
        return await self._client.llen(key)

    # === Pub/sub ===

    @_store_call
    async def publish(self, channel: str, value: Any) -> int:
        return await self._client.publish(channel, json.dumps(value))
