from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from aisecretary.core.errors import StoreUnavailable
from aisecretary.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

_TRANSIENT = (RedisConnectionError, RedisTimeoutError, OSError)


class RedisKeyValueStore:
    def __init__(self, client: Redis) -> None:
        # Client must be created with decode_responses=True so values round-trip as str.
        self._client = client

    async def _call(self, op: str, func: Callable[[], Awaitable[Any]]) -> Any:
        # Retry a transient failure exactly once with no backoff, then surface StoreUnavailable.
        try:
            return await func()
        except _TRANSIENT as exc:
            logger.warning("store_call_retry op=%s error=%s", op, type(exc).__name__)
            increment_counter("store_retries_total")
        try:
            return await func()
        except _TRANSIENT as exc:
            increment_counter("store_unavailable_total")
            raise StoreUnavailable(f"Key-value store unavailable during {op}") from exc

    async def get(self, key: str) -> str | None:
        return await self._call("get", lambda: self._client.get(key))

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self._call("set", lambda: self._client.set(key, value, ex=ttl_seconds))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._call("delete", lambda: self._client.delete(*keys)))

    async def sadd(self, key: str, *members: str) -> int:
        return int(await self._call("sadd", lambda: self._client.sadd(key, *members)))

    async def srem(self, key: str, *members: str) -> int:
        return int(await self._call("srem", lambda: self._client.srem(key, *members)))

    async def smembers(self, key: str) -> set[str]:
        members = await self._call("smembers", lambda: self._client.smembers(key))
        return set(members or ())

    async def scard(self, key: str) -> int:
        return int(await self._call("scard", lambda: self._client.scard(key)))

    async def lpush(self, key: str, *values: str) -> int:
        return int(await self._call("lpush", lambda: self._client.lpush(key, *values)))

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        values = await self._call("lrange", lambda: self._client.lrange(key, start, stop))
        return list(values or ())

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        await self._call("ltrim", lambda: self._client.ltrim(key, start, stop))

    async def llen(self, key: str) -> int:
        return int(await self._call("llen", lambda: self._client.llen(key)))

    async def incr(self, key: str) -> int:
        return int(await self._call("incr", lambda: self._client.incr(key)))

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(await self._call("expire", lambda: self._client.expire(key, ttl_seconds)))

    async def keys(self, pattern: str) -> list[str]:
        # SCAN instead of KEYS so large tenants do not block the server.
        async def _scan() -> list[str]:
            return [key async for key in self._client.scan_iter(match=pattern, count=500)]

        return sorted(await self._call("keys", _scan))

    async def ping(self) -> bool:
        return bool(await self._call("ping", self._client.ping))

    async def aclose(self) -> None:
        await self._client.aclose()
