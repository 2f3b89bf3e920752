from __future__ import annotations

from typing import Protocol


class KeyValueStore(Protocol):
    # Minimal Redis-compatible surface used by every service; values are JSON strings.
    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        ...

    async def delete(self, *keys: str) -> int:
        ...

    async def sadd(self, key: str, *members: str) -> int:
        ...

    async def srem(self, key: str, *members: str) -> int:
        ...

    async def smembers(self, key: str) -> set[str]:
        ...

    async def scard(self, key: str) -> int:
        ...

    async def lpush(self, key: str, *values: str) -> int:
        ...

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        ...

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        ...

    async def llen(self, key: str) -> int:
        ...

    async def incr(self, key: str) -> int:
        ...

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        ...

    async def keys(self, pattern: str) -> list[str]:
        ...

    async def ping(self) -> bool:
        ...
