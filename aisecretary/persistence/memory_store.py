from __future__ import annotations

from fnmatch import fnmatchcase
import time
from typing import Callable


class InMemoryKeyValueStore:
    """Process-local stand-in for the Redis backend.

    Mirrors the subset of Redis semantics the services rely on: missing keys
    read as empty, TTLs expire lazily on access, list ranges use inclusive
    stop indexes with negative offsets.
    """

    def __init__(self, *, time_provider: Callable[[], float] | None = None) -> None:
        # Allow injecting time for deterministic TTL tests.
        self._time = time_provider or time.monotonic
        self._data: dict[str, str | set[str] | list[str]] = {}
        self._expires_at: dict[str, float] = {}

    def _purge(self, key: str) -> None:
        expires_at = self._expires_at.get(key)
        if expires_at is not None and expires_at <= self._time():
            self._data.pop(key, None)
            self._expires_at.pop(key, None)

    def _read(self, key: str):
        self._purge(key)
        return self._data.get(key)

    def _set_of(self, key: str) -> set[str]:
        value = self._read(key)
        if value is None:
            value = set()
            self._data[key] = value
        if not isinstance(value, set):
            raise TypeError(f"WRONGTYPE key {key} does not hold a set")
        return value

    def _list_of(self, key: str) -> list[str]:
        value = self._read(key)
        if value is None:
            value = []
            self._data[key] = value
        if not isinstance(value, list):
            raise TypeError(f"WRONGTYPE key {key} does not hold a list")
        return value

    def _drop_if_empty(self, key: str) -> None:
        # Redis removes empty sets/lists; mirror that so keys() stays accurate.
        value = self._data.get(key)
        if isinstance(value, (set, list)) and not value:
            self._data.pop(key, None)
            self._expires_at.pop(key, None)

    async def get(self, key: str) -> str | None:
        value = self._read(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise TypeError(f"WRONGTYPE key {key} does not hold a string")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        self._data[key] = value
        if ttl_seconds is not None:
            self._expires_at[key] = self._time() + ttl_seconds
        else:
            self._expires_at.pop(key, None)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._purge(key)
            if key in self._data:
                removed += 1
            self._data.pop(key, None)
            self._expires_at.pop(key, None)
        return removed

    async def sadd(self, key: str, *members: str) -> int:
        target = self._set_of(key)
        before = len(target)
        target.update(members)
        return len(target) - before

    async def srem(self, key: str, *members: str) -> int:
        value = self._read(key)
        if value is None:
            return 0
        if not isinstance(value, set):
            raise TypeError(f"WRONGTYPE key {key} does not hold a set")
        removed = len(value.intersection(members))
        value.difference_update(members)
        self._drop_if_empty(key)
        return removed

    async def smembers(self, key: str) -> set[str]:
        value = self._read(key)
        if value is None:
            return set()
        if not isinstance(value, set):
            raise TypeError(f"WRONGTYPE key {key} does not hold a set")
        return set(value)

    async def scard(self, key: str) -> int:
        return len(await self.smembers(key))

    async def lpush(self, key: str, *values: str) -> int:
        target = self._list_of(key)
        for value in values:
            target.insert(0, value)
        return len(target)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        value = self._read(key)
        if value is None:
            return []
        if not isinstance(value, list):
            raise TypeError(f"WRONGTYPE key {key} does not hold a list")
        return list(value[_slice(len(value), start, stop)])

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        value = self._read(key)
        if value is None:
            return
        if not isinstance(value, list):
            raise TypeError(f"WRONGTYPE key {key} does not hold a list")
        value[:] = value[_slice(len(value), start, stop)]
        self._drop_if_empty(key)

    async def llen(self, key: str) -> int:
        value = self._read(key)
        if value is None:
            return 0
        if not isinstance(value, list):
            raise TypeError(f"WRONGTYPE key {key} does not hold a list")
        return len(value)

    async def incr(self, key: str) -> int:
        value = await self.get(key)
        count = int(value or 0) + 1
        self._data[key] = str(count)
        return count

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        self._purge(key)
        if key not in self._data:
            return False
        self._expires_at[key] = self._time() + ttl_seconds
        return True

    async def keys(self, pattern: str) -> list[str]:
        for key in list(self._data):
            self._purge(key)
        return sorted(key for key in self._data if fnmatchcase(key, pattern))

    async def ping(self) -> bool:
        return True


def _slice(length: int, start: int, stop: int) -> slice:
    # Translate Redis inclusive ranges (negative offsets allowed) into a Python slice.
    if start < 0:
        start = max(length + start, 0)
    if stop < 0:
        stop = length + stop
    if stop < 0:
        return slice(0, 0)
    return slice(start, stop + 1)
