from __future__ import annotations

import asyncio

from redis.asyncio import Redis

from aisecretary.core.config import get_settings
from aisecretary.core.errors import ProviderConfigError
from aisecretary.persistence.memory_store import InMemoryKeyValueStore
from aisecretary.persistence.redis_store import RedisKeyValueStore
from aisecretary.persistence.store import KeyValueStore


_redis_store: RedisKeyValueStore | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_memory_store: InMemoryKeyValueStore | None = None


def get_store() -> KeyValueStore:
    # Cache one store client per process; Redis pools are bound to the running loop.
    global _redis_store, _redis_loop, _memory_store
    settings = get_settings()
    backend = (settings.store_backend or "redis").lower()

    if backend == "memory":
        if _memory_store is None:
            _memory_store = InMemoryKeyValueStore()
        return _memory_store
    if backend != "redis":
        raise ProviderConfigError(f"Unsupported store backend: {backend}")

    try:
        current_loop = asyncio.get_running_loop()
    except RuntimeError:
        current_loop = None
    if _redis_store is not None and _redis_loop == current_loop:
        return _redis_store
    client = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    _redis_store = RedisKeyValueStore(client)
    _redis_loop = current_loop
    return _redis_store


def reset_store() -> None:
    # Drop cached clients for deterministic tests.
    global _redis_store, _redis_loop, _memory_store
    _redis_store = None
    _redis_loop = None
    _memory_store = None
