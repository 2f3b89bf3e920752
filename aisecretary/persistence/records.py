from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, TypeVar
import weakref

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from aisecretary.persistence.keys import ledger_key
from aisecretary.persistence.store import KeyValueStore


logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Per-entity locks live with the store so every RecordStore over it shares them.
_LOCKS: weakref.WeakKeyDictionary[KeyValueStore, weakref.WeakValueDictionary[str, asyncio.Lock]] = (
    weakref.WeakKeyDictionary()
)


class RecordStore:
    """Typed records plus secondary-index bookkeeping over a key-value store.

    Each record key owns a ledger set listing every index key it was added
    to. Index maintenance always goes through the ledger so a delete can
    reverse exactly the insertions that happened, regardless of which fields
    the record carries at deletion time.

    Multi-key writes are independent store calls; a crash between them can
    leave an index entry without a primary record, which readers tolerate.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._locks = _LOCKS.setdefault(store, weakref.WeakValueDictionary())

    def lock(self, record_key: str) -> asyncio.Lock:
        # Serialize read-modify-write per entity for every writer on this store in this process.
        lock = self._locks.get(record_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[record_key] = lock
        return lock

    async def put(self, key: str, record: BaseModel, ttl_seconds: int | None = None) -> None:
        await self._store.set(key, record.model_dump_json(), ttl_seconds)

    async def get(self, key: str, model: type[ModelT]) -> ModelT | None:
        raw = await self._store.get(key)
        if raw is None:
            return None
        try:
            return model.model_validate_json(raw)
        except SchemaError:
            # Treat unreadable payloads as missing rather than failing the whole read.
            logger.warning("record_schema_invalid key=%s model=%s", key, model.__name__)
            return None

    async def add_to_index(self, index_key: str, entity_id: str, *, record_key: str) -> None:
        await self._store.sadd(index_key, entity_id)
        await self._store.sadd(ledger_key(record_key), index_key)

    async def remove_from_index(self, index_key: str, entity_id: str, *, record_key: str) -> None:
        await self._store.srem(index_key, entity_id)
        await self._store.srem(ledger_key(record_key), index_key)

    async def members_of(self, index_key: str) -> set[str]:
        return await self._store.smembers(index_key)

    async def indexes_of(self, record_key: str) -> set[str]:
        return await self._store.smembers(ledger_key(record_key))

    async def put_indexed(
        self,
        key: str,
        record: BaseModel,
        *,
        entity_id: str,
        index_keys: Iterable[str],
        ttl_seconds: int | None = None,
    ) -> None:
        # Primary write first, then exactly one index insertion per index key.
        await self.put(key, record, ttl_seconds)
        for index in index_keys:
            await self.add_to_index(index, entity_id, record_key=key)
        if ttl_seconds is not None:
            await self._store.expire(ledger_key(key), ttl_seconds)

    async def reindex(
        self,
        key: str,
        *,
        entity_id: str,
        old_index_keys: Iterable[str],
        new_index_keys: Iterable[str],
        ttl_seconds: int | None = None,
    ) -> None:
        # Drop stale entries before adding new ones so the swap completes before returning.
        old = set(old_index_keys)
        new = set(new_index_keys)
        for index in sorted(old - new):
            await self.remove_from_index(index, entity_id, record_key=key)
        for index in sorted(new - old):
            await self.add_to_index(index, entity_id, record_key=key)
        if ttl_seconds is not None:
            await self._store.expire(ledger_key(key), ttl_seconds)

    async def fetch_many(
        self,
        entity_ids: Iterable[str],
        key_for: Callable[[str], str],
        model: type[ModelT],
    ) -> list[ModelT]:
        # Skip ids whose primary record expired or was deleted (tombstones).
        records: list[ModelT] = []
        for entity_id in sorted(entity_ids):
            record = await self.get(key_for(entity_id), model)
            if record is None:
                logger.debug("index_tombstone_skipped entity_id=%s", entity_id)
                continue
            records.append(record)
        return records

    async def delete_record(self, key: str, *, entity_id: str) -> bool:
        # Reverse every ledgered index insertion, then drop the record and its ledger.
        for index in sorted(await self.indexes_of(key)):
            await self._store.srem(index, entity_id)
        removed = await self._store.delete(key, ledger_key(key))
        return removed > 0
