"""In-memory entity store."""

import asyncio
import copy
from typing import Dict, List, Optional
from uuid import uuid4

import structlog

from .base import EntityStore, Record, apply_sort, check_expected, matches
from .exceptions import EntityExistsError, EntityNotFoundError

logger = structlog.get_logger()


class InMemoryEntityStore(EntityStore):
    """Entity store keeping records in process memory.

    Records are deep-copied on the way in and out so callers can never
    mutate stored state through a returned dictionary. Writes are serialised
    by a single lock, which makes conditional updates atomic.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Record]] = {}
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="memory_entity_store")

    def _collection(self, collection: str) -> Dict[str, Record]:
        return self._collections.setdefault(collection, {})

    async def create(self, collection: str, record: Record) -> Record:
        async with self._lock:
            records = self._collection(collection)
            data = copy.deepcopy(record)
            entity_id = str(data.get("id") or uuid4())
            if entity_id in records:
                raise EntityExistsError(collection, entity_id)
            data["id"] = entity_id
            records[entity_id] = data
            self.logger.debug("Record created", collection=collection, entity_id=entity_id)
            return copy.deepcopy(data)

    async def update(
        self,
        collection: str,
        entity_id: str,
        patch: Record,
        expected: Optional[Record] = None,
    ) -> Record:
        async with self._lock:
            records = self._collection(collection)
            if entity_id not in records:
                raise EntityNotFoundError(collection, entity_id)
            current = records[entity_id]
            check_expected(collection, entity_id, current, expected)
            updated = {**current, **copy.deepcopy(patch), "id": entity_id}
            records[entity_id] = updated
            self.logger.debug("Record updated", collection=collection, entity_id=entity_id)
            return copy.deepcopy(updated)

    async def get(self, collection: str, entity_id: str) -> Record:
        record = self._collection(collection).get(entity_id)
        if record is None:
            raise EntityNotFoundError(collection, entity_id)
        return copy.deepcopy(record)

    async def filter(
        self,
        collection: str,
        predicate: Optional[Record] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        found = [r for r in self._collection(collection).values() if matches(r, predicate)]
        found = apply_sort(found, sort)
        if limit is not None:
            found = found[:limit]
        return copy.deepcopy(found)

    async def delete(self, collection: str, entity_id: str) -> None:
        async with self._lock:
            records = self._collection(collection)
            if entity_id not in records:
                raise EntityNotFoundError(collection, entity_id)
            del records[entity_id]
            self.logger.debug("Record deleted", collection=collection, entity_id=entity_id)
