"""SQLAlchemy-backed entity store."""

import copy
from typing import List, Optional
from uuid import uuid4

import structlog
from sqlalchemy import delete as sa_delete
from sqlalchemy import select
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError

from archonflow.database import DatabaseManager, EntityRecord

from .base import EntityStore, Record, apply_sort, check_expected, matches
from .exceptions import EntityExistsError, EntityNotFoundError, PreconditionFailedError

logger = structlog.get_logger()


class SQLEntityStore(EntityStore):
    """Entity store persisting JSON records in a single SQL table.

    Conditional updates are optimistic: the row's ``revision`` column is read
    together with the record and the write only succeeds if it is unchanged,
    so two writers racing on the same record cannot both win.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self.logger = logger.bind(component="sql_entity_store")

    async def initialize(self) -> None:
        """Initialize the underlying database."""
        await self.db.initialize()

    async def close(self) -> None:
        await self.db.close()

    async def create(self, collection: str, record: Record) -> Record:
        data = copy.deepcopy(record)
        entity_id = str(data.get("id") or uuid4())
        data["id"] = entity_id

        try:
            async with self.db.session() as session:
                existing = await session.get(EntityRecord, (collection, entity_id))
                if existing is not None:
                    raise EntityExistsError(collection, entity_id)
                session.add(
                    EntityRecord(collection=collection, id=entity_id, data=data, revision=1)
                )
        except IntegrityError as e:
            raise EntityExistsError(collection, entity_id) from e

        self.logger.debug("Record created", collection=collection, entity_id=entity_id)
        return copy.deepcopy(data)

    async def update(
        self,
        collection: str,
        entity_id: str,
        patch: Record,
        expected: Optional[Record] = None,
    ) -> Record:
        async with self.db.session() as session:
            row = (
                await session.execute(
                    select(EntityRecord).where(
                        EntityRecord.collection == collection,
                        EntityRecord.id == entity_id,
                    )
                )
            ).scalar_one_or_none()
            if row is None:
                raise EntityNotFoundError(collection, entity_id)

            current = copy.deepcopy(row.data)
            check_expected(collection, entity_id, current, expected)
            updated = {**current, **copy.deepcopy(patch), "id": entity_id}

            result = await session.execute(
                sa_update(EntityRecord)
                .where(
                    EntityRecord.collection == collection,
                    EntityRecord.id == entity_id,
                    EntityRecord.revision == row.revision,
                )
                .values(data=updated, revision=row.revision + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise PreconditionFailedError(
                    collection, entity_id, "revision", row.revision, None
                )

        self.logger.debug("Record updated", collection=collection, entity_id=entity_id)
        return updated

    async def get(self, collection: str, entity_id: str) -> Record:
        async with self.db.session() as session:
            row = await session.get(EntityRecord, (collection, entity_id))
            if row is None:
                raise EntityNotFoundError(collection, entity_id)
            return copy.deepcopy(row.data)

    async def filter(
        self,
        collection: str,
        predicate: Optional[Record] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """Filter records by field equality.

        String-valued predicates and the collection are matched in SQL through
        JSON extraction. Every predicate is then checked again in Python, which
        also covers numbers, booleans and ``None``. Sorting is done in Python,
        so a ``limit`` is only pushed into the query when there is no sort and
        no predicate left for Python to decide.
        """
        predicate = predicate or {}
        text_predicate = {key: value for key, value in predicate.items() if isinstance(value, str)}

        query = select(EntityRecord.data).where(EntityRecord.collection == collection)
        for key, value in text_predicate.items():
            query = query.where(EntityRecord.data[key].as_string() == value)
        if limit is not None and not sort and len(text_predicate) == len(predicate):
            query = query.order_by(EntityRecord.id).limit(limit)

        async with self.db.session() as session:
            rows = (await session.execute(query)).scalars().all()

        found = [copy.deepcopy(data) for data in rows if matches(data, predicate)]
        found = apply_sort(found, sort)
        if limit is not None:
            found = found[:limit]
        return found

    async def delete(self, collection: str, entity_id: str) -> None:
        async with self.db.session() as session:
            result = await session.execute(
                sa_delete(EntityRecord).where(
                    EntityRecord.collection == collection,
                    EntityRecord.id == entity_id,
                )
            )
            if result.rowcount == 0:
                raise EntityNotFoundError(collection, entity_id)

        self.logger.debug("Record deleted", collection=collection, entity_id=entity_id)
