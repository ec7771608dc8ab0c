"""Abstract entity store interface.

The store is the only persistence seam of the version-control subsystem.
Records are JSON-compatible dictionaries keyed by a string ``id`` inside a
named collection.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .exceptions import PreconditionFailedError

Record = Dict[str, Any]


class EntityStore(ABC):
    """CRUD/query access to collections of JSON records."""

    @abstractmethod
    async def create(self, collection: str, record: Record) -> Record:
        """Insert a record and return it with its ``id``.

        A record that already carries an ``id`` keeps it; otherwise the store
        assigns one.
        """

    @abstractmethod
    async def update(
        self,
        collection: str,
        entity_id: str,
        patch: Record,
        expected: Optional[Record] = None,
    ) -> Record:
        """Merge ``patch`` into a record and return the result.

        When ``expected`` is given the update is a compare-and-swap: every
        listed field must currently hold the listed value, otherwise
        ``PreconditionFailedError`` is raised and nothing is written.
        """

    @abstractmethod
    async def get(self, collection: str, entity_id: str) -> Record:
        """Return a record or raise ``EntityNotFoundError``."""

    @abstractmethod
    async def filter(
        self,
        collection: str,
        predicate: Optional[Record] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """Return records whose fields equal every ``predicate`` entry.

        ``sort`` names a field, prefixed with ``-`` for descending order.
        """

    @abstractmethod
    async def delete(self, collection: str, entity_id: str) -> None:
        """Delete a record or raise ``EntityNotFoundError``."""

    async def close(self) -> None:
        """Release backend resources."""


def matches(record: Record, predicate: Optional[Record]) -> bool:
    """Check whether a record satisfies an equality predicate."""
    if not predicate:
        return True
    return all(record.get(key) == value for key, value in predicate.items())


def apply_sort(records: List[Record], sort: Optional[str]) -> List[Record]:
    """Sort records by a ``field`` / ``-field`` specification."""
    if not sort:
        return records
    descending = sort.startswith("-")
    field = sort[1:] if descending else sort
    # Records missing the field sort last in ascending order
    return sorted(
        records,
        key=lambda r: (r.get(field) is not None, r.get(field)) if descending
        else (r.get(field) is None, r.get(field)),
        reverse=descending,
    )


def check_expected(collection: str, entity_id: str, record: Record, expected: Optional[Record]) -> None:
    """Raise ``PreconditionFailedError`` if a record does not hold the expected values."""
    if not expected:
        return
    for field, value in expected.items():
        actual = record.get(field)
        if actual != value:
            raise PreconditionFailedError(collection, entity_id, field, value, actual)
