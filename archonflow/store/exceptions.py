"""Entity store exceptions."""

from archonflow.exceptions import ArchonFlowException


class EntityStoreError(ArchonFlowException):
    """Base exception for entity store errors."""
    pass


class EntityNotFoundError(EntityStoreError):
    """Raised when a record does not exist in a collection."""

    def __init__(self, collection: str, entity_id: str):
        self.collection = collection
        self.entity_id = entity_id
        super().__init__(f"{collection} record {entity_id} not found")


class EntityExistsError(EntityStoreError):
    """Raised when creating a record whose id is already taken."""

    def __init__(self, collection: str, entity_id: str):
        self.collection = collection
        self.entity_id = entity_id
        super().__init__(f"{collection} record {entity_id} already exists")


class PreconditionFailedError(EntityStoreError):
    """Raised when a conditional update finds unexpected field values."""

    def __init__(self, collection: str, entity_id: str, field: str, expected, actual):
        self.collection = collection
        self.entity_id = entity_id
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{collection} record {entity_id}: expected {field}={expected!r}, found {actual!r}"
        )
