"""Entity store abstraction and backends for ArchonFlow."""

from typing import Optional

from archonflow.config import Settings, settings as default_settings
from archonflow.database import DatabaseManager
from archonflow.exceptions import ConfigurationError

from .base import EntityStore, Record
from .exceptions import (
    EntityExistsError,
    EntityNotFoundError,
    EntityStoreError,
    PreconditionFailedError,
)
from .memory import InMemoryEntityStore
from .sql import SQLEntityStore


async def create_entity_store(app_settings: Optional[Settings] = None) -> EntityStore:
    """Create and initialize the entity store selected by settings."""
    app_settings = app_settings or default_settings

    if app_settings.store_backend == "memory":
        return InMemoryEntityStore()
    if app_settings.store_backend == "sql":
        store = SQLEntityStore(DatabaseManager(app_settings))
        await store.initialize()
        return store

    raise ConfigurationError(f"Unknown store backend: {app_settings.store_backend}")


__all__ = [
    "EntityStore",
    "Record",
    "EntityStoreError",
    "EntityNotFoundError",
    "EntityExistsError",
    "PreconditionFailedError",
    "InMemoryEntityStore",
    "SQLEntityStore",
    "create_entity_store",
    "DatabaseManager",
]
