"""Workflow history log."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

import structlog

from archonflow.config import settings
from archonflow.store import EntityStore

from .models import HistoryAction, HistoryEntry, HistoryFilter

logger = structlog.get_logger()

HISTORY_COLLECTION = "workflow_history"


class HistoryLog:
    """Append-only record of version-control actions per workflow."""

    def __init__(self, store: EntityStore, page_size: Optional[int] = None):
        self.store = store
        self.page_size = page_size or settings.history_page_size
        self.logger = logger.bind(component="workflow_history_log")

    async def record(
        self,
        workflow_id: str,
        action: HistoryAction,
        actor: str,
        summary: str,
        version_id: Optional[str] = None,
        branch_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> HistoryEntry:
        """Create workflow history entry."""
        entry = HistoryEntry(
            id=str(uuid4()),
            workflow_id=workflow_id,
            action=action,
            actor=actor,
            timestamp=datetime.now(timezone.utc),
            summary=summary,
            version_id=version_id,
            branch_id=branch_id,
            metadata=metadata or {},
        )
        await self.store.create(HISTORY_COLLECTION, entry.model_dump(mode="json"))

        self.logger.debug("History entry recorded",
                          workflow_id=workflow_id,
                          action=action.value)
        return entry

    async def discard(self, entry: HistoryEntry) -> None:
        """Remove an entry whose operation was rolled back."""
        await self.store.delete(HISTORY_COLLECTION, entry.id)
        self.logger.debug("History entry discarded",
                          workflow_id=entry.workflow_id,
                          action=entry.action.value)

    async def list(
        self,
        workflow_id: str,
        filter_params: Optional[HistoryFilter] = None,
    ) -> List[HistoryEntry]:
        """Load workflow history, newest first."""
        filter_params = filter_params or HistoryFilter()

        predicate: Dict[str, Any] = {"workflow_id": workflow_id}
        if filter_params.action:
            predicate["action"] = filter_params.action.value
        if filter_params.actor:
            predicate["actor"] = filter_params.actor
        if filter_params.branch_id:
            predicate["branch_id"] = filter_params.branch_id

        records = await self.store.filter(HISTORY_COLLECTION, predicate, sort="-timestamp")
        entries = [HistoryEntry.model_validate(record) for record in records]

        if filter_params.date_from:
            entries = [e for e in entries if e.timestamp >= filter_params.date_from]
        if filter_params.date_to:
            entries = [e for e in entries if e.timestamp <= filter_params.date_to]

        limit = filter_params.limit or self.page_size
        return entries[filter_params.offset:filter_params.offset + limit]
