"""Per-workflow serialisation of version-control operations.

These locks only order callers inside one process. Correctness across
processes comes from the conditional writes in the entity store: branch
heads and version sequences are compare-and-swap updates.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict


class WorkflowLocks:
    """Registry of one ``asyncio.Lock`` per workflow."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, workflow_id: str) -> asyncio.Lock:
        lock = self._locks.get(workflow_id)
        if lock is None:
            lock = self._locks[workflow_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, workflow_id: str) -> AsyncGenerator[None, None]:
        """Hold the lock of a workflow for the duration of the block."""
        async with self.get(workflow_id):
            yield

    def is_locked(self, workflow_id: str) -> bool:
        lock = self._locks.get(workflow_id)
        return lock is not None and lock.locked()
