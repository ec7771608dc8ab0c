"""Append-only storage of workflow versions."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

import structlog
from pydantic import ValidationError

from archonflow.store import (
    EntityExistsError,
    EntityNotFoundError,
    EntityStore,
    PreconditionFailedError,
)

from .exceptions import (
    ConcurrentModification,
    CrossWorkflowViolation,
    SpecIntegrityError,
    VersionControlError,
    VersionNotFoundError,
)
from .models import INITIAL_VERSION, Version, WorkflowSpec, parse_change_type

logger = structlog.get_logger()

VERSIONS_COLLECTION = "workflow_versions"
SEQUENCES_COLLECTION = "workflow_sequences"

RELEASE_TAG = "release"


def coerce_spec(spec: Union[WorkflowSpec, Dict[str, Any]]) -> WorkflowSpec:
    """Validate a spec and return a private deep copy of it."""
    if isinstance(spec, WorkflowSpec):
        return spec.model_copy(deep=True)
    try:
        return WorkflowSpec.model_validate(spec)
    except ValidationError as e:
        raise SpecIntegrityError(f"Invalid workflow spec: {e}") from e


class VersionStore:
    """Persists immutable workflow versions.

    Versions are never deleted or rewritten through this class; the only
    mutation is appending tags (and flagging releases). Version numbers come
    from a per-workflow sequence record advanced with a conditional write, so
    two writers can never obtain the same number.
    """

    def __init__(self, store: EntityStore):
        self.store = store
        self.logger = logger.bind(component="version_store")

    async def create_version(
        self,
        workflow_id: str,
        branch_id: str,
        spec: Union[WorkflowSpec, Dict[str, Any]],
        change_summary: str,
        change_type: Any,
        parent_version_id: Optional[str],
        author: str,
        org_id: Optional[str] = None,
        version_id: Optional[str] = None,
    ) -> Version:
        """Create a new workflow version."""
        change_type = parse_change_type(change_type)
        snapshot = coerce_spec(spec)

        try:
            self.logger.info("Creating workflow version",
                             workflow_id=workflow_id,
                             branch_id=branch_id,
                             change_type=change_type.value)

            if parent_version_id:
                parent = await self.get_version(parent_version_id)
                if parent.workflow_id != workflow_id:
                    raise CrossWorkflowViolation(
                        f"Parent version {parent_version_id} belongs to workflow {parent.workflow_id}"
                    )
                version_string = parent.increment_version(change_type)
            else:
                existing = await self.list_versions(workflow_id, limit=1)
                if existing:
                    raise VersionControlError(
                        f"Workflow {workflow_id} already has a root version; a parent is required"
                    )
                version_string = INITIAL_VERSION

            version_number = await self._allocate_number(workflow_id)

            version = Version(
                id=version_id or str(uuid4()),
                workflow_id=workflow_id,
                branch_id=branch_id,
                version=version_string,
                version_number=version_number,
                spec=snapshot,
                change_summary=change_summary,
                change_type=change_type,
                parent_version_id=parent_version_id,
                created_by=author,
                created_at=datetime.now(timezone.utc),
                org_id=org_id,
            )

            try:
                record = await self.store.create(VERSIONS_COLLECTION, version.model_dump(mode="json"))
            except Exception:
                await self._release_number(workflow_id, version_number)
                raise

            self.logger.info("Workflow version created",
                             version_id=version.id,
                             version=version_string,
                             version_number=version_number)

            return Version.model_validate(record)

        except VersionControlError:
            raise
        except Exception as e:
            self.logger.error("Failed to create workflow version",
                              workflow_id=workflow_id,
                              error=str(e))
            raise VersionControlError(f"Failed to create version: {str(e)}") from e

    async def get_version(self, version_id: str) -> Version:
        """Get a version by ID."""
        try:
            record = await self.store.get(VERSIONS_COLLECTION, version_id)
        except EntityNotFoundError as e:
            raise VersionNotFoundError(version_id) from e
        return Version.model_validate(record)

    async def list_versions(
        self,
        workflow_id: str,
        branch_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Version]:
        """List workflow versions, newest first."""
        predicate = {"workflow_id": workflow_id}
        if branch_id:
            predicate["branch_id"] = branch_id
        records = await self.store.filter(
            VERSIONS_COLLECTION, predicate, sort="-version_number", limit=limit
        )
        return [Version.model_validate(record) for record in records]

    async def tag_version(self, version_id: str, tag: str) -> Version:
        """Append a tag to a version; tagging twice is a no-op."""
        tag = tag.strip() if tag else ""
        if not tag:
            raise ValueError("Tag cannot be empty")

        version = await self.get_version(version_id)
        if tag in version.tags:
            return version

        return await self._update_tags(version, sorted(version.tags + [tag]))

    async def mark_release(self, version_id: str) -> Version:
        """Flag a version as a release and tag it."""
        version = await self.get_version(version_id)
        if version.is_release and RELEASE_TAG in version.tags:
            return version

        tags = version.tags if RELEASE_TAG in version.tags else sorted(version.tags + [RELEASE_TAG])
        return await self._update_tags(version, tags, is_release=True)

    async def revert_creation(self, version: Version) -> None:
        """Remove a version that no branch head ever referenced.

        Only used to compensate a multi-step operation that failed after
        creating the version.
        """
        self.logger.warning("Reverting unpublished version",
                            version_id=version.id,
                            version_number=version.version_number)
        await self.store.delete(VERSIONS_COLLECTION, version.id)
        await self._release_number(version.workflow_id, version.version_number)

    async def _update_tags(self, version: Version, tags: List[str], **extra: Any) -> Version:
        try:
            record = await self.store.update(
                VERSIONS_COLLECTION,
                version.id,
                {"tags": tags, **extra},
                expected={"tags": version.tags},
            )
        except PreconditionFailedError as e:
            raise ConcurrentModification(f"Tags of version {version.id} changed concurrently") from e
        except EntityNotFoundError as e:
            raise VersionNotFoundError(version.id) from e

        self.logger.info("Version tags updated", version_id=version.id, tags=tags)
        return Version.model_validate(record)

    async def _allocate_number(self, workflow_id: str) -> int:
        """Reserve the next version number of a workflow."""
        try:
            sequence = await self.store.get(SEQUENCES_COLLECTION, workflow_id)
        except EntityNotFoundError:
            try:
                await self.store.create(
                    SEQUENCES_COLLECTION,
                    {"id": workflow_id, "workflow_id": workflow_id, "last_version_number": 1},
                )
            except EntityExistsError as e:
                raise ConcurrentModification(
                    f"Version sequence of workflow {workflow_id} was created concurrently"
                ) from e
            return 1

        current = sequence["last_version_number"]
        try:
            await self.store.update(
                SEQUENCES_COLLECTION,
                workflow_id,
                {"last_version_number": current + 1},
                expected={"last_version_number": current},
            )
        except PreconditionFailedError as e:
            raise ConcurrentModification(
                f"Version sequence of workflow {workflow_id} advanced concurrently"
            ) from e
        return current + 1

    async def _release_number(self, workflow_id: str, version_number: int) -> None:
        """Give back the most recently reserved number if nobody took a later one."""
        try:
            await self.store.update(
                SEQUENCES_COLLECTION,
                workflow_id,
                {"last_version_number": version_number - 1},
                expected={"last_version_number": version_number},
            )
        except PreconditionFailedError:
            self.logger.warning("Version number not released; sequence moved on",
                                workflow_id=workflow_id,
                                version_number=version_number)
