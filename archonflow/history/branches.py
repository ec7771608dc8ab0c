"""Branch pointers into a workflow's version history."""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

import structlog

from archonflow.store import EntityNotFoundError, EntityStore, PreconditionFailedError

from .exceptions import (
    BranchNotFoundError,
    ConcurrentModification,
    CrossWorkflowViolation,
    DuplicateNameError,
    NotFoundError,
    ProtectedBranchViolation,
    VersionControlError,
    WorkflowAlreadyInitialized,
)
from .models import Branch, BranchStatus
from .versions import VersionStore

logger = structlog.get_logger()

BRANCHES_COLLECTION = "workflow_branches"


class BranchManager:
    """Creates, moves and retires branches.

    Every workflow owns exactly one default branch, created together with its
    first version. Default branches can never be archived or merged away.
    """

    def __init__(self, store: EntityStore, versions: VersionStore):
        self.store = store
        self.versions = versions
        self.logger = logger.bind(component="branch_manager")

    async def create_branch(
        self,
        workflow_id: str,
        name: str,
        description: Optional[str],
        is_protected: bool,
        base_version_id: str,
        author: str,
        org_id: Optional[str] = None,
    ) -> Branch:
        """Fork a new branch from an existing version."""
        self.logger.info("Creating branch",
                         workflow_id=workflow_id,
                         name=name,
                         base_version_id=base_version_id)

        await self._check_base_version(workflow_id, base_version_id)
        await self._check_name_available(workflow_id, name)

        branch = Branch(
            id=str(uuid4()),
            workflow_id=workflow_id,
            name=name,
            description=description,
            is_default=False,
            is_protected=is_protected,
            base_version_id=base_version_id,
            head_version_id=base_version_id,
            status=BranchStatus.ACTIVE,
            created_by=author,
            created_at=datetime.now(timezone.utc),
            org_id=org_id,
        )
        record = await self.store.create(BRANCHES_COLLECTION, branch.model_dump(mode="json"))

        self.logger.info("Branch created", branch_id=branch.id, name=name)
        return Branch.model_validate(record)

    async def create_default_branch(
        self,
        workflow_id: str,
        name: str,
        base_version_id: str,
        author: str,
        org_id: Optional[str] = None,
        branch_id: Optional[str] = None,
        is_protected: bool = False,
        description: Optional[str] = None,
    ) -> Branch:
        """Create the single default branch of a new workflow."""
        existing = await self.store.filter(
            BRANCHES_COLLECTION, {"workflow_id": workflow_id, "is_default": True}, limit=1
        )
        if existing:
            raise WorkflowAlreadyInitialized(
                f"Workflow {workflow_id} already has default branch '{existing[0]['name']}'"
            )

        await self._check_base_version(workflow_id, base_version_id)
        await self._check_name_available(workflow_id, name)

        branch = Branch(
            id=branch_id or str(uuid4()),
            workflow_id=workflow_id,
            name=name,
            description=description,
            is_default=True,
            is_protected=is_protected,
            base_version_id=base_version_id,
            head_version_id=base_version_id,
            status=BranchStatus.ACTIVE,
            created_by=author,
            created_at=datetime.now(timezone.utc),
            org_id=org_id,
        )
        record = await self.store.create(BRANCHES_COLLECTION, branch.model_dump(mode="json"))

        self.logger.info("Default branch created", workflow_id=workflow_id, branch_id=branch.id)
        return Branch.model_validate(record)

    async def get_branch(self, branch_id: str) -> Branch:
        """Get a branch by ID."""
        try:
            record = await self.store.get(BRANCHES_COLLECTION, branch_id)
        except EntityNotFoundError as e:
            raise BranchNotFoundError(branch_id) from e
        return Branch.model_validate(record)

    async def list_branches(
        self,
        workflow_id: str,
        status: Optional[BranchStatus] = None,
    ) -> List[Branch]:
        """List branches of a workflow, newest first."""
        predicate = {"workflow_id": workflow_id}
        if status:
            predicate["status"] = BranchStatus(status).value
        records = await self.store.filter(BRANCHES_COLLECTION, predicate, sort="-created_at")
        return [Branch.model_validate(record) for record in records]

    async def get_default_branch(self, workflow_id: str) -> Branch:
        """Get the default branch of a workflow."""
        records = await self.store.filter(
            BRANCHES_COLLECTION, {"workflow_id": workflow_id, "is_default": True}
        )
        if not records:
            raise NotFoundError(f"Workflow {workflow_id} has no default branch")
        if len(records) > 1:
            raise VersionControlError(
                f"Workflow {workflow_id} has {len(records)} default branches"
            )
        return Branch.model_validate(records[0])

    async def archive_branch(self, branch_id: str) -> Branch:
        """Archive a branch."""
        branch = await self.get_branch(branch_id)
        if branch.is_default:
            raise ProtectedBranchViolation(f"Default branch '{branch.name}' cannot be archived")
        if branch.status == BranchStatus.ARCHIVED:
            return branch

        branch = await self._update(
            branch,
            {"status": BranchStatus.ARCHIVED.value},
            expected={"status": branch.status.value},
        )
        self.logger.info("Branch archived", branch_id=branch_id)
        return branch

    async def advance_head(
        self,
        branch_id: str,
        new_version_id: str,
        expected_head_id: Optional[str] = None,
    ) -> Branch:
        """Move a branch head with a compare-and-swap on the current head.

        ``expected_head_id`` is the head the caller based its work on; when
        omitted the head read by this call is used.
        """
        branch = await self.get_branch(branch_id)
        version = await self.versions.get_version(new_version_id)
        if version.workflow_id != branch.workflow_id:
            raise CrossWorkflowViolation(
                f"Version {new_version_id} belongs to workflow {version.workflow_id}, "
                f"branch {branch_id} to workflow {branch.workflow_id}"
            )

        expected = expected_head_id or branch.head_version_id
        branch = await self._update(
            branch,
            {"head_version_id": new_version_id},
            expected={"head_version_id": expected},
        )
        self.logger.info("Branch head advanced",
                         branch_id=branch_id,
                         previous_head=expected,
                         head_version_id=new_version_id)
        return branch

    async def mark_merged(self, branch_id: str, into_branch_id: str, actor: str) -> Branch:
        """Retire a branch after it was merged into another one."""
        branch = await self.get_branch(branch_id)
        if branch.is_default:
            raise ProtectedBranchViolation(f"Default branch '{branch.name}' cannot be merged away")

        return await self._update(
            branch,
            {
                "status": BranchStatus.MERGED.value,
                "merged_at": datetime.now(timezone.utc).isoformat(),
                "merged_by": actor,
                "merged_into": into_branch_id,
            },
            expected={"status": BranchStatus.ACTIVE.value},
        )

    async def _update(self, branch: Branch, patch: dict, expected: dict) -> Branch:
        try:
            record = await self.store.update(BRANCHES_COLLECTION, branch.id, patch, expected=expected)
        except PreconditionFailedError as e:
            raise ConcurrentModification(
                f"Branch {branch.id} changed concurrently ({e.field} is now {e.actual!r})"
            ) from e
        except EntityNotFoundError as e:
            raise BranchNotFoundError(branch.id) from e
        return Branch.model_validate(record)

    async def _check_base_version(self, workflow_id: str, base_version_id: str) -> None:
        base = await self.versions.get_version(base_version_id)
        if base.workflow_id != workflow_id:
            raise CrossWorkflowViolation(
                f"Version {base_version_id} belongs to workflow {base.workflow_id}"
            )

    async def _check_name_available(self, workflow_id: str, name: str) -> None:
        clashes = await self.store.filter(
            BRANCHES_COLLECTION,
            {"workflow_id": workflow_id, "name": name, "status": BranchStatus.ACTIVE.value},
            limit=1,
        )
        if clashes:
            raise DuplicateNameError(workflow_id, name)
