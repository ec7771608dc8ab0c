"""Orchestration of multi-step version-control operations.

Every operation that creates a version runs under the workflow's lock and
writes the version, then its history entry, then moves the branch head. A
failure at any step removes what the earlier steps wrote, so readers never
see a version that no branch ever pointed at, and a failed call never leaves
a committed change behind.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from uuid import uuid4

import structlog

from archonflow.config import Settings, settings as default_settings
from archonflow.identity import IdentityProvider, StaticIdentityProvider
from archonflow.store import EntityStore, create_entity_store

from .audit import HistoryLog
from .branches import BranchManager
from .differ import SpecDiffer
from .exceptions import (
    CrossWorkflowViolation,
    InactiveBranchError,
    NoCommonAncestor,
    ProtectedBranchViolation,
    VersionControlError,
    VersionNotFoundError,
    WorkflowAlreadyInitialized,
)
from .locks import WorkflowLocks
from .merge import NodeResolution, three_way_merge
from .models import (
    Branch,
    BranchStatus,
    ChangeType,
    HistoryAction,
    HistoryEntry,
    HistoryFilter,
    MergeResult,
    MergeStatus,
    MergeStrategy,
    Version,
    VersionComparison,
    VersionSummary,
    WorkflowSpec,
    parse_change_type,
)
from .versions import VersionStore

logger = structlog.get_logger()


class VersionController:
    """Entry point for saving, comparing, rolling back and merging workflow versions."""

    def __init__(
        self,
        store: EntityStore,
        identity: Optional[IdentityProvider] = None,
        app_settings: Optional[Settings] = None,
        locks: Optional[WorkflowLocks] = None,
    ):
        self.settings = app_settings or default_settings
        self.store = store
        self.identity = identity or StaticIdentityProvider()
        self.locks = locks or WorkflowLocks()
        self.versions = VersionStore(store)
        self.branches = BranchManager(store, self.versions)
        self.differ = SpecDiffer(self.settings.diff_compare_positions)
        self.history = HistoryLog(store, self.settings.history_page_size)
        self.logger = logger.bind(component="version_controller")

    @classmethod
    async def from_settings(
        cls,
        app_settings: Optional[Settings] = None,
        identity: Optional[IdentityProvider] = None,
    ) -> "VersionController":
        """Build a controller on the entity store selected by settings."""
        app_settings = app_settings or default_settings
        store = await create_entity_store(app_settings)
        return cls(store, identity=identity, app_settings=app_settings)

    async def close(self) -> None:
        await self.store.close()

    # Workflow lifecycle

    async def initialize_workflow(
        self,
        workflow_id: str,
        spec: Union[WorkflowSpec, Dict[str, Any]],
        author: Optional[str] = None,
        branch_name: Optional[str] = None,
        is_protected: bool = False,
    ) -> Tuple[Branch, Version]:
        """Create a workflow's first version together with its default branch."""
        author, org_id = await self._stamp(author)
        branch_name = branch_name or self.settings.default_branch_name

        async with self.locks.hold(workflow_id):
            if await self.versions.list_versions(workflow_id, limit=1):
                raise WorkflowAlreadyInitialized(f"Workflow {workflow_id} already has versions")

            branch_id = str(uuid4())
            version = await self.versions.create_version(
                workflow_id=workflow_id,
                branch_id=branch_id,
                spec=spec,
                change_summary="Initial workflow creation",
                change_type=ChangeType.MAJOR,
                parent_version_id=None,
                author=author,
                org_id=org_id,
            )
            entry = await self._record(
                version,
                HistoryAction.WORKFLOW_INITIALIZED,
                author,
                f"Created version {version.version} on branch {branch_name}",
            )
            try:
                branch = await self.branches.create_default_branch(
                    workflow_id=workflow_id,
                    name=branch_name,
                    base_version_id=version.id,
                    author=author,
                    org_id=org_id,
                    branch_id=branch_id,
                    is_protected=is_protected,
                )
            except Exception:
                await self.history.discard(entry)
                await self.versions.revert_creation(version)
                raise

        self.logger.info("Workflow initialized",
                         workflow_id=workflow_id,
                         branch_id=branch.id,
                         version_id=version.id)
        return branch, version

    async def save(
        self,
        workflow_id: str,
        branch_id: str,
        spec: Union[WorkflowSpec, Dict[str, Any]],
        change_summary: str,
        change_type: Any,
        author: Optional[str] = None,
    ) -> Version:
        """Record a new version on a branch and move the branch head to it."""
        change_type = parse_change_type(change_type)
        author, org_id = await self._stamp(author)

        async with self.locks.hold(workflow_id):
            branch = await self._workflow_branch(workflow_id, branch_id)
            self._require_active(branch)

            version = await self.versions.create_version(
                workflow_id=workflow_id,
                branch_id=branch.id,
                spec=spec,
                change_summary=change_summary,
                change_type=change_type,
                parent_version_id=branch.head_version_id,
                author=author,
                org_id=org_id,
            )
            entry = await self._record(
                version,
                HistoryAction.VERSION_CREATED,
                author,
                f"Created version {version.version}: {change_summary}",
                metadata={"change_type": change_type.value},
            )
            await self._publish(branch, version, expected_head_id=branch.head_version_id, entry=entry)

        return version

    async def rollback(
        self,
        workflow_id: str,
        branch_id: str,
        target_version_id: str,
        author: Optional[str] = None,
    ) -> Version:
        """Append a version restoring an older spec and make it the branch head."""
        author, org_id = await self._stamp(author)

        async with self.locks.hold(workflow_id):
            self.logger.info("Rolling back workflow",
                             workflow_id=workflow_id,
                             branch_id=branch_id,
                             target_version_id=target_version_id)

            target = await self.versions.get_version(target_version_id)
            if target.workflow_id != workflow_id:
                raise VersionNotFoundError(
                    target_version_id,
                    f"Version {target_version_id} not found in workflow {workflow_id}",
                )

            branch = await self._workflow_branch(workflow_id, branch_id)
            self._require_active(branch)
            current = await self.versions.get_version(branch.head_version_id)

            version = await self.versions.create_version(
                workflow_id=workflow_id,
                branch_id=branch.id,
                spec=target.spec.model_copy(deep=True),
                change_summary=f"Rolled back to version {target.version}",
                change_type=ChangeType.PATCH,
                parent_version_id=current.id,
                author=author,
                org_id=org_id,
            )
            entry = await self._record(
                version,
                HistoryAction.ROLLBACK,
                author,
                f"Rolled back from {current.version} to {target.version} as {version.version}",
                metadata={
                    "target_version_id": target.id,
                    "target_version": target.version,
                    "previous_head_id": current.id,
                },
            )
            await self._publish(branch, version, expected_head_id=current.id, entry=entry)

        self.logger.info("Workflow rolled back",
                         workflow_id=workflow_id,
                         version_id=version.id,
                         version=version.version)
        return version

    async def merge(
        self,
        source_branch_id: str,
        target_branch_id: str,
        strategy: Union[MergeStrategy, str] = MergeStrategy.AUTO,
        conflict_resolution: Optional[Mapping[str, NodeResolution]] = None,
        approved: bool = False,
        author: Optional[str] = None,
    ) -> MergeResult:
        """Merge the head of one branch into another.

        Conflicts leave both branches untouched and are reported in the
        result. On success the target branch gets a new ``minor`` version and
        the source branch is marked ``merged``.
        """
        strategy = MergeStrategy(strategy)
        author, org_id = await self._stamp(author)

        if source_branch_id == target_branch_id:
            raise VersionControlError("A branch cannot be merged into itself")

        workflow_id = (await self.branches.get_branch(target_branch_id)).workflow_id

        async with self.locks.hold(workflow_id):
            source = await self.branches.get_branch(source_branch_id)
            target = await self.branches.get_branch(target_branch_id)

            if source.workflow_id != target.workflow_id:
                raise CrossWorkflowViolation(
                    f"Branch {source.id} belongs to workflow {source.workflow_id}, "
                    f"branch {target.id} to workflow {target.workflow_id}"
                )
            if source.is_default:
                raise ProtectedBranchViolation(f"Default branch '{source.name}' cannot be merged away")
            self._require_active(source)
            self._require_active(target)
            if target.is_protected and not approved:
                raise ProtectedBranchViolation(f"Protected branch '{target.name}' requires approval")

            self.logger.info("Merging branches",
                             workflow_id=workflow_id,
                             source=source.name,
                             target=target.name,
                             strategy=strategy.value)

            source_head = await self.versions.get_version(source.head_version_id)
            target_head = await self.versions.get_version(target.head_version_id)
            ancestor = await self.find_common_ancestor(source_head, target_head)

            plan = three_way_merge(
                ancestor.spec,
                source_head.spec,
                target_head.spec,
                strategy=strategy,
                resolutions=conflict_resolution,
                compare_positions=self.differ.compare_positions,
            )
            if plan.has_conflicts:
                self.logger.warning("Merge conflicts detected",
                                    source=source.name,
                                    target=target.name,
                                    conflicts=plan.conflicts)
                return MergeResult(
                    status=MergeStatus.CONFLICTS,
                    conflicts=plan.conflicts,
                    conflicts_resolved=plan.conflicts_resolved,
                )

            version = await self.versions.create_version(
                workflow_id=workflow_id,
                branch_id=target.id,
                spec=plan.spec,
                change_summary=f"Merged branch {source.name} into {target.name}",
                change_type=ChangeType.MINOR,
                parent_version_id=target_head.id,
                author=author,
                org_id=org_id,
            )
            entry = await self._record(
                version,
                HistoryAction.MERGE,
                author,
                f"Merged branch {source.name} into {target.name} as {version.version}",
                metadata={
                    "source_branch_id": source.id,
                    "ancestor_version_id": ancestor.id,
                    "strategy": strategy.value,
                    "conflicts_resolved": plan.conflicts_resolved,
                },
            )
            await self._publish(target, version, expected_head_id=target_head.id, entry=entry)

            try:
                await self.branches.mark_merged(source.id, target.id, author)
            except Exception:
                await self.branches.advance_head(target.id, target_head.id, expected_head_id=version.id)
                await self.history.discard(entry)
                await self.versions.revert_creation(version)
                raise

        self.logger.info("Branches merged",
                         source=source.name,
                         target=target.name,
                         version_id=version.id)
        return MergeResult(
            status=MergeStatus.MERGED,
            merged_version=version,
            conflicts_resolved=plan.conflicts_resolved,
        )

    async def find_common_ancestor(self, version_a: Version, version_b: Version) -> Version:
        """Nearest version shared by the parent chains of two versions."""
        if version_a.workflow_id != version_b.workflow_id:
            raise CrossWorkflowViolation("Versions belong to different workflows")

        chain_a = {v.id async for v in self._walk_parents(version_a)}
        async for candidate in self._walk_parents(version_b):
            if candidate.id in chain_a:
                return candidate

        raise NoCommonAncestor(
            f"Versions {version_a.id} and {version_b.id} share no ancestor"
        )

    async def _walk_parents(self, version: Version):
        """Yield a version followed by its ancestors, nearest first."""
        seen = set()
        current: Optional[Version] = version
        while current is not None:
            if current.id in seen:
                raise NoCommonAncestor(f"Version history of {version.id} contains a cycle")
            if len(seen) >= self.settings.max_ancestor_depth:
                raise NoCommonAncestor(
                    f"Version history of {version.id} exceeds {self.settings.max_ancestor_depth} ancestors"
                )
            seen.add(current.id)
            yield current
            if current.parent_version_id is None:
                return
            current = await self.versions.get_version(current.parent_version_id)

    # Queries

    async def compare_versions(self, version_id_a: str, version_id_b: str) -> VersionComparison:
        """Compare two versions of the same workflow."""
        version_a = await self.versions.get_version(version_id_a)
        version_b = await self.versions.get_version(version_id_b)
        if version_a.workflow_id != version_b.workflow_id:
            raise CrossWorkflowViolation("Cannot compare versions of different workflows")

        diff = self.differ.diff(version_a.spec, version_b.spec)
        return VersionComparison(
            version_a=VersionSummary.from_version(version_a),
            version_b=VersionSummary.from_version(version_b),
            diff=diff,
            is_compatible=not diff.has_breaking_changes(),
        )

    async def list_versions(
        self,
        workflow_id: str,
        branch_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Version]:
        return await self.versions.list_versions(workflow_id, branch_id, limit)

    async def get_history(
        self,
        workflow_id: str,
        filter_params: Optional[HistoryFilter] = None,
    ) -> List[HistoryEntry]:
        """Get workflow history."""
        return await self.history.list(workflow_id, filter_params)

    # Branch and tag actions recorded in history

    async def create_branch(
        self,
        workflow_id: str,
        name: str,
        description: Optional[str] = None,
        is_protected: bool = False,
        base_version_id: Optional[str] = None,
        author: Optional[str] = None,
    ) -> Branch:
        """Fork a branch, by default from the head of the default branch."""
        author, org_id = await self._stamp(author)

        async with self.locks.hold(workflow_id):
            if base_version_id is None:
                base_version_id = (await self.branches.get_default_branch(workflow_id)).head_version_id

            branch = await self.branches.create_branch(
                workflow_id, name, description, is_protected, base_version_id, author, org_id=org_id
            )
            await self.history.record(
                workflow_id,
                HistoryAction.BRANCH_CREATED,
                author,
                f"Created branch {name}",
                version_id=base_version_id,
                branch_id=branch.id,
            )
        return branch

    async def archive_branch(self, branch_id: str, author: Optional[str] = None) -> Branch:
        author, _ = await self._stamp(author)
        branch = await self.branches.archive_branch(branch_id)
        await self.history.record(
            branch.workflow_id,
            HistoryAction.BRANCH_ARCHIVED,
            author,
            f"Archived branch {branch.name}",
            branch_id=branch.id,
        )
        return branch

    async def tag_version(self, version_id: str, tag: str, author: Optional[str] = None) -> Version:
        author, _ = await self._stamp(author)
        before = await self.versions.get_version(version_id)
        version = await self.versions.tag_version(version_id, tag)
        if version.tags != before.tags:
            await self.history.record(
                version.workflow_id,
                HistoryAction.VERSION_TAGGED,
                author,
                f"Tagged version {version.version} as {tag.strip()}",
                version_id=version.id,
                branch_id=version.branch_id,
            )
        return version

    async def mark_release(self, version_id: str, author: Optional[str] = None) -> Version:
        author, _ = await self._stamp(author)
        version = await self.versions.mark_release(version_id)
        await self.history.record(
            version.workflow_id,
            HistoryAction.VERSION_TAGGED,
            author,
            f"Released version {version.version}",
            version_id=version.id,
            branch_id=version.branch_id,
            metadata={"is_release": True},
        )
        return version

    # Helpers

    async def _stamp(self, author: Optional[str]) -> Tuple[str, Optional[str]]:
        user = await self.identity.current_user()
        return author or user.email, user.organization_id

    async def _workflow_branch(self, workflow_id: str, branch_id: str) -> Branch:
        branch = await self.branches.get_branch(branch_id)
        if branch.workflow_id != workflow_id:
            raise CrossWorkflowViolation(
                f"Branch {branch_id} belongs to workflow {branch.workflow_id}"
            )
        return branch

    @staticmethod
    def _require_active(branch: Branch) -> None:
        if branch.status != BranchStatus.ACTIVE:
            raise InactiveBranchError(f"Branch '{branch.name}' is {branch.status.value}")

    async def _record(self, version: Version, action: HistoryAction, author: str, summary: str,
                      metadata: Optional[Dict[str, Any]] = None) -> HistoryEntry:
        """Record the history entry for a new version, removing the version if that fails."""
        try:
            return await self.history.record(
                version.workflow_id,
                action,
                author,
                summary,
                version_id=version.id,
                branch_id=version.branch_id,
                metadata=metadata,
            )
        except Exception:
            await self.versions.revert_creation(version)
            raise

    async def _publish(self, branch: Branch, version: Version, expected_head_id: str,
                       entry: HistoryEntry) -> Branch:
        """Advance a branch head to a new version, undoing the version and its entry if that fails."""
        try:
            return await self.branches.advance_head(
                branch.id, version.id, expected_head_id=expected_head_id
            )
        except Exception:
            await self.history.discard(entry)
            await self.versions.revert_creation(version)
            raise
