"""Version control exceptions."""

from typing import Optional

from archonflow.exceptions import ArchonFlowException


class VersionControlError(ArchonFlowException):
    """Base exception for version control operations."""
    pass


class NotFoundError(VersionControlError):
    """Raised when a referenced version, branch or workflow does not exist."""
    pass


class VersionNotFoundError(NotFoundError):
    """Raised when a version is not found."""

    def __init__(self, version_id: str, message: Optional[str] = None):
        self.version_id = version_id
        super().__init__(message or f"Version {version_id} not found")


class BranchNotFoundError(NotFoundError):
    """Raised when a branch is not found."""

    def __init__(self, branch_id: str, message: Optional[str] = None):
        self.branch_id = branch_id
        super().__init__(message or f"Branch {branch_id} not found")


class DuplicateNameError(VersionControlError):
    """Raised when an active branch with the same name already exists."""

    def __init__(self, workflow_id: str, name: str):
        self.workflow_id = workflow_id
        self.name = name
        super().__init__(f"Branch '{name}' already exists in workflow {workflow_id}")


class ProtectedBranchViolation(VersionControlError):
    """Raised on an illegal operation against a default or protected branch."""
    pass


class InactiveBranchError(VersionControlError):
    """Raised when writing to a branch that was merged or archived."""
    pass


class CrossWorkflowViolation(VersionControlError):
    """Raised when a record from one workflow is used in another."""
    pass


class InvalidChangeType(VersionControlError):
    """Raised when a change type is not major, minor or patch."""

    def __init__(self, change_type):
        self.change_type = change_type
        super().__init__(
            f"Invalid change type {change_type!r}; expected one of major, minor, patch"
        )


class NoCommonAncestor(VersionControlError):
    """Raised when two version chains never intersect."""
    pass


class ConcurrentModification(VersionControlError):
    """Raised when a branch head or version sequence changed since it was read."""
    pass


class SpecIntegrityError(VersionControlError):
    """Raised when a workflow spec fails structural validation."""
    pass


class WorkflowAlreadyInitialized(VersionControlError):
    """Raised when initializing a workflow that already has history."""
    pass
