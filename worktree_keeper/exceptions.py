"""Custom exceptions for worktree-keeper"""

from typing import List, Optional


class WorktreeKeeperError(Exception):
    """Base exception for all worktree-keeper errors.

    Errors carry a chain of step descriptions. ``within()`` prefixes the step
    that failed while keeping the original exception object, so callers can
    still test for the concrete class after higher layers added context.
    """

    def __init__(self, message: str = ""):
        self.message = message
        self.steps: List[str] = []
        super().__init__(message)

    def within(self, step: str) -> "WorktreeKeeperError":
        """Prefix the step that failed and return the same error."""
        self.steps.insert(0, step)
        return self

    def __str__(self) -> str:
        return ": ".join([*self.steps, self.message]) if self.steps else self.message


class GitOperationError(WorktreeKeeperError):
    """Exception raised for errors in Git operations."""

    def __init__(self, operation: str, branch: Optional[str] = None, message: Optional[str] = None):
        self.operation = operation
        self.branch = branch
        self.detail = message

        error_msg = f"Git operation '{operation}' failed"
        if branch:
            error_msg += f" for branch '{branch}'"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class NotARepositoryError(GitOperationError):
    """Exception raised when a path is not inside a git working tree."""

    def __init__(self, path: str):
        self.path = path
        super().__init__("open_repository", message=f"not a git repository: {path}")


class BranchNotFoundError(GitOperationError):
    """Exception raised when a branch is not found."""

    def __init__(self, branch: str):
        super().__init__("find_branch", branch, "Branch not found")


class BranchNotMergedError(GitOperationError):
    """Exception raised when a branch tip is not an ancestor of HEAD."""

    def __init__(self, branch: str):
        super().__init__("delete_branch", branch, "Branch has unmerged commits")


class IsCurrentBranchError(GitOperationError):
    """Exception raised when attempting to delete the checked out branch."""

    def __init__(self, branch: str):
        super().__init__("delete_branch", branch, "Branch is checked out in the main worktree")


class BranchConfigCleanupError(GitOperationError):
    """The branch reference was deleted but its config section could not be removed."""

    def __init__(self, branch: str, message: str):
        super().__init__("delete_branch_config", branch, f"reference deleted, config cleanup failed: {message}")


class WorktreeNotRegisteredError(WorktreeKeeperError):
    """Exception raised when the registry has no entry for a worktree name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"worktree '{name}' is not registered")


class WorktreeInvalidError(WorktreeKeeperError):
    """Exception raised when a directory exists but is not a usable linked worktree."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"worktree directory {path} exists but is invalid: {reason}")


class WorktreeAlreadyExistsError(WorktreeKeeperError):
    """Exception raised when a worktree (or its slug) is already taken."""

    def __init__(self, name: str, message: Optional[str] = None):
        self.name = name
        super().__init__(message or f"worktree '{name}' already exists")


class WorktreeDirNotFoundError(WorktreeKeeperError):
    """Exception raised when a worktree directory does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"worktree directory not found: {path}")


class ProjectNotRegisteredError(WorktreeKeeperError):
    """Exception raised when a project is not present in the registry."""

    def __init__(self, ref: str, message: Optional[str] = None):
        self.ref = ref
        super().__init__(message or f"project not registered: {ref}")


class RegistryCorruptError(WorktreeKeeperError):
    """Exception raised when the registry file cannot be parsed or has the wrong shape."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"registry {path} is corrupt: {message}")


class ConflictError(WorktreeKeeperError):
    """Exception raised when the registry lock could not be acquired."""

    def __init__(self, path: str, timeout: float):
        self.path = path
        self.timeout = timeout
        super().__init__(f"could not lock {path} within {timeout:g}s; another worktree-keeper command is running")


class WorktreeIOError(WorktreeKeeperError):
    """Exception raised for underlying filesystem failures."""

    def __init__(self, operation: str, path: str, message: str):
        self.operation = operation
        self.path = path
        super().__init__(f"{operation} {path}: {message}")


class OperationCanceledError(WorktreeKeeperError):
    """Exception raised when an operation is canceled before a mutation."""

    def __init__(self, step: str):
        self.step = step
        super().__init__(f"canceled before {step}")


class RevisionNotFoundError(GitOperationError):
    """Exception raised when a revision cannot be resolved to a commit."""

    def __init__(self, revision: str):
        self.revision = revision
        super().__init__("resolve_revision", message=f"revision not found: {revision or 'HEAD'}")


class WorktreeDirtyError(WorktreeKeeperError):
    """Exception raised when removing a worktree would discard uncommitted changes."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"worktree '{name}' has uncommitted changes; use --force to remove anyway")


class BranchCheckedOutError(GitOperationError):
    """Exception raised when a branch is checked out in a linked worktree."""

    def __init__(self, branch: str, path: str):
        self.path = path
        super().__init__("delete_branch", branch, f"Branch is checked out in worktree {path}")


class InvalidNameError(WorktreeKeeperError, ValueError):
    """Exception raised for an empty or unusable worktree or project name."""

    def __init__(self, kind: str, message: Optional[str] = None):
        self.kind = kind
        super().__init__(message or f"{kind} name cannot be empty")
