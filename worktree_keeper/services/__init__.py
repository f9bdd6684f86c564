"""Services for worktree-keeper."""

from .display_service import DisplayService
from .git import GitOperations, LinkedWorktree, WorktreeHead, WorktreeService
from .registry_service import ProjectHandle, Registry, WorktreeHandle
from .worktree_dirs import WorktreeDirProvider

__all__ = [
    "DisplayService",
    "GitOperations",
    "LinkedWorktree",
    "WorktreeHead",
    "WorktreeService",
    "ProjectHandle",
    "Registry",
    "WorktreeHandle",
    "WorktreeDirProvider",
]
