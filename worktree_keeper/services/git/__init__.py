"""Git-related services for worktree-keeper."""

from .operations import GitOperations
from .worktrees import LinkedWorktree, WorktreeHead, WorktreeService

__all__ = [
    "GitOperations",
    "LinkedWorktree",
    "WorktreeHead",
    "WorktreeService",
]
