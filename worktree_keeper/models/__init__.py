"""Data models for worktree-keeper."""

from .project import ProjectEntry
from .worktree import (
    BranchOutcome,
    PruneResult,
    RemoveResult,
    WorktreeEntry,
    WorktreeInfo,
    WorktreeState,
    WorktreeStatus,
)

__all__ = [
    "ProjectEntry",
    "BranchOutcome",
    "PruneResult",
    "RemoveResult",
    "WorktreeEntry",
    "WorktreeInfo",
    "WorktreeState",
    "WorktreeStatus",
]
