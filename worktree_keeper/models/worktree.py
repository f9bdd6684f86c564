"""Worktree data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from worktree_keeper.constants import DETACHED_DISPLAY, SHORT_SHA_LENGTH


@dataclass(frozen=True)
class WorktreeEntry:
    """Persisted registry record for one worktree."""

    name: str
    path: str
    branch: str

    def __post_init__(self):
        if not self.name:
            raise ValueError("worktree name cannot be empty")


class WorktreeState(Enum):
    """Health of a registered worktree."""
    HEALTHY = "healthy"
    GIT_MISSING = "git missing"
    DIR_MISSING = "dir missing"
    STALE = "stale"
    ERROR = "error"


@dataclass(frozen=True)
class WorktreeStatus:
    """Computed status triple: directory presence, git link presence, error."""

    state: WorktreeState
    dir_present: bool
    git_link_present: bool
    error: Optional[str] = None

    @classmethod
    def from_presence(cls, dir_present: bool, git_link_present: bool) -> "WorktreeStatus":
        if dir_present and git_link_present:
            state = WorktreeState.HEALTHY
        elif dir_present:
            state = WorktreeState.GIT_MISSING
        elif git_link_present:
            state = WorktreeState.DIR_MISSING
        else:
            state = WorktreeState.STALE
        return cls(state, dir_present, git_link_present)

    @classmethod
    def failed(cls, reason: str, dir_present: bool = False, git_link_present: bool = False) -> "WorktreeStatus":
        return cls(WorktreeState.ERROR, dir_present, git_link_present, reason)

    def is_healthy(self) -> bool:
        return self.state is WorktreeState.HEALTHY

    def is_prunable(self) -> bool:
        return self.state is WorktreeState.STALE

    @property
    def label(self) -> str:
        """Text shown in the STATUS column."""
        if self.state is WorktreeState.STALE:
            return "dir missing, git missing"
        if self.state is WorktreeState.ERROR:
            return f"error: {self.error}"
        return self.state.value


@dataclass
class WorktreeInfo:
    """One row of ``list`` output."""

    name: str
    path: str
    status: WorktreeStatus
    head: str = ""
    branch: str = ""
    is_detached: bool = False
    modified: Optional[datetime] = None
    project: str = ""

    @property
    def short_head(self) -> str:
        return self.head[:SHORT_SHA_LENGTH]

    @property
    def display_branch(self) -> str:
        if self.is_detached:
            return DETACHED_DISPLAY
        return self.branch or self.name

    def __str__(self) -> str:
        return f"{self.name} @ {self.path} [{self.status.label}]"


class BranchOutcome(Enum):
    """What happened to the branch during ``remove --delete-branch``."""
    SKIPPED = "skipped"
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    NOT_MERGED = "not_merged"


@dataclass
class RemoveResult:
    """Outcome of a successful worktree removal."""

    name: str
    path: str
    branch: str = ""
    branch_outcome: BranchOutcome = BranchOutcome.SKIPPED


@dataclass
class PruneResult:
    """Outcome of pruning stale registry entries."""

    prunable: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    failed: Dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed
