"""Project data models."""

from dataclasses import dataclass, field
from typing import Dict

from worktree_keeper.models.worktree import WorktreeEntry


@dataclass
class ProjectEntry:
    """A registered project: the main checkout plus its worktrees."""

    slug: str
    name: str
    root: str
    worktrees: Dict[str, WorktreeEntry] = field(default_factory=dict)
