"""Shared constants for worktree-keeper."""

from dataclasses import dataclass
from typing import List

APP_NAME = "worktree-keeper"

# Environment variables
CONFIG_DIR_ENV = "WORKTREE_KEEPER_CONFIG_DIR"
LOCK_TIMEOUT_ENV = "WORKTREE_KEEPER_LOCK_TIMEOUT"
XDG_CONFIG_HOME_ENV = "XDG_CONFIG_HOME"

# Files under the config root
REGISTRY_FILE_NAME = "projects.yaml"
LOG_FILE_NAME = "worktree-keeper.log"

# Name of the file a linked worktree uses to point back at its repository
GIT_LINK_NAME = ".git"

WORKTREE_DIR_MODE = 0o755
# Mode of a newly created registry file; rewrites keep the existing mode
REGISTRY_FILE_MODE = 0o644

DETACHED_DISPLAY = "(detached)"
SHORT_SHA_LENGTH = 7


@dataclass
class ColumnDefinition:
    """Definition of a table column."""

    key: str
    label: str
    width: int = 0  # 0 means auto-width


WORKTREE_COLUMNS: List[ColumnDefinition] = [
    ColumnDefinition("branch", "BRANCH"),
    ColumnDefinition("path", "PATH"),
    ColumnDefinition("head", "HEAD", 7),
    ColumnDefinition("modified", "MODIFIED"),
    ColumnDefinition("status", "STATUS"),
]

PROJECT_COLUMN = ColumnDefinition("project", "PROJECT")


# CLI colors (Rich color names) keyed by worktree state value
STATE_COLORS = {
    "healthy": "green",
    "git missing": "yellow",
    "dir missing": "yellow",
    "stale": "red",
    "error": "red",
}
