"""Worktree status formatting utilities."""

from rich.markup import escape

from worktree_keeper.constants import STATE_COLORS
from worktree_keeper.models.worktree import WorktreeInfo, WorktreeStatus


def format_status(status: WorktreeStatus) -> str:
    """
    Format a worktree status as rich markup.

    Args:
        status: Computed worktree status

    Returns:
        The status label wrapped in its color
    """
    color = STATE_COLORS.get(status.state.value)
    label = escape(status.label)
    if not color:
        return label
    return f"[{color}]{label}[/{color}]"


def format_head(info: WorktreeInfo) -> str:
    """Short HEAD hash, or empty when the worktree could not be read."""
    return info.short_head


def count_word(count: int, singular: str, plural: str) -> str:
    """'1 stale entry', '2 stale entries'."""
    return f"{count} {singular if count == 1 else plural}"
