"""Formatting utilities for worktree-keeper.

- date: relative times for the MODIFIED column
- status: status labels, short hashes and counts
"""

from .date import format_time_ago
from .status import count_word, format_head, format_status

__all__ = [
    "format_time_ago",
    "count_word",
    "format_head",
    "format_status",
]
