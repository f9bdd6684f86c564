"""Utility functions for worktree-keeper.

This package provides utility modules:
- logging: Logging configuration and logger creation
- text: Slug generation
- cancel: Cooperative cancellation token
"""

from .logging import setup_logging, get_logger, ColoredFormatter
from .text import slugify, unique_slug
from .cancel import CancelToken, check_canceled

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "ColoredFormatter",
    # Slugs
    "slugify",
    "unique_slug",
    # Cancellation
    "CancelToken",
    "check_canceled",
]
