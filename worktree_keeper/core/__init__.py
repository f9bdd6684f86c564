"""Core worktree lifecycle for worktree-keeper."""

from .orchestrator import WorktreeOrchestrator

__all__ = ["WorktreeOrchestrator"]
