"""Display service for worktree information"""

from typing import Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from worktree_keeper.constants import APP_NAME, PROJECT_COLUMN, WORKTREE_COLUMNS
from worktree_keeper.formatters import count_word, format_head, format_status, format_time_ago
from worktree_keeper.models.worktree import BranchOutcome, PruneResult, RemoveResult, WorktreeInfo
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)


class DisplayService:
    """Renders command results. Tables and results go to stdout, notices to stderr."""

    def __init__(self, console: Optional[Console] = None, err_console: Optional[Console] = None):
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)

    # Generic messages

    def print(self, message: str):
        self.console.print(message, soft_wrap=True, highlight=False)

    def notice(self, message: str):
        self.err_console.print(message, soft_wrap=True, highlight=False)

    def success(self, message: str):
        self.err_console.print(f"[green]{escape(message)}[/green]", soft_wrap=True, highlight=False)

    def warning(self, message: str):
        self.err_console.print(f"[yellow]Warning: {escape(message)}[/yellow]", soft_wrap=True, highlight=False)

    def error(self, message: str):
        self.err_console.print(f"[red]Error: {escape(message)}[/red]", soft_wrap=True, highlight=False)

    # list

    def display_worktree_table(self, worktrees: List[WorktreeInfo], show_project: bool = False):
        """Display the BRANCH PATH HEAD MODIFIED STATUS table."""
        table = Table()

        columns = ([PROJECT_COLUMN] if show_project else []) + WORKTREE_COLUMNS
        for col in columns:
            table.add_column(
                col.label,
                min_width=col.width or None,
                no_wrap=col.key != "path",
                overflow="fold",
            )

        for info in worktrees:
            row = [
                escape(info.display_branch),
                escape(info.path),
                format_head(info),
                format_time_ago(info.modified),
                format_status(info.status),
            ]
            if show_project:
                row.insert(0, escape(info.project))
            table.add_row(*row)

        self.console.print(table)

    def display_worktree_names(self, worktrees: List[WorktreeInfo]):
        for info in worktrees:
            self.console.print(info.name, soft_wrap=True, highlight=False, markup=False)

    def display_stale_warning(self, stale_count: int):
        if not stale_count:
            return
        self.err_console.print()
        self.warning(f"{count_word(stale_count, 'stale entry', 'stale entries')} detected. "
                     f"Run `{APP_NAME} prune` to clean up.")

    # prune

    def display_prune_result(self, result: PruneResult, dry_run: bool):
        """Report pruned (or prunable) entries and per-entry failures."""
        if not result.prunable:
            self.print("No stale entries to prune.")
            return

        if dry_run:
            for name in result.prunable:
                self.print(f"Would remove: {escape(name)}")
            self.print(f"\n{count_word(len(result.prunable), 'stale entry', 'stale entries')} would be removed. "
                       "Run without --dry-run to remove.")
            return

        for name in result.removed:
            self.print(f"Removed: {escape(name)}")
        for name, error in result.failed.items():
            self.err_console.print(f"[red]Failed to remove {escape(name)}: {escape(str(error))}[/red]", soft_wrap=True)
        if result.removed:
            self.print(f"\n{count_word(len(result.removed), 'stale entry', 'stale entries')} removed.")

    # remove

    def display_branch_outcome(self, result: RemoveResult):
        branch = result.branch
        if result.branch_outcome is BranchOutcome.DELETED:
            self.notice(f'Deleted branch "{escape(branch)}"')
        elif result.branch_outcome is BranchOutcome.NOT_MERGED:
            self.warning(f'branch "{branch}" has unmerged commits')
            self.notice(f"  To force delete: git branch -D {escape(branch)}")

    def display_remove_summary(self, removed: int, errors: Dict[str, Exception]):
        """Report the success count, then every failure."""
        if removed:
            self.success(f"Removed {count_word(removed, 'worktree', 'worktrees')}")
        for name, error in errors.items():
            self.error(f"{name}: {error}")
