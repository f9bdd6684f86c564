"""Command-line interface for worktree-keeper"""

import argparse
import os
import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

from worktree_keeper.cli.args import parse_args
from worktree_keeper.config import Config
from worktree_keeper.core import WorktreeOrchestrator
from worktree_keeper.exceptions import (
    OperationCanceledError,
    ProjectNotRegisteredError,
    WorktreeKeeperError,
)
from worktree_keeper.models.worktree import WorktreeInfo, WorktreeStatus
from worktree_keeper.services.display_service import DisplayService
from worktree_keeper.services.git import GitOperations
from worktree_keeper.services.registry_service import ProjectHandle, Registry
from worktree_keeper.utils.cancel import CancelToken
from worktree_keeper.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)

EXIT_INTERRUPTED = 130


@contextmanager
def _interrupt_handler(cancel: CancelToken):
    """First Ctrl-C requests cancellation, the second one aborts."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum, frame):
        if cancel.canceled:
            raise KeyboardInterrupt
        cancel.cancel()
        logger.warning("Interrupted, stopping at the next safe point (press Ctrl-C again to abort)")

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _current_project(registry: Registry) -> ProjectHandle:
    cwd = Path(os.getcwd())
    project = registry.lookup(cwd)
    if project is None:
        raise ProjectNotRegisteredError(
            str(cwd), "not in a registered project directory (run `worktree-keeper init` first)"
        )
    return project


def cmd_init(args: argparse.Namespace, config: Config, display: DisplayService, cancel: CancelToken) -> int:
    git_ops = GitOperations(args.root or os.getcwd())
    try:
        repo_root = git_ops.repo_root
    finally:
        git_ops.close()

    registry = Registry(config)
    project = registry.register_project(args.name or repo_root.name, repo_root, cancel)
    display.success(f'Registered project "{project.name}" as {project.slug} ({project.root})')
    return 0


def cmd_add(args: argparse.Namespace, config: Config, display: DisplayService, cancel: CancelToken) -> int:
    registry = Registry(config)
    project = _current_project(registry)
    with WorktreeOrchestrator.for_project(config, registry, project) as orchestrator:
        path = orchestrator.create_worktree(args.branch, args.base, cancel=cancel)
    display.console.print(str(path), soft_wrap=True, highlight=False, markup=False)
    return 0


def _list_project(config: Config, registry: Registry, project: ProjectHandle) -> List[WorktreeInfo]:
    try:
        orchestrator = WorktreeOrchestrator.for_project(config, registry, project)
    except WorktreeKeeperError as e:
        # The project root is gone or no longer a repository; still show its entries
        logger.warning(f"Cannot open project {project.name}: {e}")
        return [
            WorktreeInfo(
                name=handle.name,
                path=str(handle.path),
                branch=handle.branch,
                status=WorktreeStatus.failed(f"opening repository: {e}"),
                project=project.name,
            )
            for handle in sorted(project.list_worktrees(), key=lambda h: h.name)
        ]
    with orchestrator:
        return orchestrator.list_worktrees()


def cmd_list(args: argparse.Namespace, config: Config, display: DisplayService, cancel: CancelToken) -> int:
    registry = Registry(config)
    projects = registry.projects() if args.all else [_current_project(registry)]

    worktrees: List[WorktreeInfo] = []
    for project in projects:
        worktrees.extend(_list_project(config, registry, project))

    if not worktrees:
        if not args.quiet:
            display.notice("No worktrees registered. Use `worktree-keeper add <branch>` to create one.")
        return 0

    if args.quiet:
        display.display_worktree_names(worktrees)
        return 0

    display.display_worktree_table(worktrees, show_project=args.all)
    display.display_stale_warning(sum(1 for info in worktrees if info.status.is_prunable()))
    return 0


def cmd_prune(args: argparse.Namespace, config: Config, display: DisplayService, cancel: CancelToken) -> int:
    registry = Registry(config)
    project = _current_project(registry)
    if not project.list_worktrees():
        display.print("No worktrees registered for this project.")
        return 0

    with WorktreeOrchestrator.for_project(config, registry, project) as orchestrator:
        result = orchestrator.prune_stale_worktrees(args.dry_run, cancel=cancel)

    display.display_prune_result(result, args.dry_run)
    if not result.ok:
        display.error(f"{len(result.failed)} of {len(result.prunable)} entries failed")
        return 1
    return 0


def cmd_remove(args: argparse.Namespace, config: Config, display: DisplayService, cancel: CancelToken) -> int:
    registry = Registry(config)
    project = _current_project(registry)

    removed = 0
    errors = {}
    canceled = False
    with WorktreeOrchestrator.for_project(config, registry, project) as orchestrator:
        for branch in args.branches:
            try:
                result = orchestrator.remove_worktree(
                    branch,
                    force=args.force,
                    delete_branch=args.delete_branch,
                    cancel=cancel,
                )
            except OperationCanceledError as e:
                errors[branch] = e
                canceled = True
                break
            except WorktreeKeeperError as e:
                errors[branch] = e
                continue
            removed += 1
            display.display_branch_outcome(result)

    display.display_remove_summary(removed, errors)
    if canceled:
        return EXIT_INTERRUPTED
    return 1 if errors else 0


COMMANDS = {
    "init": cmd_init,
    "add": cmd_add,
    "list": cmd_list,
    "prune": cmd_prune,
    "remove": cmd_remove,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    args = parse_args(argv)
    display = DisplayService()

    try:
        config = Config.from_env(verbose=args.verbose, debug=args.debug)
    except ValueError as e:
        display.error(str(e))
        return 1

    setup_logging(verbose=args.verbose, debug=args.debug, log_file=config.log_path if args.debug else None)
    if args.debug:
        display.notice("[yellow]Debug mode enabled[/yellow]")
        for key, value in config.to_dict().items():
            logger.debug(f"  {key}: {value}")

    cancel = CancelToken()
    try:
        with _interrupt_handler(cancel):
            return COMMANDS[args.command](args, config, display, cancel)
    except (KeyboardInterrupt, OperationCanceledError):
        display.notice("\n[yellow]Operation cancelled by user[/yellow]")
        return EXIT_INTERRUPTED
    except WorktreeKeeperError as e:
        display.error(str(e))
        if args.debug:
            display.err_console.print_exception()
        return 1


if __name__ == "__main__":
    sys.exit(main())
