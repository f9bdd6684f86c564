"""Command-line argument parsing for worktree-keeper."""

import argparse
from typing import List, Optional

from worktree_keeper.__version__ import __version__
from worktree_keeper.constants import APP_NAME


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one subcommand per operation."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Manage git worktrees for registered projects",
        epilog="Worktrees live under $WORKTREE_KEEPER_CONFIG_DIR/projects "
        "(default: ~/.config/worktree-keeper/projects).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument(
        "--debug", action="store_true", help="Show debug information and write a debug log"
    )
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {__version__}")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    init = subparsers.add_parser("init", help="Register the current git repository as a project")
    init.add_argument("name", nargs="?", help="Project name (default: directory name)")
    init.add_argument("--root", metavar="PATH", help="Directory inside the repository (default: cwd)")

    add = subparsers.add_parser("add", help="Create a worktree for a branch")
    add.add_argument("branch", help="Branch name; created from --base if it does not exist")
    add.add_argument(
        "--base",
        default="",
        metavar="REF",
        help="Revision a new branch starts from (default: HEAD)",
    )

    list_cmd = subparsers.add_parser("list", aliases=["ls"], help="List worktrees and their health")
    list_cmd.add_argument("-q", "--quiet", action="store_true", help="Only print branch names")
    list_cmd.add_argument(
        "-a", "--all", action="store_true", help="List worktrees of every registered project"
    )

    prune = subparsers.add_parser("prune", help="Remove stale registry entries")
    prune.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be removed without removing anything",
    )

    remove = subparsers.add_parser("remove", aliases=["rm"], help="Remove worktrees")
    remove.add_argument("branches", nargs="+", metavar="BRANCH", help="Worktrees to remove")
    remove.add_argument(
        "-f", "--force", action="store_true", help="Remove even with uncommitted changes"
    )
    remove.add_argument(
        "--delete-branch",
        action="store_true",
        help="Also delete the branch if it is fully merged",
    )

    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    args = build_parser().parse_args(argv)
    aliases = {"ls": "list", "rm": "remove"}
    args.command = aliases.get(args.command, args.command)
    return args
