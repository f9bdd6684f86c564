"""Linked worktree operations for worktree-keeper."""

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import git

from worktree_keeper.constants import GIT_LINK_NAME
from worktree_keeper.exceptions import (
    GitOperationError,
    WorktreeAlreadyExistsError,
    WorktreeInvalidError,
    WorktreeIOError,
    WorktreeKeeperError,
)
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)

# Fragments of git's stderr that mean "somebody else already owns this name"
ALREADY_EXISTS_MARKERS = (
    "already exists",
    "already checked out",
    "is already used by worktree",
)


def command_error_detail(error: git.exc.GitCommandError) -> str:
    """Extract a readable message from a GitCommandError.

    GitPython formats stderr as ``\\n  stderr: '...'``; the prefix and quotes
    are dropped so the message can be shown to users.
    """
    stderr = (error.stderr if hasattr(error, "stderr") else str(error)) or ""
    stderr = stderr.strip()
    if stderr.startswith("stderr:"):
        stderr = stderr[len("stderr:"):].strip()
        if len(stderr) >= 2 and stderr[0] == stderr[-1] == "'":
            stderr = stderr[1:-1].strip()
    status = error.status if hasattr(error, "status") else "unknown"

    if stderr:
        return f"{stderr} (exit {status})"
    return f"exit code {status}"


def translate_command_error(
    error: git.exc.GitCommandError,
    operation: str,
    branch: Optional[str] = None,
    name: Optional[str] = None,
) -> WorktreeKeeperError:
    """Map a GitCommandError onto the worktree-keeper error taxonomy.

    Args:
        error: The error raised by GitPython
        operation: Name of the failed operation
        branch: Branch the operation was acting on, if any
        name: Worktree name or slug reported on an "already exists" failure

    Returns:
        WorktreeAlreadyExistsError when git refused because the name is taken,
        GitOperationError otherwise
    """
    detail = command_error_detail(error)
    if any(marker in detail for marker in ALREADY_EXISTS_MARKERS):
        return WorktreeAlreadyExistsError(name or branch or operation, detail)
    return GitOperationError(operation, branch, detail)


@dataclass(frozen=True)
class WorktreeHead:
    """HEAD of a linked worktree."""

    hexsha: str
    branch: str = ""  # empty when detached

    @property
    def is_detached(self) -> bool:
        return not self.branch


class LinkedWorktree:
    """Handle on an opened linked worktree."""

    def __init__(self, path: Path, repo: git.Repo):
        self.path = path
        self._repo = repo

    def __enter__(self) -> "LinkedWorktree":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self._repo.close()

    def head(self) -> WorktreeHead:
        """Read the commit and branch checked out in this worktree."""
        try:
            hexsha = self._repo.git.rev_parse("--verify", "HEAD")
        except git.exc.GitCommandError as e:
            raise GitOperationError("read_head", message=command_error_detail(e)) from e

        try:
            branch = self._repo.git.symbolic_ref("--quiet", "--short", "HEAD")
        except git.exc.GitCommandError:
            # symbolic-ref exits 1 on a detached HEAD
            branch = ""
        return WorktreeHead(hexsha=hexsha.strip(), branch=branch.strip())

    def is_dirty(self) -> bool:
        """Check for staged, unstaged or untracked changes."""
        try:
            return self._repo.is_dirty(index=True, working_tree=True, untracked_files=True)
        except git.exc.GitCommandError as e:
            raise GitOperationError("status", message=command_error_detail(e)) from e

    def checkout(self, branch: str):
        """Check out an existing branch inside this worktree."""
        try:
            self._repo.git.checkout(branch)
            logger.debug(f"Checked out {branch} in {self.path}")
        except git.exc.GitCommandError as e:
            raise translate_command_error(e, "checkout", branch) from e


class WorktreeService:
    """Service for the repository's linked-worktree metadata.

    Each linked worktree has an administrative directory under
    ``<common-dir>/worktrees/<slug>``. The slug is the only identifier git
    knows the worktree by.
    """

    def __init__(self, repo: git.Repo):
        """Initialize the worktree service.

        Args:
            repo: Repository handle of the main checkout
        """
        self.repo = repo
        self.common_dir = Path(repo.common_dir).resolve()
        self.metadata_root = self.common_dir / "worktrees"

    def list(self) -> List[str]:
        """List the slugs of all linked worktrees known to git."""
        try:
            entries = sorted(p.name for p in self.metadata_root.iterdir() if p.is_dir())
        except FileNotFoundError:
            return []
        except OSError as e:
            raise WorktreeIOError("listing", str(self.metadata_root), str(e)) from e
        logger.debug(f"Found {len(entries)} linked worktrees")
        return entries

    def exists(self, slug: str) -> bool:
        """Check whether git holds metadata for the given slug."""
        return bool(slug) and (self.metadata_root / slug).is_dir()

    def metadata_target(self, slug: str) -> Optional[Path]:
        """Return the worktree directory recorded in the metadata for a slug.

        Returns:
            The directory git believes the worktree lives in, or None when the
            metadata is missing or unreadable
        """
        gitdir_file = self.metadata_root / slug / "gitdir"
        try:
            recorded = gitdir_file.read_text().strip()
        except OSError:
            return None
        if not recorded:
            return None
        return Path(recorded).parent

    def checked_out_by(self, branch: str) -> Optional[Path]:
        """Return the linked worktree that has ``branch`` checked out, if any."""
        wanted = f"ref: refs/heads/{branch}"
        for slug in self.list():
            try:
                head = (self.metadata_root / slug / "HEAD").read_text().strip()
            except OSError:
                continue
            if head == wanted:
                return self.metadata_target(slug) or self.metadata_root / slug
        return None

    def open(self, path: Union[str, Path]) -> LinkedWorktree:
        """Open a directory as a linked worktree of this repository.

        Raises:
            WorktreeInvalidError: The directory is not a linked worktree of
                this repository
        """
        path = Path(path)
        link = path / GIT_LINK_NAME
        if not link.is_file():
            raise WorktreeInvalidError(str(path), f"{GIT_LINK_NAME} link file is missing")

        try:
            repo = git.Repo(str(path))
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            raise WorktreeInvalidError(str(path), f"cannot open repository: {e}") from e

        try:
            common_dir = Path(repo.common_dir).resolve()
        except OSError as e:
            repo.close()
            raise WorktreeInvalidError(str(path), str(e)) from e
        if common_dir != self.common_dir:
            repo.close()
            raise WorktreeInvalidError(str(path), f"belongs to a different repository ({common_dir})")

        return LinkedWorktree(path, repo)

    def remove(self, slug: str) -> bool:
        """Remove the git metadata for a slug. The worktree directory is left alone.

        Returns:
            True if metadata was removed, False if there was none
        """
        metadata = self.metadata_root / slug
        if not slug or not metadata.is_dir():
            logger.debug(f"No worktree metadata for {slug}")
            return False
        try:
            shutil.rmtree(metadata)
        except OSError as e:
            raise WorktreeIOError("removing worktree metadata", str(metadata), str(e)) from e
        logger.info(f"Removed worktree metadata for {slug}")
        return True

    def add_detached(self, path: Union[str, Path], slug: str, commit: str):
        """Create a linked worktree with a detached HEAD at ``commit``.

        Git names the metadata after the last path component, so ``path``
        must end in ``slug``. No branch is created.

        Args:
            path: Absolute worktree directory (may exist if empty)
            slug: Identifier for the worktree metadata
            commit: Full commit hash to check out

        Raises:
            WorktreeAlreadyExistsError: Metadata for the slug already exists
            GitOperationError: git refused to add the worktree
        """
        path = Path(path)
        if path.name != slug:
            raise ValueError(f"worktree path {path} must end in its slug '{slug}'")
        if self.exists(slug):
            raise WorktreeAlreadyExistsError(slug, f"git already has worktree metadata for '{slug}'")

        try:
            self.repo.git.worktree("add", "--detach", str(path), commit)
        except git.exc.GitCommandError as e:
            raise translate_command_error(e, "worktree_add", name=slug) from e

        if not self.exists(slug):
            # git picked a different metadata name; find it and undo the add
            for other in self.list():
                target = self.metadata_target(other)
                if target is not None and os.path.realpath(target) == os.path.realpath(path):
                    self.remove(other)
            raise GitOperationError("worktree_add", message=f"worktree metadata was not created as '{slug}'")

        logger.info(f"Added detached worktree {slug} at {path} ({commit[:7]})")
