"""Git operations service"""

import configparser
from pathlib import Path
from threading import Lock
from typing import Optional, Union

import git

from worktree_keeper.exceptions import (
    BranchCheckedOutError,
    BranchConfigCleanupError,
    BranchNotFoundError,
    BranchNotMergedError,
    GitOperationError,
    IsCurrentBranchError,
    NotARepositoryError,
    RevisionNotFoundError,
    WorktreeKeeperError,
)
from worktree_keeper.services.git.worktrees import (
    WorktreeService,
    command_error_detail,
    translate_command_error,
)
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)


class GitOperations:
    """Service for Git operations.

    The only place that talks to GitPython. Everything it returns is a plain
    string, a path, or one of the handles from ``services.git.worktrees``, and
    every failure is raised as a ``WorktreeKeeperError``.
    """

    def __init__(self, path: Union[str, Path]):
        """Open the repository containing ``path``.

        Args:
            path: Any directory inside the main checkout or a linked worktree

        Raises:
            NotARepositoryError: ``path`` is not inside a git working tree
        """
        repo = self._open(path)
        # common_dir may come back as "<git-dir>/../.." for a linked worktree
        common_dir = Path(repo.common_dir).resolve()
        if Path(repo.git_dir).resolve() != common_dir and common_dir.name == ".git":
            # Opened from a linked worktree; operate on the main checkout
            repo.close()
            repo = self._open(common_dir.parent)

        self.repo = repo
        self.repo_root = Path(repo.working_tree_dir).resolve()
        self._worktrees: Optional[WorktreeService] = None
        self._worktrees_lock = Lock()

        logger.debug(f"Git operations initialized for {self.repo_root}")

    @staticmethod
    def _open(path: Union[str, Path]) -> git.Repo:
        try:
            repo = git.Repo(str(path), search_parent_directories=True)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
            raise NotARepositoryError(str(path)) from None
        if repo.bare or repo.working_tree_dir is None:
            repo.close()
            raise NotARepositoryError(str(path))
        return repo

    def close(self):
        self.repo.close()

    @property
    def worktrees(self) -> WorktreeService:
        """Linked-worktree sub-facade, built once and shared by all callers."""
        if self._worktrees is None:
            with self._worktrees_lock:
                if self._worktrees is None:
                    self._worktrees = WorktreeService(self.repo)
        return self._worktrees

    def resolve_revision(self, revision: str = "") -> str:
        """Resolve a branch, tag, HEAD or hash to a full commit hash.

        An empty revision means HEAD. Annotated tags are peeled.

        Raises:
            RevisionNotFoundError: The revision does not name a commit
        """
        try:
            return self.repo.commit(revision or "HEAD").hexsha
        except (git.exc.BadName, git.exc.BadObject, ValueError, IndexError) as e:
            logger.debug(f"Could not resolve {revision or 'HEAD'}: {e}")
            raise RevisionNotFoundError(revision) from None

    def branch_exists(self, name: str) -> bool:
        """Check if a local branch reference exists."""
        if not name:
            return False
        try:
            self.repo.git.show_ref("--verify", "--quiet", f"refs/heads/{name}")
            return True
        except git.exc.GitCommandError:
            return False

    def current_branch(self) -> str:
        """Branch checked out in the main checkout, or "" when detached."""
        try:
            return self.repo.active_branch.name
        except TypeError:
            return ""

    def _head_commit(self) -> Optional[str]:
        try:
            return self.repo.head.commit.hexsha
        except ValueError:
            # unborn branch
            return None

    def delete_branch(self, name: str):
        """Delete a local branch and its config section, refusing unsafe deletes.

        Args:
            name: Short branch name

        Raises:
            IsCurrentBranchError: The branch is checked out in the main checkout
            BranchCheckedOutError: The branch is checked out in a linked worktree
            BranchNotFoundError: No such branch
            BranchNotMergedError: The branch tip is not an ancestor of HEAD
            BranchConfigCleanupError: The reference is gone but ``branch.<name>.*``
                config could not be removed
        """
        if name == self.current_branch():
            raise IsCurrentBranchError(name)
        if not self.branch_exists(name):
            raise BranchNotFoundError(name)
        holder = self.worktrees.checked_out_by(name)
        if holder is not None:
            raise BranchCheckedOutError(name, str(holder))

        tip = self.resolve_revision(f"refs/heads/{name}")
        head = self._head_commit()
        if head is None or not self.repo.is_ancestor(tip, head):
            logger.debug(f"Branch {name} ({tip[:7]}) is not merged into HEAD")
            raise BranchNotMergedError(name)

        try:
            self.repo.git.update_ref("-d", f"refs/heads/{name}", tip)
        except git.exc.GitCommandError as e:
            raise GitOperationError("delete_branch", name, command_error_detail(e)) from e
        logger.info(f"Deleted branch {name} (was {tip[:7]})")

        section = f'branch "{name}"'
        try:
            with self.repo.config_writer(config_level="repository") as writer:
                if writer.has_section(section):
                    writer.remove_section(section)
                    logger.debug(f"Removed config section [{section}]")
        except (OSError, configparser.Error) as e:
            raise BranchConfigCleanupError(name, str(e)) from e

    def _create_branch(self, name: str, commit: str):
        try:
            self.repo.git.branch("--no-track", name, commit)
        except git.exc.GitCommandError as e:
            raise translate_command_error(e, "create_branch", name) from e
        logger.info(f"Created branch {name} at {commit[:7]}")

    def _discard_worktree(self, slug: str):
        """Best-effort removal of metadata left by a failed add."""
        try:
            self.worktrees.remove(slug)
        except WorktreeKeeperError as e:
            logger.warning(f"Could not remove worktree metadata for {slug}: {e}")

    def add_with_new_branch(self, path: Union[str, Path], slug: str, branch: str, base_commit: str):
        """Create a linked worktree on a new branch starting at ``base_commit``.

        Exactly one branch reference is created and its name is ``branch``,
        never the slug.

        Raises:
            WorktreeAlreadyExistsError: The slug or the branch is already taken
            GitOperationError: Any other git failure
        """
        self.worktrees.add_detached(path, slug, base_commit)

        created = False
        try:
            self._create_branch(branch, base_commit)
            created = True
            with self.worktrees.open(path) as linked:
                linked.checkout(branch)
        except WorktreeKeeperError:
            if created:
                try:
                    self.repo.git.update_ref("-d", f"refs/heads/{branch}")
                except git.exc.GitCommandError as cleanup_error:
                    logger.warning(
                        f"Could not delete branch {branch} after failed add: "
                        f"{command_error_detail(cleanup_error)}"
                    )
            self._discard_worktree(slug)
            raise

    def add_with_existing_branch(self, path: Union[str, Path], slug: str, branch: str):
        """Create a linked worktree and check out an existing branch in it.

        Raises:
            BranchNotFoundError: ``branch`` does not exist
            WorktreeAlreadyExistsError: The slug is taken or git refuses
                because the branch is checked out elsewhere
            GitOperationError: Any other git failure
        """
        if not self.branch_exists(branch):
            raise BranchNotFoundError(branch)
        tip = self.resolve_revision(f"refs/heads/{branch}")

        self.worktrees.add_detached(path, slug, tip)
        try:
            with self.worktrees.open(path) as linked:
                linked.checkout(branch)
        except WorktreeKeeperError:
            self._discard_worktree(slug)
            raise
