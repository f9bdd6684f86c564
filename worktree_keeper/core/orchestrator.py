"""Worktree lifecycle: keeps registry, directory and git metadata in agreement."""

import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from worktree_keeper.config import Config
from worktree_keeper.constants import GIT_LINK_NAME
from worktree_keeper.exceptions import (
    BranchNotFoundError,
    BranchNotMergedError,
    InvalidNameError,
    OperationCanceledError,
    WorktreeAlreadyExistsError,
    WorktreeDirtyError,
    WorktreeInvalidError,
    WorktreeKeeperError,
)
from worktree_keeper.models.worktree import (
    BranchOutcome,
    PruneResult,
    RemoveResult,
    WorktreeEntry,
    WorktreeInfo,
    WorktreeStatus,
)
from worktree_keeper.services.git import GitOperations
from worktree_keeper.services.registry_service import ProjectHandle, Registry, WorktreeHandle
from worktree_keeper.services.worktree_dirs import WorktreeDirProvider
from worktree_keeper.utils.cancel import CancelToken, check_canceled
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)


def _same_path(a: Path, b: Path) -> bool:
    return os.path.realpath(a) == os.path.realpath(b)


class WorktreeOrchestrator:
    """Creates, inspects, prunes and removes the worktrees of one project.

    Each worktree is a triple: a registry entry, a directory from the
    provider and linked-worktree metadata in the repository. The registry
    is always written last, so an interrupted operation never leaves an
    entry pointing at something that was not created.
    """

    def __init__(self, git_ops: GitOperations, dirs: WorktreeDirProvider, project: ProjectHandle):
        """Initialize the orchestrator.

        Args:
            git_ops: Facade over the project's repository
            dirs: Workspace layout for the project's worktrees
            project: Registry handle of the project
        """
        self.git = git_ops
        self.dirs = dirs
        self.project = project
        self.project.status_resolver = self.resolve_status

    @classmethod
    def for_project(cls, config: Config, registry: Registry, project: ProjectHandle) -> "WorktreeOrchestrator":
        """Wire the facade and provider for a registered project."""
        git_ops = GitOperations(project.root)
        dirs = WorktreeDirProvider(config.projects_root, project.slug)
        return cls(git_ops, dirs, project)

    def close(self):
        self.git.close()

    def __enter__(self) -> "WorktreeOrchestrator":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # Status

    def resolve_status(self, entry: WorktreeEntry) -> WorktreeStatus:
        """Compute the health of a registry entry from the filesystem and git."""
        path = Path(entry.path)
        if not path.is_absolute():
            return WorktreeStatus.failed(f"path is not absolute: {entry.path}")

        try:
            dir_present = path.is_dir()
            if not dir_present and path.exists():
                return WorktreeStatus.failed(f"{path} is not a directory")
            if dir_present:
                git_link_present = (path / GIT_LINK_NAME).exists()
            else:
                git_link_present = self.git.worktrees.exists(path.name)
        except OSError as e:
            return WorktreeStatus.failed(str(e))
        return WorktreeStatus.from_presence(dir_present, git_link_present)

    # Create

    def create_worktree(
        self,
        name: str,
        base: str = "",
        *,
        reuse_existing: bool = True,
        cancel: Optional[CancelToken] = None,
    ) -> Path:
        """Create (or reuse) the worktree for a branch.

        Args:
            name: Branch name; may contain slashes
            base: Revision a new branch starts from, empty for HEAD. Ignored
                when the branch already exists.
            reuse_existing: Return an existing healthy worktree instead of failing
            cancel: Token checked before each mutation

        Returns:
            Absolute path of the worktree, checked out on ``name``

        Raises:
            InvalidNameError: ``name`` is empty
            WorktreeAlreadyExistsError: The slug belongs to another name, the
                worktree exists and reuse is off, or a concurrent create won
            WorktreeInvalidError: The directory has content that is not a
                linked worktree of this repository
        """
        if not name:
            raise InvalidNameError("worktree")

        slug = self.dirs.slug_for(name)
        for handle in self.project.list_worktrees():
            if handle.name != name and handle.slug == slug:
                raise WorktreeAlreadyExistsError(
                    name, f"worktree '{name}' would share directory '{slug}' with '{handle.name}'"
                )
            if handle.name == name and not reuse_existing and handle.is_healthy():
                raise WorktreeAlreadyExistsError(name)

        path = self.dirs.path_for(name)
        if path.is_dir() and any(path.iterdir()):
            logger.debug(f"{path} is not empty, trying to reuse it")
            return self._adopt(name, path, cancel)

        check_canceled(cancel, "creating worktree directory")
        self._clear_orphaned_metadata(name, slug)
        path = self.dirs.get_or_create_dir(name)

        check_canceled(cancel, "creating git worktree")
        try:
            if self.git.branch_exists(name):
                logger.debug(f"Branch {name} exists, checking it out")
                self.git.add_with_existing_branch(path, slug, name)
            else:
                commit = self.git.resolve_revision(base)
                logger.debug(f"Creating branch {name} from {base or 'HEAD'} ({commit[:7]})")
                self.git.add_with_new_branch(path, slug, name, commit)
        except WorktreeKeeperError as e:
            self._cleanup_failed_create(slug, path, e)
            raise e.within("creating git worktree")

        self.project.put_worktree(WorktreeEntry(name=name, path=str(path), branch=name), cancel)
        logger.info(f"Created worktree {name} at {path}")
        return path

    def _adopt(self, name: str, path: Path, cancel: Optional[CancelToken]) -> Path:
        try:
            with self.git.worktrees.open(path) as linked:
                head = linked.head()
        except WorktreeInvalidError:
            raise
        except WorktreeKeeperError as e:
            raise WorktreeInvalidError(str(path), str(e)) from e

        if head.branch != name:
            logger.warning(f"Worktree at {path} has {head.branch or 'a detached HEAD'} checked out, not {name}")
        self.project.put_worktree(WorktreeEntry(name=name, path=str(path), branch=name), cancel)
        return path

    def _clear_orphaned_metadata(self, name: str, slug: str):
        """Drop git metadata left behind for this slug by an earlier run.

        Metadata whose worktree directory is still live, here or elsewhere,
        is not an orphan and blocks the create.
        """
        worktrees = self.git.worktrees
        if not worktrees.exists(slug):
            return

        target = worktrees.metadata_target(slug)
        if target is not None and (target / GIT_LINK_NAME).exists():
            raise WorktreeAlreadyExistsError(
                name, f"git worktree '{slug}' already exists at {target}"
            ).within("creating git worktree")

        logger.info(f"Removing orphaned worktree metadata for {slug}")
        try:
            worktrees.remove(slug)
        except WorktreeKeeperError as e:
            logger.warning(f"Could not remove orphaned worktree metadata for {slug}: {e}")

    def _cleanup_failed_create(self, slug: str, path: Path, error: WorktreeKeeperError):
        worktrees = self.git.worktrees
        if isinstance(error, WorktreeAlreadyExistsError) and worktrees.exists(slug):
            # another process owns the slug now; leave its worktree alone
            logger.debug(f"Worktree {slug} was created concurrently, not cleaning up")
            return

        try:
            worktrees.remove(slug)
        except WorktreeKeeperError as e:
            logger.warning(f"Could not remove worktree metadata for {slug}: {e}")
        try:
            self.dirs.remove_tree(path)
        except WorktreeKeeperError as e:
            logger.warning(f"Could not remove {path} after failed create: {e}")

    # Remove

    def _check_safe_to_remove(self, handle: WorktreeHandle):
        path = handle.path
        if not path.exists():
            return
        try:
            with self.git.worktrees.open(path) as linked:
                dirty = linked.is_dirty()
        except WorktreeKeeperError as e:
            raise WorktreeInvalidError(
                str(path), f"cannot check for uncommitted changes ({e}); use --force to remove anyway"
            ) from e
        if dirty:
            raise WorktreeDirtyError(handle.name)

    def remove_worktree(
        self,
        name: str,
        *,
        force: bool = False,
        delete_branch: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> RemoveResult:
        """Remove a worktree's metadata, directory and registry entry.

        Args:
            name: Registered worktree name
            force: Skip the uncommitted-changes check
            delete_branch: Also delete the branch once the worktree is gone
            cancel: Token checked before each mutation

        Returns:
            RemoveResult with the branch outcome. An unmerged branch is kept
            and reported as ``BranchOutcome.NOT_MERGED``.

        Raises:
            WorktreeNotRegisteredError: No entry under this name
            WorktreeDirtyError: Uncommitted changes and not ``force``
            WorktreeInvalidError: The directory cannot be inspected and not ``force``
        """
        handle = self.project.get_worktree(name)
        path = handle.path
        slug = handle.slug

        if not force:
            self._check_safe_to_remove(handle)

        check_canceled(cancel, "removing git worktree")
        worktrees = self.git.worktrees
        target = worktrees.metadata_target(slug)
        if target is not None and not _same_path(target, path):
            logger.warning(f"Worktree metadata '{slug}' belongs to {target}, leaving it")
        else:
            try:
                worktrees.remove(slug)
            except WorktreeKeeperError as e:
                raise e.within("removing git worktree")

        check_canceled(cancel, "removing worktree directory")
        try:
            if _same_path(path, self.dirs.path_for(name)):
                self.dirs.delete_dir(name)
            elif path.exists() and not (path / GIT_LINK_NAME).is_file():
                # Outside the worktrees root, only directories carrying a worktree link are deleted
                logger.warning(f"{path} is not a linked worktree, leaving the directory in place")
            else:
                self.dirs.remove_tree(path)
        except WorktreeKeeperError as e:
            raise e.within("removing worktree directory")

        self.project.delete_worktree(name, cancel)
        result = RemoveResult(name=name, path=str(path), branch=handle.branch or name)
        logger.info(f"Removed worktree {name}")

        if delete_branch:
            result.branch_outcome = self._delete_branch_after_remove(result.branch)
        return result

    def _delete_branch_after_remove(self, branch: str) -> BranchOutcome:
        try:
            self.git.delete_branch(branch)
        except BranchNotFoundError:
            logger.debug(f"Branch {branch} already gone")
            return BranchOutcome.NOT_FOUND
        except BranchNotMergedError:
            logger.warning(f"Branch {branch} has unmerged commits, keeping it")
            return BranchOutcome.NOT_MERGED
        except WorktreeKeeperError as e:
            raise e.within("worktree removed but deleting branch")
        return BranchOutcome.DELETED

    def delete_branch(self, name: str):
        """Delete a branch with the facade's safety checks."""
        self.git.delete_branch(name)

    # List

    def _describe(self, handle: WorktreeHandle) -> WorktreeInfo:
        status = handle.status()
        info = WorktreeInfo(
            name=handle.name,
            path=str(handle.path),
            status=status,
            branch=handle.branch,
            project=self.project.name,
        )
        if not status.dir_present:
            return info

        try:
            info.modified = datetime.fromtimestamp(handle.path.stat().st_mtime)
        except OSError as e:
            logger.debug(f"Could not stat {handle.path}: {e}")

        if status.is_healthy():
            try:
                with self.git.worktrees.open(handle.path) as linked:
                    head = linked.head()
                info.head = head.hexsha
                info.branch = head.branch or handle.branch
                info.is_detached = head.is_detached
            except WorktreeKeeperError as e:
                info.status = WorktreeStatus.failed(f"opening worktree: {e}", True, True)
        return info

    def _orphans(self, registered_slugs: set) -> List[WorktreeInfo]:
        """Git metadata under our worktrees root with no registry entry."""
        worktrees = self.git.worktrees
        try:
            slugs = worktrees.list()
        except WorktreeKeeperError as e:
            logger.warning(f"Could not list git worktrees: {e}")
            return []

        orphans = []
        for slug in slugs:
            if slug in registered_slugs:
                continue
            target = worktrees.metadata_target(slug)
            if target is None or not self.dirs.contains(target):
                continue
            status = WorktreeStatus.failed(
                "git worktree has no registry entry",
                dir_present=target.is_dir(),
                git_link_present=True,
            )
            orphans.append(WorktreeInfo(name=slug, path=str(target), status=status, project=self.project.name))
        return orphans

    def list_worktrees(self) -> List[WorktreeInfo]:
        """Describe every registered worktree, then any orphaned git metadata.

        Read-only: unhealthy entries are reported, never fixed.
        """
        handles = sorted(self.project.list_worktrees(), key=lambda h: h.name)
        infos = [self._describe(handle) for handle in handles]
        infos.extend(self._orphans({handle.slug for handle in handles}))
        return infos

    # Prune

    def prune_stale_worktrees(self, dry_run: bool = False, *, cancel: Optional[CancelToken] = None) -> PruneResult:
        """Drop registry entries whose directory and git metadata are both gone.

        Only the registry is touched. Entries in any other state, including
        ``error``, are kept.

        Args:
            dry_run: Report what would be removed without writing
            cancel: Token checked before each deletion

        Returns:
            PruneResult listing prunable, removed and failed entries
        """
        result = PruneResult()
        handles = sorted(self.project.list_worktrees(), key=lambda h: h.name)
        stale = [handle for handle in handles if handle.is_prunable()]
        result.prunable = [handle.name for handle in stale]

        if dry_run:
            logger.debug(f"Dry run: {len(stale)} prunable entries")
            return result

        for handle in stale:
            handle.refresh()
            if not handle.is_prunable():
                logger.info(f"{handle.name} is no longer stale, keeping it")
                continue
            try:
                if self.project.delete_worktree(handle.name, cancel):
                    result.removed.append(handle.name)
            except OperationCanceledError:
                raise
            except WorktreeKeeperError as e:
                logger.warning(f"Could not prune {handle.name}: {e}")
                result.failed[handle.name] = e
        return result
