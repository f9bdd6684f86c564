"""Workspace directory layout for worktrees."""

import shutil
from pathlib import Path
from typing import Union

from worktree_keeper.constants import WORKTREE_DIR_MODE
from worktree_keeper.exceptions import InvalidNameError, WorktreeDirNotFoundError, WorktreeIOError
from worktree_keeper.utils.logging import get_logger
from worktree_keeper.utils.text import slugify

logger = get_logger(__name__)


class WorktreeDirProvider:
    """Owns ``<projects_root>/<project_slug>/worktrees/``.

    Every path handed out is absolute, lives directly under the worktrees
    root and ends in the slug of the worktree name. The provider never looks
    inside a directory.
    """

    def __init__(self, projects_root: Union[str, Path], project_slug: str):
        """Initialize the provider.

        Args:
            projects_root: Directory holding one subdirectory per project
            project_slug: Slug of the project the worktrees belong to
        """
        self.project_slug = project_slug
        self.root = (Path(projects_root) / project_slug / "worktrees").absolute()

    def slug_for(self, name: str) -> str:
        if not name:
            raise InvalidNameError("worktree")
        return slugify(name)

    def path_for(self, name: str) -> Path:
        """Directory a worktree with this name lives in. No I/O."""
        return self.root / self.slug_for(name)

    def contains(self, path: Union[str, Path]) -> bool:
        """Check whether a path lies directly under the worktrees root."""
        return Path(path).absolute().parent == self.root

    def get_or_create_dir(self, name: str) -> Path:
        """Return the worktree directory, creating it if needed."""
        path = self.path_for(name)
        try:
            path.mkdir(mode=WORKTREE_DIR_MODE, parents=True, exist_ok=True)
        except OSError as e:
            raise WorktreeIOError("creating", str(path), str(e)) from e
        logger.debug(f"Worktree directory ready: {path}")
        return path

    def get_dir(self, name: str) -> Path:
        """Return the worktree directory without creating it.

        Raises:
            WorktreeDirNotFoundError: The directory does not exist
        """
        path = self.path_for(name)
        if not path.is_dir():
            raise WorktreeDirNotFoundError(str(path))
        return path

    def delete_dir(self, name: str):
        """Remove the worktree directory recursively. Missing is fine."""
        self.remove_tree(self.path_for(name))

    def remove_tree(self, path: Union[str, Path]):
        """Remove a worktree directory given by path, e.g. a legacy entry outside the root."""
        path = Path(path)
        if not path.exists():
            logger.debug(f"Worktree directory already absent: {path}")
            return
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise WorktreeIOError("removing", str(path), str(e)) from e
        logger.info(f"Removed worktree directory {path}")
