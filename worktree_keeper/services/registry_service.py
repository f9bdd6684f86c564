"""YAML-backed registry of projects and their worktrees."""

import errno
import fcntl
import os
import stat
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import yaml

from worktree_keeper.config import Config
from worktree_keeper.constants import GIT_LINK_NAME, REGISTRY_FILE_MODE
from worktree_keeper.exceptions import (
    ConflictError,
    InvalidNameError,
    ProjectNotRegisteredError,
    RegistryCorruptError,
    WorktreeIOError,
    WorktreeKeeperError,
    WorktreeNotRegisteredError,
)
from worktree_keeper.models.project import ProjectEntry
from worktree_keeper.models.worktree import WorktreeEntry, WorktreeStatus
from worktree_keeper.services.worktree_dirs import WorktreeDirProvider
from worktree_keeper.utils.cancel import CancelToken, check_canceled
from worktree_keeper.utils.logging import get_logger
from worktree_keeper.utils.text import unique_slug

logger = get_logger(__name__)

LOCK_POLL_INTERVAL = 0.05

StatusResolver = Callable[[WorktreeEntry], WorktreeStatus]


def filesystem_status(entry: WorktreeEntry) -> WorktreeStatus:
    """Status from the directory alone, used when no repository is at hand."""
    path = Path(entry.path)
    dir_present = path.is_dir()
    return WorktreeStatus.from_presence(dir_present, dir_present and (path / GIT_LINK_NAME).exists())


class WorktreeHandle:
    """A persisted worktree record plus its lazily computed status."""

    def __init__(self, entry: WorktreeEntry, resolver: Optional[StatusResolver] = None):
        self.entry = entry
        self._resolver = resolver or filesystem_status
        self._status: Optional[WorktreeStatus] = None

    @property
    def name(self) -> str:
        return self.entry.name

    @property
    def path(self) -> Path:
        return Path(self.entry.path)

    @property
    def slug(self) -> str:
        return self.path.name

    @property
    def branch(self) -> str:
        return self.entry.branch

    def status(self) -> WorktreeStatus:
        """Compute the health status on first use and remember it."""
        if self._status is None:
            try:
                self._status = self._resolver(self.entry)
            except (WorktreeKeeperError, OSError) as e:
                logger.debug(f"Could not resolve status of {self.name}: {e}")
                self._status = WorktreeStatus.failed(str(e))
        return self._status

    def refresh(self):
        self._status = None

    def is_prunable(self) -> bool:
        return self.status().is_prunable()

    def is_healthy(self) -> bool:
        return self.status().is_healthy()

    def __repr__(self) -> str:
        return f"WorktreeHandle({self.name!r}, {self.entry.path!r})"


class ProjectHandle:
    """Access to one project's worktrees.

    Reads always go back to the file, so a handle never serves stale entries.
    """

    def __init__(self, registry: "Registry", entry: ProjectEntry, status_resolver: Optional[StatusResolver] = None):
        self.registry = registry
        self.entry = entry
        self.status_resolver = status_resolver

    @property
    def slug(self) -> str:
        return self.entry.slug

    @property
    def name(self) -> str:
        return self.entry.name

    @property
    def root(self) -> Path:
        return Path(self.entry.root)

    def _current(self) -> ProjectEntry:
        projects = self.registry.load()
        if self.slug not in projects:
            raise ProjectNotRegisteredError(self.slug)
        self.entry = projects[self.slug]
        return self.entry

    def list_worktrees(self) -> List[WorktreeHandle]:
        """All registered worktrees of this project, in file order."""
        entries = self._current().worktrees.values()
        return [WorktreeHandle(entry, self.status_resolver) for entry in entries]

    def get_worktree(self, name: str) -> WorktreeHandle:
        """Look up a worktree by name.

        Raises:
            WorktreeNotRegisteredError: No entry under this name
        """
        entry = self._current().worktrees.get(name)
        if entry is None:
            raise WorktreeNotRegisteredError(name)
        return WorktreeHandle(entry, self.status_resolver)

    def put_worktree(self, entry: WorktreeEntry, cancel: Optional[CancelToken] = None) -> bool:
        """Insert or update a worktree entry.

        Unknown keys already stored for the entry are kept. Nothing is written
        when the stored record already matches.

        Returns:
            True if the file was rewritten
        """
        if not os.path.isabs(entry.path):
            raise ValueError(f"worktree path must be absolute: {entry.path}")

        def mutate(data: Dict[str, Any]) -> Tuple[bool, bool]:
            project = self.registry._raw_project(data, self.slug)
            worktrees = project.get("worktrees")
            if not isinstance(worktrees, dict):
                worktrees = project["worktrees"] = {}

            existing = worktrees.get(entry.name)
            record = dict(existing) if isinstance(existing, dict) else {}
            record["path"] = entry.path
            record["branch"] = entry.branch
            if record == existing:
                return False, False
            worktrees[entry.name] = record
            return True, True

        changed = self.registry._update(f"registering worktree {entry.name}", mutate, cancel)
        if changed:
            logger.info(f"Registered worktree {entry.name} -> {entry.path}")
        else:
            logger.debug(f"Registry already up to date for {entry.name}")
        return changed

    def delete_worktree(self, name: str, cancel: Optional[CancelToken] = None) -> bool:
        """Remove a worktree entry.

        Returns:
            True if an entry was removed, False if there was none
        """

        def mutate(data: Dict[str, Any]) -> Tuple[bool, bool]:
            project = self.registry._raw_project(data, self.slug)
            worktrees = project.get("worktrees")
            if not isinstance(worktrees, dict) or name not in worktrees:
                return False, False
            del worktrees[name]
            return True, True

        removed = self.registry._update(f"unregistering worktree {name}", mutate, cancel)
        if removed:
            logger.info(f"Unregistered worktree {name}")
        return removed


class Registry:
    """Projects and worktrees stored in ``<config_dir>/projects.yaml``.

    Every mutation is a read-modify-write of the whole file under an
    exclusive ``flock`` on a sibling ``.lock`` file, written atomically
    through a temp file in the same directory. Readers do not lock.
    """

    def __init__(self, config: Config):
        """Initialize the registry.

        Args:
            config: Resolved configuration
        """
        self.config = config
        self.path = config.registry_path
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.projects_root = config.projects_root
        self.lock_timeout = config.lock_timeout

    # File access

    def _read(self) -> Dict[str, Any]:
        try:
            text = self.path.read_text()
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise WorktreeIOError("reading", str(self.path), str(e)) from e

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise RegistryCorruptError(str(self.path), f"invalid YAML: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise RegistryCorruptError(str(self.path), "top level must be a mapping")
        return data

    def _file_mode(self) -> int:
        try:
            return stat.S_IMODE(self.path.stat().st_mode)
        except FileNotFoundError:
            return REGISTRY_FILE_MODE

    def _write(self, data: Dict[str, Any]):
        directory = self.path.parent
        fd, tmp_path = tempfile.mkstemp(dir=str(directory), prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                # mkstemp creates the file as 0600
                os.fchmod(f.fileno(), self._file_mode())
                yaml.safe_dump(data, f, sort_keys=False, default_flow_style=False, allow_unicode=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            self._discard_temp(tmp_path)
            raise WorktreeIOError("writing", str(self.path), str(e)) from e
        except BaseException:
            self._discard_temp(tmp_path)
            raise
        logger.debug(f"Wrote registry {self.path}")

    @staticmethod
    def _discard_temp(tmp_path: str):
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary file {tmp_path}: {e}")

    @contextmanager
    def _locked(self, cancel: Optional[CancelToken] = None):
        """Hold the registry lock, polling until ``lock_timeout``."""
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorktreeIOError("creating", str(self.lock_path.parent), str(e)) from e

        start = time.monotonic()
        with open(self.lock_path, "a+") as fh:
            while True:
                try:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except OSError as e:
                    if e.errno not in (errno.EAGAIN, errno.EACCES, errno.EWOULDBLOCK):
                        raise WorktreeIOError("locking", str(self.lock_path), str(e)) from e
                    if time.monotonic() - start >= self.lock_timeout:
                        raise ConflictError(str(self.path), self.lock_timeout) from None
                    check_canceled(cancel, "acquiring the registry lock")
                    time.sleep(LOCK_POLL_INTERVAL)

            logger.debug(f"Acquired registry lock {self.lock_path}")
            try:
                yield
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
                logger.debug("Released registry lock")

    def _update(self, step: str, mutate: Callable[[Dict[str, Any]], Tuple[bool, Any]], cancel: Optional[CancelToken] = None):
        """Run ``mutate`` on the raw document under the lock and save if it changed anything."""
        check_canceled(cancel, step)
        with self._locked(cancel):
            data = self._read()
            # refuse to rewrite a file we cannot fully understand
            self._decode(data)
            changed, result = mutate(data)
            if changed:
                check_canceled(cancel, step)
                self._write(data)
        return result

    def _raw_project(self, data: Dict[str, Any], slug: str) -> Dict[str, Any]:
        projects = data.get("projects")
        if not isinstance(projects, dict) or slug not in projects:
            raise ProjectNotRegisteredError(slug)
        return projects[slug]

    # Decoding

    def _corrupt(self, message: str) -> RegistryCorruptError:
        return RegistryCorruptError(str(self.path), message)

    def _decode(self, data: Dict[str, Any]) -> Dict[str, ProjectEntry]:
        projects = data.get("projects")
        if projects is None:
            return {}
        if not isinstance(projects, dict):
            raise self._corrupt("'projects' must be a mapping")

        decoded: Dict[str, ProjectEntry] = {}
        for slug, raw in projects.items():
            if not isinstance(slug, str) or not slug:
                raise self._corrupt(f"invalid project key {slug!r}")
            decoded[slug] = self._decode_project(slug, raw)
        return decoded

    def _decode_project(self, slug: str, raw: Any) -> ProjectEntry:
        if not isinstance(raw, dict):
            raise self._corrupt(f"project '{slug}' must be a mapping")

        name = raw.get("name") or slug
        root = raw.get("root")
        if not isinstance(name, str):
            raise self._corrupt(f"project '{slug}': name must be a string")
        if not isinstance(root, str) or not os.path.isabs(root):
            raise self._corrupt(f"project '{slug}': root must be an absolute path")

        raw_worktrees = raw.get("worktrees")
        if raw_worktrees is None:
            raw_worktrees = {}
        if not isinstance(raw_worktrees, dict):
            raise self._corrupt(f"project '{slug}': worktrees must be a mapping")

        dirs = WorktreeDirProvider(self.projects_root, slug)
        worktrees = {}
        for name_key, value in raw_worktrees.items():
            if not isinstance(name_key, str) or not name_key:
                raise self._corrupt(f"project '{slug}': invalid worktree key {name_key!r}")
            worktrees[name_key] = self._decode_worktree(dirs, name_key, value)
        return ProjectEntry(slug=slug, name=name, root=root, worktrees=worktrees)

    def _decode_worktree(self, dirs: WorktreeDirProvider, name: str, value: Any) -> WorktreeEntry:
        where = f"worktree '{name}' of project '{dirs.project_slug}'"
        if value is None:
            value = {}

        if isinstance(value, str):
            # legacy compact form: either an absolute path or a bare slug
            if os.path.isabs(value):
                path = value
            elif not value:
                path = str(dirs.path_for(name))
            elif "/" in value or value in (".", ".."):
                raise self._corrupt(f"{where}: invalid slug {value!r}")
            else:
                path = str(dirs.root / value)
            return WorktreeEntry(name=name, path=path, branch=name)

        if isinstance(value, dict):
            path = value.get("path") or ""
            branch = value.get("branch") or name
            if not isinstance(path, str):
                raise self._corrupt(f"{where}: path must be a string")
            if not isinstance(branch, str):
                raise self._corrupt(f"{where}: branch must be a string")
            if path and not os.path.isabs(path):
                raise self._corrupt(f"{where}: path must be absolute, got {path!r}")
            return WorktreeEntry(name=name, path=path or str(dirs.path_for(name)), branch=branch)

        raise self._corrupt(f"{where}: expected a mapping or a string, got {type(value).__name__}")

    # Public API

    def load(self) -> Dict[str, ProjectEntry]:
        """Read and decode the whole registry. A missing file is an empty registry."""
        return self._decode(self._read())

    def projects(self) -> List[ProjectHandle]:
        return [ProjectHandle(self, entry) for entry in self.load().values()]

    def project(self, slug: str) -> ProjectHandle:
        """Return the handle for a project slug.

        Raises:
            ProjectNotRegisteredError: No project under this slug
        """
        entry = self.load().get(slug)
        if entry is None:
            raise ProjectNotRegisteredError(slug)
        return ProjectHandle(self, entry)

    def lookup(self, work_dir: Union[str, Path]) -> Optional[ProjectHandle]:
        """Find the project whose root contains ``work_dir``.

        Nested roots resolve to the deepest (longest) match.
        """
        target = Path(work_dir).resolve()
        best: Optional[ProjectEntry] = None
        best_length = -1
        for entry in self.load().values():
            root = Path(entry.root).resolve()
            if target != root and root not in target.parents:
                continue
            if len(str(root)) > best_length:
                best, best_length = entry, len(str(root))
        if best is None:
            logger.debug(f"No registered project contains {target}")
            return None
        return ProjectHandle(self, best)

    def register_project(self, name: str, root: Union[str, Path], cancel: Optional[CancelToken] = None) -> ProjectHandle:
        """Register a project root, or rename it if the root is already registered.

        Args:
            name: Display name; the slug is derived from it
            root: Main checkout directory

        Returns:
            Handle of the new or existing project
        """
        if not name:
            raise InvalidNameError("project")
        resolved_root = str(Path(root).resolve())

        def mutate(data: Dict[str, Any]) -> Tuple[bool, str]:
            projects = data.get("projects")
            if not isinstance(projects, dict):
                projects = data["projects"] = {}

            for slug, raw in projects.items():
                if str(Path(raw["root"]).resolve()) == resolved_root:
                    if raw.get("name") == name:
                        return False, slug
                    raw["name"] = name
                    return True, slug

            slug = unique_slug(name, projects.keys())
            projects[slug] = {"name": name, "root": resolved_root, "worktrees": {}}
            return True, slug

        slug = self._update(f"registering project {name}", mutate, cancel)
        logger.info(f"Project {name} registered as {slug} ({resolved_root})")
        return self.project(slug)

    def unregister_project(self, slug: str, cancel: Optional[CancelToken] = None):
        """Forget a project. Its worktree directories are left on disk.

        Raises:
            ProjectNotRegisteredError: No project under this slug
        """

        def mutate(data: Dict[str, Any]) -> Tuple[bool, None]:
            projects = data.get("projects")
            if not isinstance(projects, dict) or slug not in projects:
                raise ProjectNotRegisteredError(slug)
            del projects[slug]
            return True, None

        self._update(f"unregistering project {slug}", mutate, cancel)
        logger.info(f"Project {slug} unregistered")
