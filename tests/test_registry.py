"""Tests for the YAML registry"""
import fcntl
import os
import stat
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import yaml

from worktree_keeper.exceptions import (
    ConflictError,
    InvalidNameError,
    OperationCanceledError,
    ProjectNotRegisteredError,
    RegistryCorruptError,
    WorktreeIOError,
    WorktreeNotRegisteredError,
)
from worktree_keeper.models.worktree import WorktreeEntry, WorktreeState, WorktreeStatus
from worktree_keeper.services.registry_service import Registry, WorktreeHandle
from worktree_keeper.utils.cancel import CancelToken


def write_registry(registry, text):
    registry.path.parent.mkdir(parents=True, exist_ok=True)
    registry.path.write_text(text)


def read_raw(registry):
    return yaml.safe_load(registry.path.read_text())


@pytest.fixture
def project_root(temp_dir):
    root = temp_dir / "repo"
    root.mkdir()
    return root


class TestRegistryRead:
    """Test loading and decoding."""

    def test_missing_file_is_empty(self, registry):
        assert registry.load() == {}
        assert registry.projects() == []

    def test_empty_file_is_empty(self, registry):
        write_registry(registry, "")
        assert registry.load() == {}

    def test_legacy_string_forms(self, registry, keeper_config):
        write_registry(registry, """
projects:
  proj:
    name: Proj
    root: /srv/proj
    worktrees:
      feat/x: feat-x
      elsewhere: /srv/old/elsewhere
      derived: ""
      bare:
      structured:
        path: ""
        branch: dev
""")
        project = registry.load()["proj"]
        root = keeper_config.projects_root / "proj" / "worktrees"
        worktrees = project.worktrees

        assert worktrees["feat/x"] == WorktreeEntry("feat/x", str(root / "feat-x"), "feat/x")
        assert worktrees["elsewhere"].path == "/srv/old/elsewhere"
        assert worktrees["derived"].path == str(root / "derived")
        assert worktrees["bare"].path == str(root / "bare")
        assert worktrees["bare"].branch == "bare"
        assert worktrees["structured"].path == str(root / "structured")
        assert worktrees["structured"].branch == "dev"

    def test_project_name_defaults_to_slug(self, registry):
        write_registry(registry, "projects:\n  proj:\n    root: /srv/proj\n")
        assert registry.project("proj").name == "proj"

    @pytest.mark.parametrize("text", [
        "projects: [unclosed",
        "- just\n- a list\n",
        "projects: []\n",
        "projects:\n  proj: 5\n",
        "projects:\n  proj:\n    root: relative/root\n",
        "projects:\n  proj:\n    root: /srv/proj\n    worktrees: [a, b]\n",
        "projects:\n  proj:\n    root: /srv/proj\n    worktrees:\n      a: [1, 2]\n",
        "projects:\n  proj:\n    root: /srv/proj\n    worktrees:\n      a: {path: relative/a}\n",
        "projects:\n  proj:\n    root: /srv/proj\n    worktrees:\n      a: ../escape\n",
    ])
    def test_corrupt(self, registry, text):
        write_registry(registry, text)
        with pytest.raises(RegistryCorruptError):
            registry.load()

    def test_unknown_project(self, registry):
        with pytest.raises(ProjectNotRegisteredError):
            registry.project("nope")


class TestRegistryWrite:
    """Test mutations and the on-disk format."""

    def test_register_project(self, registry, project_root):
        project = registry.register_project("My Project", project_root)

        assert project.slug == "my-project"
        assert project.name == "My Project"
        assert project.root == project_root
        assert read_raw(registry) == {
            "projects": {"my-project": {"name": "My Project", "root": str(project_root), "worktrees": {}}}
        }

    def test_register_same_root_renames(self, registry, project_root):
        registry.register_project("First", project_root)
        project = registry.register_project("Second", project_root)

        assert project.slug == "first"
        assert project.name == "Second"
        assert len(registry.projects()) == 1

    def test_register_same_name_other_root(self, registry, temp_dir):
        (temp_dir / "a").mkdir()
        (temp_dir / "b").mkdir()
        first = registry.register_project("proj", temp_dir / "a")
        second = registry.register_project("proj", temp_dir / "b")

        assert first.slug == "proj"
        assert second.slug == "proj-2"

    def test_new_file_is_world_readable(self, registry, project_root):
        registry.register_project("proj", project_root)
        assert stat.S_IMODE(registry.path.stat().st_mode) == 0o644

    def test_rewrite_keeps_file_mode(self, registry, project_root):
        project = registry.register_project("proj", project_root)
        registry.path.chmod(0o640)

        project.put_worktree(WorktreeEntry("a", str(project_root / "a"), "a"))

        assert stat.S_IMODE(registry.path.stat().st_mode) == 0o640
        assert "a" in read_raw(registry)["projects"]["proj"]["worktrees"]

    def test_empty_project_name(self, registry, project_root):
        with pytest.raises(InvalidNameError, match="project name cannot be empty"):
            registry.register_project("", project_root)
        assert not registry.path.exists()

    def test_unregister_project(self, registry, project_root):
        project = registry.register_project("proj", project_root)
        registry.unregister_project(project.slug)
        assert registry.load() == {}

        with pytest.raises(ProjectNotRegisteredError):
            registry.unregister_project(project.slug)

    def test_put_and_get_worktree(self, registry, project_root, keeper_config):
        project = registry.register_project("proj", project_root)
        path = str(keeper_config.projects_root / "proj" / "worktrees" / "feat-x")

        assert project.put_worktree(WorktreeEntry("feat/x", path, "feat/x"))

        handle = project.get_worktree("feat/x")
        assert handle.path == Path(path)
        assert handle.slug == "feat-x"
        assert read_raw(registry)["projects"]["proj"]["worktrees"] == {
            "feat/x": {"path": path, "branch": "feat/x"}
        }

    def test_put_requires_absolute_path(self, registry, project_root):
        project = registry.register_project("proj", project_root)
        with pytest.raises(ValueError):
            project.put_worktree(WorktreeEntry("a", "relative/a", "a"))

    def test_identical_put_does_not_write(self, registry, project_root):
        project = registry.register_project("proj", project_root)
        entry = WorktreeEntry("a", "/srv/a", "a")
        project.put_worktree(entry)

        with patch.object(registry, "_write", wraps=registry._write) as write:
            assert project.put_worktree(entry) is False
            write.assert_not_called()

    def test_get_missing_worktree(self, registry, project_root):
        project = registry.register_project("proj", project_root)
        with pytest.raises(WorktreeNotRegisteredError):
            project.get_worktree("nope")

    def test_delete_worktree(self, registry, project_root):
        project = registry.register_project("proj", project_root)
        project.put_worktree(WorktreeEntry("a", "/srv/a", "a"))

        assert project.delete_worktree("a") is True
        assert project.delete_worktree("a") is False
        assert project.list_worktrees() == []

    def test_unknown_keys_preserved(self, registry):
        write_registry(registry, """
version: 2
projects:
  proj:
    name: Proj
    root: /srv/proj
    color: blue
    worktrees:
      feat/x: feat-x
      a:
        path: /srv/a
        branch: a
        note: keep me
""")
        project = registry.project("proj")
        project.put_worktree(WorktreeEntry("a", "/srv/a2", "a"))
        project.put_worktree(WorktreeEntry("b", "/srv/b", "b"))

        raw = read_raw(registry)
        assert raw["version"] == 2
        assert raw["projects"]["proj"]["color"] == "blue"
        assert raw["projects"]["proj"]["worktrees"]["a"] == {"path": "/srv/a2", "branch": "a", "note": "keep me"}
        # untouched legacy entries stay in their original form
        assert raw["projects"]["proj"]["worktrees"]["feat/x"] == "feat-x"

    def test_updating_legacy_entry_writes_structured_form(self, registry, keeper_config):
        write_registry(registry, "projects:\n  proj:\n    root: /srv/proj\n    worktrees:\n      feat/x: feat-x\n")
        project = registry.project("proj")
        path = str(keeper_config.projects_root / "proj" / "worktrees" / "feat-x")

        assert project.put_worktree(WorktreeEntry("feat/x", path, "feat/x"))
        assert read_raw(registry)["projects"]["proj"]["worktrees"]["feat/x"] == {"path": path, "branch": "feat/x"}

    def test_corrupt_file_is_not_overwritten(self, registry):
        text = "projects:\n  proj:\n    root: /srv/proj\n    worktrees:\n      a: [1]\n"
        write_registry(registry, text)

        with pytest.raises(RegistryCorruptError):
            registry.register_project("other", "/srv/other")
        assert registry.path.read_text() == text

    def test_no_temp_files_left(self, registry, project_root):
        project = registry.register_project("proj", project_root)
        for name in ("a", "b", "c"):
            project.put_worktree(WorktreeEntry(name, f"/srv/{name}", name))
        project.delete_worktree("b")

        assert sorted(p.name for p in registry.path.parent.iterdir()) == ["projects.yaml", "projects.yaml.lock"]

    def test_failed_write_cleans_up(self, registry, project_root):
        project = registry.register_project("proj", project_root)
        before = registry.path.read_text()

        with patch("worktree_keeper.services.registry_service.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(WorktreeIOError, match="disk full"):
                project.put_worktree(WorktreeEntry("a", "/srv/a", "a"))

        assert registry.path.read_text() == before
        assert not [p for p in registry.path.parent.iterdir() if p.name.endswith(".tmp")]


class TestRegistryLocking:
    """Test lock contention and cancellation."""

    def test_conflict_when_lock_is_held(self, registry, project_root):
        project = registry.register_project("proj", project_root)
        before = registry.path.read_text()

        with open(registry.lock_path, "a+") as fh:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            try:
                with pytest.raises(ConflictError):
                    project.put_worktree(WorktreeEntry("a", "/srv/a", "a"))
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

        assert registry.path.read_text() == before
        # released lock can be taken again
        assert project.put_worktree(WorktreeEntry("a", "/srv/a", "a"))

    def test_lock_file_is_kept(self, registry, project_root):
        registry.register_project("proj", project_root)
        assert registry.lock_path.exists()

    def test_canceled_before_write(self, registry, project_root):
        project = registry.register_project("proj", project_root)
        before = registry.path.read_text()
        token = CancelToken()
        token.cancel()

        with pytest.raises(OperationCanceledError):
            project.put_worktree(WorktreeEntry("a", "/srv/a", "a"), token)
        assert registry.path.read_text() == before


class TestRegistryLookup:
    """Test project lookup by working directory."""

    def test_longest_prefix_wins(self, registry, temp_dir):
        outer = temp_dir / "work"
        inner = outer / "nested"
        (inner / "sub").mkdir(parents=True)
        (outer / "other").mkdir()
        registry.register_project("outer", outer)
        registry.register_project("inner", inner)

        assert registry.lookup(inner / "sub").slug == "inner"
        assert registry.lookup(inner).slug == "inner"
        assert registry.lookup(outer / "other").slug == "outer"

    def test_sibling_prefix_is_not_a_match(self, registry, temp_dir):
        (temp_dir / "app").mkdir()
        (temp_dir / "app-two").mkdir()
        registry.register_project("app", temp_dir / "app")

        assert registry.lookup(temp_dir / "app-two") is None

    def test_no_match(self, registry, temp_dir):
        assert registry.lookup(temp_dir) is None

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks not supported")
    def test_symlinked_work_dir(self, registry, temp_dir):
        root = temp_dir / "real"
        root.mkdir()
        link = temp_dir / "link"
        link.symlink_to(root)
        registry.register_project("real", root)

        assert registry.lookup(link).slug == "real"


class TestWorktreeHandle:
    """Test lazily computed status."""

    def test_status_is_memoized(self):
        resolver = Mock(return_value=WorktreeStatus.from_presence(True, True))
        handle = WorktreeHandle(WorktreeEntry("a", "/srv/a", "a"), resolver)

        assert handle.is_healthy()
        assert handle.status().is_healthy()
        assert resolver.call_count == 1

        handle.refresh()
        handle.status()
        assert resolver.call_count == 2

    def test_resolver_failure_is_error_state(self):
        resolver = Mock(side_effect=OSError("permission denied"))
        handle = WorktreeHandle(WorktreeEntry("a", "/srv/a", "a"), resolver)

        status = handle.status()
        assert status.state is WorktreeState.ERROR
        assert "permission denied" in status.error
        assert not handle.is_prunable()

    def test_default_resolver_uses_filesystem(self, temp_dir):
        handle = WorktreeHandle(WorktreeEntry("a", str(temp_dir / "missing"), "a"))
        assert handle.is_prunable()
