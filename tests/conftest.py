"""Pytest fixtures for worktree-keeper tests"""
import tempfile
from pathlib import Path

import git
import pytest

from worktree_keeper.config import Config
from worktree_keeper.core import WorktreeOrchestrator
from worktree_keeper.services.registry_service import Registry


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


def _configure(repo):
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")
        writer.set_value("commit", "gpgsign", "false")


@pytest.fixture
def make_commit():
    """Return a helper that writes a file and commits it in the given repo."""

    def _commit(repo, filename="file.txt", content="content\n", message=None):
        path = Path(repo.working_tree_dir) / filename
        path.write_text(content)
        repo.index.add([filename])
        return repo.index.commit(message or f"Update {filename}")

    return _commit


@pytest.fixture
def git_repo(temp_dir, make_commit):
    """Create a real Git repository with one commit on master."""
    repo_path = temp_dir / "test_repo"
    repo_path.mkdir()

    repo = git.Repo.init(repo_path)
    _configure(repo)
    make_commit(repo, "README.md", "# Test Repository\n", "Initial commit")

    # Normalize the default branch name regardless of init.defaultBranch
    repo.git.branch("-M", "master")

    yield repo

    repo.close()


@pytest.fixture
def other_repo(temp_dir, make_commit):
    """A second, unrelated repository."""
    repo_path = temp_dir / "other_repo"
    repo_path.mkdir()

    repo = git.Repo.init(repo_path)
    _configure(repo)
    make_commit(repo, "README.md", "# Other\n", "Initial commit")
    repo.git.branch("-M", "master")

    yield repo

    repo.close()


@pytest.fixture
def keeper_config(temp_dir):
    """Configuration rooted in the temporary directory."""
    return Config(config_dir=temp_dir / "config", lock_timeout=0.2)


@pytest.fixture
def registry(keeper_config):
    return Registry(keeper_config)


@pytest.fixture
def project(registry, git_repo):
    """The test repository registered as project 'test-project'."""
    return registry.register_project("Test Project", git_repo.working_tree_dir)


@pytest.fixture
def orchestrator(keeper_config, registry, project):
    orch = WorktreeOrchestrator.for_project(keeper_config, registry, project)
    yield orch
    orch.close()


@pytest.fixture
def worktrees_root(keeper_config):
    return keeper_config.projects_root / "test-project" / "worktrees"
