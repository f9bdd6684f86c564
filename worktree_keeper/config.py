"""Configuration handling for worktree-keeper"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from worktree_keeper.constants import (
    APP_NAME,
    CONFIG_DIR_ENV,
    LOCK_TIMEOUT_ENV,
    LOG_FILE_NAME,
    REGISTRY_FILE_NAME,
    XDG_CONFIG_HOME_ENV,
)


def default_config_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Resolve the config root.

    Order: $WORKTREE_KEEPER_CONFIG_DIR, $XDG_CONFIG_HOME/worktree-keeper,
    ~/.config/worktree-keeper.
    """
    env = os.environ if environ is None else environ
    explicit = env.get(CONFIG_DIR_ENV)
    if explicit:
        return Path(explicit).expanduser()
    xdg = env.get(XDG_CONFIG_HOME_ENV)
    if xdg:
        return Path(xdg).expanduser() / APP_NAME
    return Path.home() / ".config" / APP_NAME


@dataclass
class Config:
    """Configuration for worktree-keeper with validation."""

    config_dir: Path = field(default_factory=default_config_dir)
    registry_file_name: str = REGISTRY_FILE_NAME

    # Seconds to wait for the registry lock before giving up
    lock_timeout: float = 10.0

    verbose: bool = False
    debug: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_config_dir()
        self._validate_registry_file_name()
        self._validate_lock_timeout()

    def _validate_config_dir(self):
        """Validate config_dir and make it absolute."""
        if not str(self.config_dir).strip():
            raise ValueError("config_dir cannot be empty")
        self.config_dir = Path(self.config_dir).expanduser().absolute()

    def _validate_registry_file_name(self):
        """Validate registry_file_name is a bare file name."""
        name = (self.registry_file_name or "").strip()
        if not name or Path(name).name != name:
            raise ValueError(f"registry_file_name must be a plain file name, got '{self.registry_file_name}'")
        self.registry_file_name = name

    def _validate_lock_timeout(self):
        """Validate lock_timeout is positive."""
        if self.lock_timeout <= 0:
            raise ValueError(f"lock_timeout must be positive, got {self.lock_timeout}")

    @property
    def registry_path(self) -> Path:
        return self.config_dir / self.registry_file_name

    @property
    def projects_root(self) -> Path:
        return self.config_dir / "projects"

    @property
    def log_path(self) -> Path:
        return self.config_dir / LOG_FILE_NAME

    def to_dict(self) -> dict:
        """Convert config to dictionary (used for --debug output)."""
        return {
            "config_dir": str(self.config_dir),
            "registry_file_name": self.registry_file_name,
            "lock_timeout": self.lock_timeout,
            "verbose": self.verbose,
            "debug": self.debug,
        }

    def get(self, key: str, default=None):
        """Get config value by key."""
        return getattr(self, key, default)

    @classmethod
    def from_dict(cls, config_dict: dict) -> "Config":
        """Create Config from dictionary."""
        known_fields = {
            "config_dir",
            "registry_file_name",
            "lock_timeout",
            "verbose",
            "debug",
        }

        filtered = {k: v for k, v in config_dict.items() if k in known_fields}
        return cls(**filtered)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "Config":
        """Build a Config from environment variables, then apply overrides."""
        env = os.environ if environ is None else environ
        values: dict = {"config_dir": default_config_dir(env)}

        raw_timeout = env.get(LOCK_TIMEOUT_ENV)
        if raw_timeout:
            try:
                values["lock_timeout"] = float(raw_timeout)
            except ValueError:
                raise ValueError(f"{LOCK_TIMEOUT_ENV} must be a number, got '{raw_timeout}'")

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_dict(values)
