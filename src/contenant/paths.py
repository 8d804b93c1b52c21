"""Base directory lookup and tilde expansion.

Directories follow the XDG base directory layout, each suffixed with the
application name:

- config: $XDG_CONFIG_HOME/contenant (default ~/.config/contenant)
- cache:  $XDG_CACHE_HOME/contenant  (default ~/.cache/contenant)
- state:  $XDG_STATE_HOME/contenant  (default ~/.local/state/contenant)

AppDirs is passed to the pipeline rather than looked up globally, so tests
can point it at fabricated directories.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME, CONFIG_FILENAME, DOCKERFILE_NAME, PROJECT_CONFIG_DIR
from .errors import PathError


def expand_tilde(value: str, home: str | Path) -> str:
    """Expand a leading ``~`` in value against the given home directory.

    Only ``~`` and ``~/...`` are expanded; ``~user`` forms and strings without
    a leading tilde are returned unchanged.

    Examples:
        >>> expand_tilde("~/.ssh", "/home/claude")
        '/home/claude/.ssh'
        >>> expand_tilde("/etc/hosts", "/home/claude")
        '/etc/hosts'
    """
    if value == "~":
        return str(home)
    if value.startswith("~/"):
        return f"{str(home).rstrip('/')}/{value[2:]}"
    return value


def host_home() -> Path:
    """Return the invoking user's home directory.

    Raises:
        PathError: If the home directory cannot be determined.
    """
    try:
        return Path.home()
    except RuntimeError as e:
        raise PathError("Cannot determine home directory (HOME not set)") from e


def _xdg_base(env_var: str, fallback: str) -> Path:
    value = os.environ.get(env_var, "")
    # Relative XDG values are invalid and ignored
    if value and os.path.isabs(value):
        return Path(value)
    return host_home() / fallback


@dataclass(frozen=True)
class AppDirs:
    """Application base directories (config, cache, state)."""

    config_home: Path
    cache_home: Path
    state_home: Path

    @classmethod
    def from_env(cls, app_name: str = APP_NAME) -> AppDirs:
        """Resolve directories from XDG environment variables."""
        return cls(
            config_home=_xdg_base("XDG_CONFIG_HOME", ".config") / app_name,
            cache_home=_xdg_base("XDG_CACHE_HOME", ".cache") / app_name,
            state_home=_xdg_base("XDG_STATE_HOME", ".local/state") / app_name,
        )

    @property
    def user_config_file(self) -> Path:
        return self.config_home / CONFIG_FILENAME

    @property
    def user_dockerfile(self) -> Path:
        return self.config_home / DOCKERFILE_NAME

    @property
    def skills_dir(self) -> Path:
        return self.config_home / "skills"

    def place_cache_file(self, name: str) -> Path:
        """Return a path under the cache home, creating parent directories."""
        path = self.cache_home / name
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def place_state_file(self, name: str) -> Path:
        """Return a path under the state home, creating parent directories."""
        path = self.state_home / name
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


def project_override_dir(project_dir: Path) -> Path:
    """Return the project-local override directory (``<project>/.contenant``)."""
    return project_dir / PROJECT_CONFIG_DIR


def project_config_file(project_dir: Path) -> Path:
    return project_override_dir(project_dir) / CONFIG_FILENAME


def project_dockerfile(project_dir: Path) -> Path:
    return project_override_dir(project_dir) / DOCKERFILE_NAME


def validate_project_path(path: str | Path) -> Path:
    """Validate and canonicalize the project path.

    Raises:
        PathError: If path does not exist or is not a directory.
    """
    project_path = Path(path).expanduser()
    if not project_path.exists():
        raise PathError(f"Project path does not exist: {project_path}")
    if not project_path.is_dir():
        raise PathError(f"Project path must be a directory: {project_path}")
    return project_path.resolve()
