"""Run pipeline: build images, assemble mounts and env, start the container.

Image layering:

    contenant:base   built from the embedded build context
    contenant:user   built from <config-home>/Dockerfile, or a tag of base
    contenant:<id>   built from <project>/.contenant/Dockerfile, if present

The most specific image that exists is the one that runs.
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import TYPE_CHECKING

from .allowlist import resolve_allowed_ips
from .backend import ContainerBackend
from .config import StackedConfig
from .constants import (
    ALLOWED_IPS_PATH,
    BASE_IMAGE,
    BRIDGE_URL_ENV,
    CONTAINER_CLAUDE_DIR,
    CONTAINER_HOME,
    CONTAINER_KNOWN_HOSTS,
    CONTAINER_SKILLS_DIR,
    HASH_LABEL,
    HOST_GATEWAY,
    IMAGE_REPOSITORY,
    USER_IMAGE,
)
from .generator import image_hash, write_build_files
from .logging import get_logger
from .paths import AppDirs, expand_tilde, project_dockerfile

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .backend import Backend

logger = get_logger(__name__)


def project_id(project_dir: Path) -> str:
    """Return ``<sha256(path)[:8]>-<dirname>`` for a canonical project path.

    The hash keeps same-named projects in different places apart; the name
    keeps the image recognisable.
    """
    digest = hashlib.sha256(os.fsencode(project_dir)).hexdigest()
    return f"{digest[:8]}-{project_dir.name}"


class Contenant:
    """Orchestrates a single containerized Claude Code session.

    Args:
        project_dir: Project directory, mounted as the container workspace.
        backend: Container runtime (defaults to the docker CLI).
        app_dirs: Base directories (defaults to XDG lookup).
        config: Preloaded configuration (defaults to loading from disk).
    """

    def __init__(
        self,
        project_dir: Path,
        backend: Backend | None = None,
        app_dirs: AppDirs | None = None,
        config: StackedConfig | None = None,
    ) -> None:
        self.project_dir = Path(os.path.realpath(project_dir))
        self.backend: Backend = backend if backend is not None else ContainerBackend()
        self.app_dirs = app_dirs if app_dirs is not None else AppDirs.from_env()
        self.config = (
            config if config is not None else StackedConfig.load(self.app_dirs, self.project_dir)
        )

    @property
    def project_image(self) -> str:
        return f"{IMAGE_REPOSITORY}:{project_id(self.project_dir)}"

    def build_base_image(self) -> bool:
        """Build ``contenant:base`` unless the local image is already current.

        The image is current when its hash label matches the hash of the
        embedded build files and the configured Claude version.

        Returns:
            True if a build ran.
        """
        version = self.config.claude_version()
        expected = image_hash(version)
        if self.backend.image_label(BASE_IMAGE, HASH_LABEL) == expected:
            logger.info("%s is up to date (%s)", BASE_IMAGE, expected)
            return False

        context = write_build_files(self.app_dirs)
        build_args = {"IMAGE_HASH": expected}
        if version is not None:
            build_args["CLAUDE_VERSION"] = version
        self.backend.build(BASE_IMAGE, context, build_args)
        return True

    def build_images(self) -> str:
        """Build the image chain and return the image to run.

        Raises:
            ImageBuildError: If any build or tag step fails.
        """
        self.build_base_image()

        user_dockerfile = self.app_dirs.user_dockerfile
        if user_dockerfile.is_file():
            self.backend.build(USER_IMAGE, user_dockerfile.parent)
        else:
            self.backend.tag(BASE_IMAGE, USER_IMAGE)

        dockerfile = project_dockerfile(self.project_dir)
        if dockerfile.is_file():
            self.backend.build(self.project_image, dockerfile.parent)
            return self.project_image

        return USER_IMAGE

    def default_mounts(self) -> list[str]:
        """Mounts every session gets: Claude state, skills, SSH known_hosts."""
        claude_state_dir = self.app_dirs.state_home / "claude"
        claude_state_dir.mkdir(parents=True, exist_ok=True)
        mounts = [f"{claude_state_dir}:{CONTAINER_CLAUDE_DIR}"]

        skills_dir = self.app_dirs.skills_dir
        if skills_dir.exists():
            mounts.append(f"{skills_dir}:{CONTAINER_SKILLS_DIR}")

        known_hosts = self.app_dirs.place_state_file("ssh/known_hosts")
        if not known_hosts.exists():
            known_hosts.touch()
        mounts.append(f"{known_hosts}:{CONTAINER_KNOWN_HOSTS}")

        return mounts

    def mounts(self) -> list[str]:
        """Default mounts followed by configured mounts, in layer order.

        Later ``-v`` flags win at the runtime, so configured mounts can shadow
        parts of the defaults.
        """
        mounts = self.default_mounts()
        mounts.extend(mount.to_volume(config_dir) for mount, config_dir in self.config.mounts())
        return mounts

    def env(self) -> dict[str, str]:
        env = {
            key: expand_tilde(value, CONTAINER_HOME) for key, value in self.config.env().items()
        }
        env[BRIDGE_URL_ENV] = f"http://{HOST_GATEWAY}:{self.config.bridge().port}"
        return env

    def run(self, args: Sequence[str] = ()) -> int:
        """Build, assemble and run. Returns the container's exit code.

        Raises:
            ImageBuildError: If an image step fails (nothing is started).
            ContainerSignalError: If the container is killed by a signal.
        """
        image = self.build_images()
        mounts = self.mounts()

        # The file backs a bind mount: it must stay open until the container exits
        with resolve_allowed_ips(self.config.allowed_domains()) as allowed_ips:
            mounts.append(f"{allowed_ips.name}:{ALLOWED_IPS_PATH}:ro")
            env = self.env()
            logger.info("Running %s with %d mounts", image, len(mounts))
            return self.backend.run(image, mounts, env, list(args), self.project_dir)
