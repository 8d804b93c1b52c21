"""Container runtime backends for contenant.

The pipeline only needs three operations from a runtime: build an image,
tag an image, and run a container. Backend captures exactly that, so the
pipeline can be driven by a fake in tests.
"""

from __future__ import annotations

import os
import subprocess
from typing import TYPE_CHECKING, Protocol

from .constants import (
    BACKEND_COMMAND_TIMEOUT,
    CONTAINER_WORKDIR,
    DEFAULT_RUNTIME,
    HOST_GATEWAY,
    INSPECT_TIMEOUT,
)
from .errors import BackendError, BackendNotFoundError, ContainerSignalError, ImageBuildError
from .logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

logger = get_logger(__name__)


class Backend(Protocol):
    """Capability interface over a container runtime."""

    def build(self, image: str, context: Path, build_args: Mapping[str, str] | None = None) -> None:
        """Build image from the context directory. Raises ImageBuildError."""
        ...

    def tag(self, source: str, target: str) -> None:
        """Tag source as target. Raises ImageBuildError."""
        ...

    def image_label(self, image: str, label: str) -> str | None:
        """Return a label of a local image, or None if either is missing."""
        ...

    def run(
        self,
        image: str,
        mounts: Sequence[str],
        env: Mapping[str, str],
        args: Sequence[str],
        workdir: Path,
    ) -> int:
        """Run image interactively and return the container's exit code."""
        ...


class ContainerBackend:
    """Backend that shells out to a Docker-compatible CLI.

    Args:
        binary: Runtime executable, ``docker`` or Apple's ``container``.
    """

    def __init__(self, binary: str = DEFAULT_RUNTIME) -> None:
        self.binary = binary

    def _call(
        self,
        args: Sequence[str],
        *,
        timeout: int | None = BACKEND_COMMAND_TIMEOUT,
        env: dict[str, str] | None = None,
        capture: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        cmd = [self.binary, *args]
        cmd_str = " ".join(cmd[:4]) + ("..." if len(cmd) > 4 else "")
        logger.debug("Running backend command: %s", cmd_str)
        try:
            result = subprocess.run(
                cmd, check=False, timeout=timeout, env=env, capture_output=capture, text=True
            )
        except FileNotFoundError as e:
            logger.error("%s not found in PATH", self.binary)
            raise BackendNotFoundError(
                f"{self.binary} not found in PATH. Command: {cmd_str}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise BackendError(f"Command timed out after {timeout}s. Command: {cmd_str}") from e
        logger.debug("Backend command completed: exit=%d", result.returncode)
        return result

    def build(self, image: str, context: Path, build_args: Mapping[str, str] | None = None) -> None:
        logger.info("Building image %s from %s", image, context)
        cmd = ["build", "-t", image]
        for key, value in (build_args or {}).items():
            cmd.extend(["--build-arg", f"{key}={value}"])
        cmd.append(str(context))

        env = os.environ.copy()
        env["DOCKER_BUILDKIT"] = "1"

        # Build progress goes straight to the terminal
        if self._call(cmd, env=env).returncode != 0:
            raise ImageBuildError(f"Failed to build {image}")

    def tag(self, source: str, target: str) -> None:
        logger.info("Tagging image %s as %s", source, target)
        if self._call(["tag", source, target]).returncode != 0:
            raise ImageBuildError(f"Failed to tag {source} as {target}")

    def image_label(self, image: str, label: str) -> str | None:
        fmt = f'{{{{index .Config.Labels "{label}"}}}}'
        result = self._call(
            ["image", "inspect", "--format", fmt, image], timeout=INSPECT_TIMEOUT, capture=True
        )
        if result.returncode != 0:
            logger.debug("No local image %s", image)
            return None
        value = result.stdout.strip()
        # Missing labels render as "<no value>" in Go templates
        if not value or value == "<no value>":
            return None
        return value

    def run_command(
        self,
        image: str,
        mounts: Sequence[str],
        env: Mapping[str, str],
        args: Sequence[str],
        workdir: Path,
    ) -> list[str]:
        """Assemble the run arguments (without the binary)."""
        # NET_ADMIN and NET_RAW let the entrypoint load the nftables ruleset
        cmd = [
            "run",
            "-it",
            "--rm",
            "--cap-add=NET_ADMIN",
            "--cap-add=NET_RAW",
            "--add-host",
            f"{HOST_GATEWAY}:host-gateway",
            "-v",
            f"{workdir}:{CONTAINER_WORKDIR}",
        ]
        for mount in mounts:
            cmd.extend(["-v", mount])
        for key, value in env.items():
            cmd.extend(["-e", f"{key}={value}"])
        cmd.extend(["-w", CONTAINER_WORKDIR, image])
        cmd.extend(args)
        return cmd

    def run(
        self,
        image: str,
        mounts: Sequence[str],
        env: Mapping[str, str],
        args: Sequence[str],
        workdir: Path,
    ) -> int:
        """Run the container and block until it exits.

        Raises:
            ContainerSignalError: If the container process was killed by a signal.
        """
        cmd = self.run_command(image, mounts, env, args, workdir)
        returncode = self._call(cmd, timeout=None).returncode
        # subprocess reports death-by-signal as a negative return code
        if returncode < 0:
            raise ContainerSignalError(-returncode)
        return returncode
