"""Arguments of ``contenant run`` as one immutable value.

The click command only parses; the run workflow receives a RunConfig.
"""

from __future__ import annotations

from dataclasses import dataclass

from .constants import DEFAULT_RUNTIME


@dataclass(frozen=True)
class RunConfig:
    """What to run, where, and with which runtime."""

    # Project directory as given on the command line
    path: str = "."

    # Container runtime binary
    runtime: str = DEFAULT_RUNTIME

    # Arguments passed through to Claude Code
    args: tuple[str, ...] = ()

    @classmethod
    def from_cli(
        cls,
        *,
        project: str = ".",
        runtime: str = DEFAULT_RUNTIME,
        args: tuple[str, ...] | list[str] = (),
    ) -> RunConfig:
        """Map click parameters (``--project``, ``--runtime``, ARGS) to fields."""
        return cls(
            path=project,
            runtime=runtime,
            args=tuple(args),
        )
