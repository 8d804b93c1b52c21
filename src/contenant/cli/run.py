"""Run operations for contenant.

Handles the main run workflow and failure reporting.
"""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel

from ..backend import ContainerBackend
from ..errors import BackendNotFoundError, ContainerSignalError, ContenantError
from ..logging import get_logger
from ..paths import validate_project_path
from ..pipeline import Contenant
from ..run_config import RunConfig

console = Console(stderr=True)
logger = get_logger(__name__)


def diagnose_container_failure(returncode: int) -> None:
    """Give actionable feedback for well-known exit codes."""
    if returncode == 137:
        console.print("[yellow]Container was killed (OOM or manual stop)[/yellow]")
        return
    if returncode == 125:
        console.print("[yellow]The container runtime failed to start the container[/yellow]")
        console.print("[dim]Run with --debug to see the full command[/dim]")
        return
    if returncode not in (0, 130):  # 130 = Ctrl+C
        console.print(f"[dim]Container exited with code {returncode}[/dim]")


def run(run_config: RunConfig) -> int:
    """Run Claude Code in a container.

    Returns:
        The container's exit code, or 1 when the pipeline fails before or
        without producing one.
    """
    logger.info("Starting run workflow: path=%s, runtime=%s", run_config.path, run_config.runtime)
    try:
        project_path = validate_project_path(run_config.path)
        contenant = Contenant(project_path, backend=ContainerBackend(run_config.runtime))

        console.print(
            Panel.fit(
                f"[bold]{project_path.name}[/bold] → {run_config.runtime}",
                border_style="blue",
            )
        )
        returncode = contenant.run(run_config.args)
    except BackendNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        console.print(f"[dim]Install {run_config.runtime} or pick another --runtime[/dim]")
        return 1
    except ContainerSignalError as e:
        console.print(f"[red]Error: {e}[/red]")
        console.print("[dim]The container has no exit code to report[/dim]")
        return 1
    except ContenantError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    except OSError as e:
        # Unwritable or clobbered XDG directories, full disks
        console.print(f"[red]Error: {e}[/red]")
        return 1
    except KeyboardInterrupt:
        return 130  # Standard Ctrl+C code

    diagnose_container_failure(returncode)
    return returncode
