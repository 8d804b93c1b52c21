"""CLI package for contenant.

This package contains the CLI commands and supporting modules:
- commands: Click command definitions (this module)
- run: Container run workflow

Heavy modules (pipeline, bridge) are imported inside the commands that need
them, keeping --help and --version fast.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..constants import DEFAULT_RUNTIME, SUPPORTED_RUNTIMES
from ..errors import ContenantError
from ..logging import set_debug

if TYPE_CHECKING:
    from pathlib import Path

    from ..config import StackedConfig

console = Console()
err_console = Console(stderr=True)

PASSTHROUGH_SETTINGS = {"ignore_unknown_options": True, "allow_interspersed_args": False}


def _load_config(project: str) -> tuple[Path, StackedConfig]:
    from ..config import StackedConfig
    from ..paths import AppDirs, validate_project_path

    project_path = validate_project_path(project)
    return project_path, StackedConfig.load(AppDirs.from_env(), project_path)


@click.group()
@click.option("--debug", is_flag=True, envvar="CONTENANT_DEBUG", help="Enable debug logging")
@click.version_option(version=__version__, prog_name="contenant")
def cli(debug: bool) -> None:
    """contenant - Run Claude Code in an isolated, firewalled container."""
    if debug:
        set_debug(True)


@cli.command(name="run", context_settings=PASSTHROUGH_SETTINGS)
@click.option(
    "--project",
    "-C",
    default=".",
    type=click.Path(exists=True, file_okay=False),
    help="Project directory (mounted at /workspace)",
)
@click.option(
    "--runtime",
    type=click.Choice(SUPPORTED_RUNTIMES),
    default=DEFAULT_RUNTIME,
    show_default=True,
    help="Container runtime CLI",
)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def run_claude(project: str, runtime: str, args: tuple[str, ...]) -> None:
    """Run Claude Code in a container, passing ARGS through to it."""
    from ..run_config import RunConfig
    from .run import run as _run

    run_config = RunConfig.from_cli(project=project, runtime=runtime, args=args)
    sys.exit(_run(run_config))


@cli.command()
@click.option(
    "--project",
    "-C",
    default=".",
    type=click.Path(exists=True, file_okay=False),
    help="Project whose config supplies the port and triggers",
)
def bridge(project: str) -> None:
    """Start the bridge server for container callbacks."""
    try:
        _, config = _load_config(project)
    except ContenantError as e:
        err_console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    from ..bridge import serve

    settings = config.bridge()
    err_console.print(
        f"[dim]Bridge listening on port {settings.port} "
        f"with {len(settings.triggers)} trigger(s)[/dim]"
    )
    try:
        serve(settings.port, settings.triggers)
    except OSError as e:
        err_console.print(f"[red]Error: cannot listen on port {settings.port}: {e}[/red]")
        sys.exit(1)


@cli.command(name="config")
@click.option(
    "--project",
    "-C",
    default=".",
    type=click.Path(exists=True, file_okay=False),
    help="Project directory",
)
def show_config(project: str) -> None:
    """Show the resolved configuration and where it came from."""
    try:
        project_path, config = _load_config(project)
    except ContenantError as e:
        err_console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    table = Table(title="Layers")
    table.add_column("Source", style="cyan")
    table.add_column("Directory")
    for layer in config.layers():
        table.add_row(layer.source.name.lower(), str(layer.config_dir))
    console.print(table)

    table = Table(title="Mounts")
    table.add_column("Volume")
    for mount, config_dir in config.mounts():
        table.add_row(mount.to_volume(config_dir))
    console.print(table)

    table = Table(title="Environment")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in sorted(config.env().items()):
        table.add_row(key, value)
    console.print(table)

    settings = config.bridge()
    table = Table(title=f"Bridge (port {settings.port})")
    table.add_column("Trigger", style="cyan")
    table.add_column("Command")
    for name, command in sorted(settings.triggers.items()):
        table.add_row(name, command)
    console.print(table)

    console.print(f"\n[bold]Project:[/bold] {project_path}")
    console.print(f"[bold]Claude version:[/bold] {config.claude_version() or 'latest'}")
    console.print(f"[bold]Allowed domains:[/bold] {', '.join(config.allowed_domains())}")


def main() -> None:
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()

