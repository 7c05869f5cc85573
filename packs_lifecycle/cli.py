"""Thin CLI wrapper for packs_lifecycle.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from packs_lifecycle import __version__
from packs_lifecycle.buildpacks.schema import BuildpackGroup
from packs_lifecycle.config import Settings, get_settings, print_settings_json
from packs_lifecycle.errors import EXIT_INVALID_ARGS, LifecycleError
from packs_lifecycle.types import Outcome, OutcomeStatus

app = typer.Typer(
    name="lifecycle",
    help="Buildpack lifecycle - restore and export the launch layer cache",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"packs-lifecycle version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Buildpack lifecycle - restore and export the launch layer cache."""


def _fail(message: str, code: int = EXIT_INVALID_ARGS) -> typer.Exit:
    err_console.print(f"[red]{message}[/red]")
    return typer.Exit(code=code)


def _single_repo(repo_names: list[str]) -> str:
    if len(repo_names) != 1:
        raise _fail(f"Expected exactly one image repository, got {len(repo_names)}")
    return repo_names[0]


def _launch_dir(launch: str | None, settings: Settings) -> Path:
    if launch is None:
        return settings.launch_dir
    if not launch:
        raise _fail("--launch must not be empty")
    return Path(launch)


def _load_group(
    group: str | None, settings: Settings, required: bool
) -> BuildpackGroup | None:
    from packs_lifecycle.buildpacks.io import load_group

    path = Path(group) if group else settings.group_path
    if not group and not required and not path.exists():
        return None
    try:
        return load_group(path)
    except LifecycleError as e:
        raise _fail(f"Error: {e}", code=e.exit_code) from None


def _report(outcome: Outcome, json_output: bool) -> None:
    if json_output:
        console.print(
            json.dumps(
                {
                    "status": outcome.status.value,
                    "message": outcome.message,
                    "code": outcome.code,
                    "exit_code": outcome.exit_code,
                    "details": outcome.details,
                },
                indent=2,
            ),
            markup=False,
            soft_wrap=True,
        )
    elif outcome.status is OutcomeStatus.OK:
        console.print(f"[green]✓ {outcome.message}[/green]")
    elif outcome.status is OutcomeStatus.SKIPPED:
        console.print(f"[yellow]Skipped: {outcome.message}[/yellow]")
    else:
        err_console.print(f"[red]✗ {outcome.message}[/red]")

    if not outcome.success:
        raise typer.Exit(code=outcome.exit_code)


@app.command()
def analyze(
    repo_names: Annotated[
        list[str] | None,
        typer.Argument(help="Image repository of the previous build"),
    ] = None,
    launch: Annotated[
        str | None,
        typer.Option("--launch", "-l", help="Launch directory"),
    ] = None,
    group: Annotated[
        str | None,
        typer.Option("--group", "-g", help="Buildpack group TOML file"),
    ] = None,
    daemon: Annotated[
        bool,
        typer.Option("--daemon", help="Read the previous image from the daemon"),
    ] = False,
    metadata_on_stdin: Annotated[
        bool,
        typer.Option(
            "--metadata-on-stdin",
            help="Read build metadata JSON from stdin instead of an image",
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Restore cached layers from the previous image into the launch directory.

    Only layers of buildpacks in the current group are restored. A previous
    image that is missing or not accessible is skipped with a warning.
    """
    from packs_lifecycle.cache.service import run_analyze

    settings = get_settings()
    configure_logging(settings.log_level)

    metadata_text = None
    if metadata_on_stdin:
        if repo_names:
            raise _fail("--metadata-on-stdin does not take an image repository")
        repo_name = None
        metadata_text = sys.stdin.read()
    else:
        repo_name = _single_repo(repo_names or [])

    launch_dir = _launch_dir(launch, settings)
    buildpack_group = _load_group(group, settings, required=True)

    outcome = run_analyze(
        repo_name,
        buildpack_group,
        launch_dir=launch_dir,
        metadata_text=metadata_text,
        settings=settings,
        use_daemon=daemon or None,
    )
    _report(outcome, json_output)


@app.command()
def export(
    repo_names: Annotated[
        list[str] | None,
        typer.Argument(help="Image repository to save the new image to"),
    ] = None,
    stack: Annotated[
        str,
        typer.Option("--stack", "-s", help="Stack run image to build on"),
    ] = "",
    launch: Annotated[
        str | None,
        typer.Option("--launch", "-l", help="Launch directory"),
    ] = None,
    group: Annotated[
        str | None,
        typer.Option("--group", "-g", help="Buildpack group TOML file"),
    ] = None,
    daemon: Annotated[
        bool,
        typer.Option("--daemon", help="Use the daemon instead of the registry"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Assemble a new image from the stack image and the launch directory.

    Each buildpack layer becomes one image layer; unchanged layers of the
    previous image are reused.
    """
    from packs_lifecycle.cache.service import run_export

    settings = get_settings()
    configure_logging(settings.log_level)

    repo_name = _single_repo(repo_names or [])
    if not stack:
        raise _fail("--stack is required")
    launch_dir = _launch_dir(launch, settings)
    buildpack_group = _load_group(group, settings, required=group is not None)

    outcome = run_export(
        repo_name,
        stack,
        group=buildpack_group,
        launch_dir=launch_dir,
        settings=settings,
        use_daemon=daemon or None,
    )
    _report(outcome, json_output)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), markup=False, soft_wrap=True)
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Launch directory:    {settings.launch_dir}")
        console.print(f"  Group file:          {settings.group_path}")
        console.print(f"  Image launch dir:    {settings.image_launch_dir}")
        console.print()
        console.print("[bold]Images:[/bold]")
        console.print(f"  Metadata label:      {settings.metadata_label}")
        console.print(f"  Use daemon:          {settings.use_daemon}")
        console.print(f"  Docker host:         {settings.docker_host}")
        console.print(
            f"  Platform:            "
            f"{settings.platform_os}/{settings.platform_architecture}"
        )
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Max workers:         {settings.max_workers}")
        console.print(f"  Fetch retries:       {settings.fetch_retries}")
        console.print(f"  Request timeout:     {settings.request_timeout}")


if __name__ == "__main__":
    app()
