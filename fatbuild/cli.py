"""Thin CLI wrapper for fatbuild.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from fatbuild import __version__
from fatbuild.config import Settings, get_settings, print_settings_json
from fatbuild.errors import BuildCancelledError, BuildError
from fatbuild.toolchain.task import Launch, StandardError, StandardOutput, Toolchain
from fatbuild.types import BuildOptions, Platform

app = typer.Typer(
    name="fatbuild",
    help="fatbuild - build framework binaries for every platform of a project",
    no_args_is_help=True,
)
console = Console()


def configure_logging(level: str) -> None:
    """Route log records through rich at the given level."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"fatbuild version {__version__}")
        raise typer.Exit()


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
    """fatbuild - build framework binaries for every platform of a project."""


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
        console.print(print_settings_json(settings))
    else:
        lock_timeout_display = (
            f"{settings.lock_timeout:g}" if settings.lock_timeout is not None else "(wait forever)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  xcrun:               {settings.xcrun_path}")
        console.print(f"  Derived data:        {settings.derived_data_dir}")
        console.print(f"  Build directory:     {settings.build_dir_name}")
        console.print(f"  Checkouts directory: {settings.checkouts_dir_name}")
        console.print(f"  Logs directory:      {settings.logs_dir}")
        console.print()
        console.print("[bold]Build:[/bold]")
        console.print(f"  Configuration:       {settings.configuration}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Settings query:      {settings.settings_query_timeout:g}")
        console.print(f"  Destination:         {settings.destination_timeout}")
        console.print(f"  Lock:                {lock_timeout_display}")


def _parse_platforms(names: list[str] | None) -> frozenset[Platform]:
    try:
        return frozenset(Platform.parse(name) for name in names or [])
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        console.print(f"Valid values: {', '.join(p.value for p in Platform)}")
        raise typer.Exit(code=1) from None


@app.command()
def build(
    directory: Annotated[
        Path,
        typer.Argument(help="Directory containing the projects to build"),
    ] = Path("."),
    platforms: Annotated[
        list[str] | None,
        typer.Option("--platform", "-p", help="Platform to build (can be repeated)"),
    ] = None,
    configuration: Annotated[
        str | None,
        typer.Option("--configuration", "-c", help="Build configuration"),
    ] = None,
    toolchain: Annotated[
        str | None,
        typer.Option("--toolchain", help="Toolchain identifier passed to xcodebuild"),
    ] = None,
    derived_data: Annotated[
        Path | None,
        typer.Option("--derived-data", help="Derived data directory override"),
    ] = None,
    lock_timeout: Annotated[
        float | None,
        typer.Option("--lock-timeout", help="Seconds to wait for the derived data lock"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Echo xcodebuild output"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build every framework scheme in a directory.

    Products are placed in the build directory of DIRECTORY, one folder per
    platform. Device and simulator builds of a platform are merged into a
    single framework.
    """
    from fatbuild.builds.orchestrator import (
        BuildEvent,
        BuildOrchestrator,
        SchemeFailed,
        SchemeStarted,
        SchemeSucceeded,
    )

    settings = get_settings()
    configure_logging(settings.log_level)

    directory = directory.resolve()
    if not directory.is_dir():
        console.print(f"[red]Not a directory: {directory}[/red]")
        raise typer.Exit(code=1)

    options = BuildOptions(
        configuration=configuration or settings.configuration,
        platforms=_parse_platforms(platforms),
        toolchain=toolchain,
        derived_data_path=str(derived_data.resolve()) if derived_data else None,
    )
    orchestrator = BuildOrchestrator(Toolchain(settings.xcrun_path), settings)
    cancel_event = threading.Event()

    results: list[dict] = []

    def report(event: BuildEvent) -> None:
        if isinstance(event, SchemeStarted):
            if not json_output:
                console.print(f"[blue]*** Building scheme {event.scheme} in {event.project}[/blue]")
        elif isinstance(event, SchemeSucceeded):
            results.append(
                {
                    "project": str(event.project.path),
                    "scheme": event.scheme.name,
                    "success": True,
                    "artifacts": [str(p) for p in event.artifacts],
                }
            )
            if not json_output:
                console.print(f"  [green]✓ {event.scheme}[/green]")
                for artifact in event.artifacts:
                    console.print(f"      {artifact}")
        elif isinstance(event, SchemeFailed):
            results.append(
                {
                    "project": str(event.project.path),
                    "scheme": event.scheme.name,
                    "success": False,
                    "error_code": event.error.code,
                    "error_message": str(event.error),
                }
            )
            if not json_output:
                console.print(f"  [red]✗ {event.scheme}[/red]")
                console.print(f"      Error: {event.error}")
        elif isinstance(event, Launch):
            if verbose and not json_output:
                console.print(f"[dim]$ {event.task}[/dim]")
        elif isinstance(event, (StandardOutput, StandardError)):
            if verbose and not json_output:
                console.out(event.data.decode("utf-8", errors="replace"), end="")

    events = orchestrator.build_in_directory(
        directory,
        options,
        root_directory=directory,
        lock_timeout=lock_timeout,
        cancel_event=cancel_event,
    )
    try:
        for event in events:
            report(event)
    except KeyboardInterrupt:
        cancel_event.set()
        events.close()
        console.print("[yellow]Build cancelled[/yellow]")
        raise typer.Exit(code=130) from None
    except BuildCancelledError:
        console.print("[yellow]Build cancelled[/yellow]")
        raise typer.Exit(code=130) from None
    except BuildError as e:
        if json_output:
            console.print(
                json.dumps(
                    {"results": results, "error_code": e.code, "error_message": str(e)},
                    indent=2,
                ),
                soft_wrap=True,
            )
        else:
            console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    failed = sum(1 for r in results if not r["success"])
    if json_output:
        console.print(json.dumps({"results": results}, indent=2), soft_wrap=True)
    else:
        console.print()
        console.print("[bold]Build Results:[/bold]")
        console.print(f"  Total schemes: {len(results)}")
        console.print(f"  [green]Succeeded: {len(results) - failed}[/green]")
        if failed > 0:
            console.print(f"  [red]Failed: {failed}[/red]")

    if failed > 0:
        raise typer.Exit(code=1)


@app.command()
def strip(
    framework: Annotated[
        Path,
        typer.Argument(help="Framework bundle to strip"),
    ],
    keep: Annotated[
        list[str],
        typer.Option("--keep", "-k", help="Architecture to keep (can be repeated)"),
    ],
    strip_debug_symbols: Annotated[
        bool,
        typer.Option("--strip-debug-symbols", help="Also strip debug symbols"),
    ] = False,
    sign: Annotated[
        str | None,
        typer.Option("--sign", help="Codesigning identity"),
    ] = None,
) -> None:
    """Strip a framework for embedding in an application.

    Removes unwanted architectures and the Headers, PrivateHeaders and
    Modules directories, then optionally codesigns the framework.
    """
    from fatbuild.builds.strip import strip_framework

    settings: Settings = get_settings()
    configure_logging(settings.log_level)

    if not framework.is_dir():
        console.print(f"[red]Framework not found: {framework}[/red]")
        raise typer.Exit(code=1)

    try:
        strip_framework(
            Toolchain(settings.xcrun_path),
            framework,
            keep,
            strip_debug=strip_debug_symbols,
            codesigning_identity=sign,
        )
    except BuildError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    console.print(f"[green]Stripped {framework.name}[/green]")


if __name__ == "__main__":
    app()
