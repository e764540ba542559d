"""Thin CLI wrapper for isobuild.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from isobuild import __version__
from isobuild.config import Settings, get_settings, print_settings_json
from isobuild.templates.models import TemplateConfig

app = typer.Typer(
    name="isobuild",
    help="ISO image builder - assemble LiveCD images from base layers and git repos",
    no_args_is_help=True,
)
console = Console()
log_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"isobuild version {__version__}")
        raise typer.Exit()


def setup_logging(level: str) -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=log_console, show_path=False)],
        force=True,
    )


def fail(message: str, hint: str | None = None) -> typer.Exit:
    """Print a fatal error and return the exit to raise."""
    console.print(f"[red]ERROR: {escape(message)}[/red]")
    if hint:
        console.print(escape(hint))
    return typer.Exit(code=1)


def warn(message: str, hint: str | None = None) -> typer.Exit:
    """Print a warning and return the exit to raise."""
    console.print(f"[yellow]WARNING: {escape(message)}[/yellow]")
    if hint:
        console.print(escape(hint))
    return typer.Exit(code=1)


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
    """ISO image builder - assemble LiveCD images from base layers and git repos."""
    setup_logging(get_settings().log_level)


def _load_config(settings: Settings) -> TemplateConfig:
    from isobuild.templates.parser import ConfigError, parse_config

    try:
        return parse_config(settings.config_path)
    except ConfigError as e:
        raise fail(str(e), "Please fix it and try again") from None


@app.command()
def build(
    names: Annotated[
        list[str] | None,
        typer.Argument(help="Build names from the configuration file, or 'all'"),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Rebuild images that already exist"),
    ] = False,
) -> None:
    """Build the specified templates (must be run as root)."""
    from isobuild.builds.layers import InternalError
    from isobuild.builds.pipeline import run_builds
    from isobuild.builds.report import BuildReport, render_report
    from isobuild.prereqs import PrerequisiteError, check_build_prerequisites
    from isobuild.templates.selection import (
        FORCE_TOKEN,
        SelectionError,
        parse_selection,
    )

    if not names:
        raise warn(
            "Please specify a template name or names to be built",
            "Usage: isobuild build [-f] <build_name> [<build_name>] ... | all",
        )

    settings = get_settings()
    config = _load_config(settings)

    tokens = list(names)
    if force:
        tokens.append(FORCE_TOKEN)
    try:
        selection = parse_selection(tokens, config.registry)
    except SelectionError as e:
        raise fail(
            str(e),
            "Available names can be viewed using the 'isobuild ls' command",
        ) from None

    if not selection:
        raise warn(
            "No template name or names specified to build",
            "Please specify a template name or names to be built",
        )

    try:
        check_build_prerequisites(settings)
    except PrerequisiteError as e:
        raise fail(str(e), e.hint) from None

    report = BuildReport(config.registry, selection.build_ids)
    try:
        run_builds(selection, config, settings, report)
    except KeyboardInterrupt:
        render_report(report, console)
        console.print()
        console.print("[yellow]WARNING: Interrupted[/yellow]")
        raise typer.Exit(code=130) from None
    except (InternalError, OSError) as e:
        render_report(report, console)
        raise fail(
            f"Internal error: {e}",
            "Let the developer know or solve the problem yourself",
        ) from None

    render_report(report, console)


@app.command("ls")
def list_builds(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List all templates available for build."""
    settings = get_settings()
    config = _load_config(settings)

    if not config.registry:
        raise warn(
            "The builds list is empty in the configuration file",
            "Please fill in the configuration file and try again",
        )

    if json_output:
        output = [
            {
                "name": config.registry.name(build_id),
                **config.resolve(build_id).model_dump(),
            }
            for build_id in config.registry
        ]
        typer.echo(json.dumps(output, indent=2))
        return

    console.print("[bold]List of ISO images specified in configuration:[/bold]")
    console.print()
    for build_id in config.registry:
        name = escape(config.registry.name(build_id))
        params = config.resolve(build_id)
        console.print(f"[green]{name}[/green] ({escape(params.base_layer)}):")
        console.print(f'  repo_url="{escape(params.repo_url)}"')
        console.print(
            f'  repo_checkout="{escape(params.repo_checkout)}" '
            f'repo_clone_into="{escape(params.repo_clone_into)}" '
            f'repo_depth="{params.repo_depth}"'
        )
        console.print(f'  run_from_repo="{escape(params.run_from_repo)}"')
    console.print()
    console.print(
        f"Total: {len(config.registry)} images specified in configuration file"
    )


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
        typer.echo(print_settings_json(settings))
        return

    tmp_dir_display = str(settings.tmp_dir) if settings.tmp_dir else "(system default)"
    timeout_display = (
        str(settings.command_timeout) if settings.command_timeout else "(none)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Config file:         {settings.config_path}")
    console.print(f"  Output directory:    {settings.output_dir}")
    console.print(f"  Base layers:         {settings.layers_root}")
    console.print(f"  Isolinux directory:  {settings.loader_dir}")
    console.print(f"  Temp directory:      {tmp_dir_display}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Require root:        {settings.require_root}")
    console.print(f"  mkisofs options:     {escape(settings.mkisofs_options)}")
    console.print(f"  Chroot PATH:         {settings.chroot_path}")
    console.print(f"  Chroot LANG:         {settings.chroot_lang}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Command timeout:     {timeout_display}")
    console.print(f"  Lock timeout:        {settings.lock_timeout}")


if __name__ == "__main__":
    app()
