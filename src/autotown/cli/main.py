# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Main CLI entry point for the Autotown telemetry service.
"""

import os
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from .. import __version__
from ..capture.shared.config import Config
from ..processing.server import setup_logging
from .commands import export, maintenance, recent, serve, stats, submit
from .utils.context import CliContext, pass_cli

# Create console for rich output
console = Console()


@click.group(invoke_without_command=True)
@click.option(
    "--version",
    is_flag=True,
    help="Show version and exit"
)
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file (default: $AUTOTOWN_CONFIG or ~/.autotown/config.yaml)"
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Override the configured log level"
)
@click.pass_context
def cli(ctx, version: bool, config_path: Optional[Path], log_level: Optional[str]):
    """
    Autotown telemetry - ingest and rollup of flight controller reports.

    Examples:
        autotown serve
        autotown submit usage report.json --addr 203.0.113.7
        autotown redrive
        autotown export tunes -o tunes.csv
    """
    if version:
        click.echo(f"Autotown version {__version__}")
        ctx.exit()

    # Tests hand in a prepared context
    if ctx.obj is None:
        try:
            config = Config.load(config_path)
        except (OSError, ValueError) as e:
            raise click.ClickException(f"Cannot load configuration: {e}") from e
        ctx.obj = CliContext(config)

    setup_logging(log_level or ctx.obj.config.logging.level)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


cli.add_command(serve.serve)
cli.add_command(submit.submit)
cli.add_command(maintenance.redrive)
cli.add_command(maintenance.rewrite_ids)
cli.add_command(export.export)
cli.add_command(recent.recent)
cli.add_command(stats.stats)


@cli.command()
@pass_cli
def doctor(ctx: CliContext):
    """Check configuration, database and Redis."""
    from .utils.doctor import run_diagnostics
    if not run_diagnostics(ctx):
        sys.exit(1)


def main():
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        if os.environ.get("AUTOTOWN_DEBUG"):
            console.print_exception()
        else:
            console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
