# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Serve command: run the queue consumers until interrupted.
"""

import asyncio

import click
from rich.console import Console

from ...processing.server import main as server_main
from ..utils.context import CliContext, pass_cli

console = Console()


@click.command()
@pass_cli
def serve(ctx: CliContext):
    """
    Run the ingest retry consumer and the rollup workers.

    Stops cleanly on SIGINT/SIGTERM.
    """
    errors = ctx.config.validate()
    if errors:
        for error in errors:
            console.print(f"[red]✗[/red] {error}")
        raise click.ClickException("Invalid configuration")

    console.print(f"[cyan]Starting consumers ({ctx.config.rollup.workers} rollup workers)[/cyan]")
    asyncio.run(server_main(ctx.config))
