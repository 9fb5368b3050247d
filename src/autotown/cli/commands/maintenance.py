# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Maintenance commands: redrive and identity rewrite.
"""

import asyncio

import click
from rich.console import Console

from ...exceptions import AutotownError, RedriveError
from ..utils.context import CliContext, pass_cli

console = Console()


@click.command()
@pass_cli
def redrive(ctx: CliContext):
    """
    Re-queue every stored usage report for rollup.

    Rollup state is rebuilt from scratch by the workers. Re-running adds to
    the per-board report counts.
    """
    server = ctx.pipeline()
    try:
        with console.status("Queueing usage reports..."):
            summary = asyncio.run(server.redrive())
    except RedriveError as e:
        done = e.summary
        if done is not None:
            console.print(
                f"[yellow]{done.total - done.failed} of {done.total} reports queued "
                f"({done.failed_batches} failed batches)[/yellow]"
            )
        raise click.ClickException(str(e)) from e
    except AutotownError as e:
        raise click.ClickException(str(e)) from e

    console.print(
        f"[green]✓[/green] Queued {summary.total} reports in {summary.batches} batches"
        + (f", skipped {summary.skipped}" if summary.skipped else "")
    )


@click.command("rewrite-ids")
@pass_cli
def rewrite_ids(ctx: CliContext):
    """Rewrite legacy board identities in the most recent tunes."""
    server = ctx.store()
    try:
        summary = server.rewrite_identities()
    except AutotownError as e:
        raise click.ClickException(str(e)) from e

    console.print(
        f"[green]✓[/green] Examined {summary.examined}, updated {summary.updated}, "
        f"skipped {summary.skipped}"
    )
