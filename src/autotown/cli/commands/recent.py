# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Listings of recent submissions.
"""

import json

import click
from rich.console import Console
from rich.table import Table

from ...analytics import exporter
from ...exceptions import CodecError
from ..utils.context import CliContext, pass_cli

console = Console()

_limit_option = click.option(
    "--limit", "-n",
    type=int,
    default=50,
    show_default=True,
    help="Number of entries to show"
)
_json_option = click.option(
    "--json", "as_json",
    is_flag=True,
    help="Print JSON instead of a table"
)


@click.group()
def recent():
    """Show recent tunes and crash reports."""


@recent.command()
@_limit_option
@_json_option
@pass_cli
def tunes(ctx: CliContext, limit: int, as_json: bool):
    """Most recent tunes, device ids anonymised."""
    rows = exporter.recent_tunes(ctx.store().writer, limit)
    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return

    table = Table(title="Recent Tunes", show_header=True, header_style="bold magenta")
    table.add_column("Key", style="cyan", justify="right")
    table.add_column("Device", justify="right")
    table.add_column("Time")
    table.add_column("Board")
    table.add_column("Tau", justify="right")
    table.add_column("Location")
    for row in rows:
        location = ", ".join(p for p in (row["city"], row["region"], row["country"]) if p)
        table.add_row(
            str(row["key"]), row["id"], row["timestamp"], row["board"],
            f"{row['tau']:.4f}", location,
        )
    console.print(table)


@recent.command()
@click.argument("key", type=int)
@pass_cli
def tune(ctx: CliContext, key: int):
    """Show one tune including its original document."""
    try:
        result = exporter.get_tune(ctx.store().writer, key)
    except CodecError as e:
        raise click.ClickException(f"Error uncompressing tune details: {e}") from e
    if result is None:
        raise click.ClickException(f"No tune with key {key}")
    click.echo(json.dumps(result, indent=2))


@recent.command()
@_limit_option
@_json_option
@pass_cli
def crashes(ctx: CliContext, limit: int, as_json: bool):
    """Most recent crash reports."""
    rows = exporter.recent_crashes(ctx.store().writer, limit)
    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return

    table = Table(title="Recent Crashes", show_header=True, header_style="bold magenta")
    table.add_column("Key", style="cyan", justify="right")
    table.add_column("Time")
    table.add_column("Dump")
    table.add_column("Properties")
    for row in rows:
        props = dict(row["properties"])
        timestamp = props.pop("timestamp", "")
        dump = props.pop("file", "")
        extra = ", ".join(f"{k}={v}" for k, v in sorted(props.items()) if v not in ("", 0, 0.0))
        table.add_row(str(row["key"]), str(timestamp), str(dump), extra)
    console.print(table)
