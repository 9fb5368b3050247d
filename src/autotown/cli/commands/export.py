# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Export commands for data extraction.
"""

import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, TextIO

import click
from rich.console import Console

from ...analytics import exporter
from ..utils.context import CliContext, pass_cli

# Status output goes to stderr so exports can be piped
console = Console(stderr=True)


@contextmanager
def _output(path: Optional[Path], overwrite: bool) -> Iterator[TextIO]:
    if path is None:
        yield sys.stdout
        return
    if path.exists() and not overwrite:
        if not click.confirm(f"File {path} already exists. Overwrite?"):
            raise click.Abort()
    with open(path, "w", newline="") as f:
        yield f


_output_option = click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Output file (default: stdout)"
)
_overwrite_option = click.option(
    "--overwrite",
    is_flag=True,
    help="Overwrite existing file"
)


@click.group()
def export():
    """
    Export stored data for external analysis.

    Examples:
        autotown export tunes -o tunes.csv
        autotown export tunes -f json -o tunes.jsonl
        autotown export boards > boards.csv
    """


@export.command()
@click.option(
    "--format", "-f", "fmt",
    type=click.Choice(["csv", "json"]),
    default="csv",
    show_default=True,
    help="CSV with fixed columns, or one JSON object per line"
)
@_output_option
@_overwrite_option
@pass_cli
def tunes(ctx: CliContext, fmt: str, output: Optional[Path], overwrite: bool):
    """Export all tunes with anonymised device ids."""
    writer = ctx.store().writer
    with _output(output, overwrite) as out:
        if fmt == "json":
            rows = exporter.export_tunes_json(writer, out)
        else:
            rows = exporter.export_tunes_csv(writer, out)
    console.print(f"[green]✓[/green] Exported {rows} tunes")


@export.command()
@_output_option
@_overwrite_option
@pass_cli
def boards(ctx: CliContext, output: Optional[Path], overwrite: bool):
    """Export all found controllers as CSV."""
    store = ctx.store().controller_store
    with _output(output, overwrite) as out:
        rows = exporter.export_boards_csv(store, out)
    console.print(f"[green]✓[/green] Exported {rows} boards")
