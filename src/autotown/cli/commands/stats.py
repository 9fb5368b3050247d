# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Stats command: rollup totals and queue depth.
"""

import json

import click
from rich.console import Console
from rich.table import Table

from ...capture.shared.config import STREAM_TYPES
from ...processing.slow_path.worker_pool import queue_stats
from ..utils.context import CliContext, pass_cli

console = Console()


@click.command()
@click.option(
    "--json", "as_json",
    is_flag=True,
    help="Print JSON instead of tables"
)
@pass_cli
def stats(ctx: CliContext, as_json: bool):
    """Controllers and sightings per board, plus queue depths."""
    server = ctx.pipeline()
    board_stats = server.board_stats()
    lanes = {
        lane.name: queue_stats(server.redis_client, lane.name, lane.consumer_group)
        for lane in map(ctx.config.get_stream_config, STREAM_TYPES)
    }

    if as_json:
        click.echo(json.dumps({"boards": board_stats, "queues": lanes}, indent=2))
        return

    table = Table(title="Found Controllers", show_header=True, header_style="bold magenta")
    table.add_column("Board", style="cyan")
    table.add_column("Controllers", justify="right")
    table.add_column("Reports", justify="right")
    for name, counts in board_stats["boards"].items():
        table.add_row(name or "(unknown)", str(counts["controllers"]), str(counts["sightings"]))
    table.add_row(
        "[bold]Total[/bold]",
        f"[bold]{board_stats['total_controllers']}[/bold]",
        f"[bold]{board_stats['total_sightings']}[/bold]",
    )
    console.print(table)

    queues = Table(title="Queues", show_header=True, header_style="bold magenta")
    queues.add_column("Stream", style="cyan")
    queues.add_column("Length", justify="right")
    queues.add_column("Pending", justify="right")
    queues.add_column("Lag", justify="right")
    for name, lane in lanes.items():
        queues.add_row(
            name, str(lane["stream_length"]), str(lane["pending_count"]),
            f"{lane['lag_seconds']:.1f}s",
        )
    console.print(queues)
