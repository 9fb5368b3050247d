# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
System diagnostics and health check utilities.
"""

import os
import sys
from typing import List, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ...exceptions import AutotownError
from ...processing.database.schema import SCHEMA_VERSION, get_schema_version
from .context import CliContext

console = Console()

Check = Tuple[str, bool, str]


def run_diagnostics(ctx: CliContext) -> bool:
    """
    Run system diagnostics.

    Returns:
        True if all checks pass, False otherwise
    """
    console.print(Panel("[bold cyan]Autotown Diagnostics[/bold cyan]", border_style="blue"))

    checks = [
        _check_configuration(ctx),
        _check_database(ctx),
        _check_redis(ctx),
        _check_environment(),
    ]

    _display_results(checks)

    return all(status for _, status, _ in checks)


def _check_configuration(ctx: CliContext) -> Check:
    source = ctx.config.source or "defaults"
    errors = ctx.config.validate()
    if errors:
        return ("Configuration", False, "; ".join(errors))
    return ("Configuration", True, f"Valid configuration ({source})")


def _check_database(ctx: CliContext) -> Check:
    try:
        server = ctx.store()
        version = get_schema_version(server.sqlite_client)
    except AutotownError as e:
        return ("Database", False, f"{ctx.config.database.path}: {e}")
    if version != SCHEMA_VERSION:
        return ("Database", False, f"Schema version {version}, expected {SCHEMA_VERSION}")
    return ("Database", True, f"{ctx.config.database.path} (schema v{version})")


def _check_redis(ctx: CliContext) -> Check:
    redis_config = ctx.config.redis
    try:
        ctx.pipeline()
    except (RuntimeError, AutotownError) as e:
        return ("Redis", False, str(e))
    return ("Redis", True, f"Connected to {redis_config.host}:{redis_config.port}")


def _check_environment() -> Check:
    info = [f"Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"]
    env_vars = ["AUTOTOWN_CONFIG", "AUTOTOWN_DB_PATH", "AUTOTOWN_REDIS_HOST",
                "AUTOTOWN_REDIS_PORT", "AUTOTOWN_LOG_LEVEL"]
    set_vars = [var for var in env_vars if os.environ.get(var)]
    if set_vars:
        info.append(f"Env vars: {', '.join(set_vars)}")
    return ("Environment", True, " | ".join(info))


def _display_results(checks: List[Check]):
    """Display diagnostic results in a table."""
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Check", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Details")

    for check_name, passed, details in checks:
        status = "[green]✓ PASS[/green]" if passed else "[red]✗ FAIL[/red]"
        table.add_row(check_name, status, details)

    console.print(table)
    console.print()

    if all(passed for _, passed, _ in checks):
        console.print("[green]All diagnostics passed![/green]")
    else:
        console.print("[yellow]Some diagnostics failed. Please check the details above.[/yellow]")
