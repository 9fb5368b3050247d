# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Submit commands: feed a document through ingest as if it arrived over HTTP.
"""

from pathlib import Path
from typing import Dict, Tuple

import click
from rich.console import Console

from ...capture.shared.event_schema import Envelope
from ...exceptions import AutotownError
from ..utils.context import CliContext, pass_cli

console = Console()


def _headers(values: Tuple[str, ...]) -> Dict[str, str]:
    headers = {}
    for value in values:
        if ":" not in value:
            raise click.BadParameter(f"expected 'Name: value', got {value!r}", param_hint="--header")
        name, _, content = value.partition(":")
        headers[name.strip()] = content.strip()
    return headers


def _submission_options(f):
    f = click.option(
        "--header", "-H", "headers",
        multiple=True,
        help="Request header, e.g. 'X-AppEngine-Country: NZ'"
    )(f)
    f = click.option(
        "--addr",
        default="127.0.0.1",
        show_default=True,
        help="Network origin recorded with the submission"
    )(f)
    f = click.argument(
        "file",
        type=click.Path(exists=True, dir_okay=False, path_type=Path)
    )(f)
    return f


@click.group()
def submit():
    """Ingest a tune, usage or crash document from a file."""


def _run_ingest(ctx: CliContext, kind: str, file: Path, addr: str, headers: Tuple[str, ...]):
    envelope = Envelope.from_request(addr, _headers(headers))
    raw = file.read_bytes()
    server = ctx.pipeline()
    ingest = server.ingest.ingest_tune if kind == "tune" else server.ingest.ingest_usage
    try:
        result = ingest(raw, envelope)
    except AutotownError as e:
        raise click.ClickException(f"{type(e).__name__} ({e.http_status}): {e}") from e

    console.print(f"[green]✓[/green] {kind} {result.status.value} ({result.http_status})")
    if result.locator:
        console.print(f"Location: {result.locator}")


@submit.command()
@_submission_options
@pass_cli
def tune(ctx: CliContext, file: Path, addr: str, headers: Tuple[str, ...]):
    """Ingest an autotune result document."""
    _run_ingest(ctx, "tune", file, addr, headers)


@submit.command()
@_submission_options
@pass_cli
def usage(ctx: CliContext, file: Path, addr: str, headers: Tuple[str, ...]):
    """Ingest a GCS usage report and queue it for rollup."""
    _run_ingest(ctx, "usage", file, addr, headers)


@submit.command()
@_submission_options
@pass_cli
def crash(ctx: CliContext, file: Path, addr: str, headers: Tuple[str, ...]):
    """Ingest a crash report with a base64 dump."""
    envelope = Envelope.from_request(addr, _headers(headers))
    server = ctx.pipeline()
    try:
        report = server.crash_ingest.ingest_crash(file.read_bytes(), envelope)
    except AutotownError as e:
        raise click.ClickException(f"{type(e).__name__} ({e.http_status}): {e}") from e

    console.print(f"[green]✓[/green] crash stored as {report.key} (204)")
