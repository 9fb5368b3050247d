# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""SQLite-backed persistence for found controller rollups."""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, Iterable, Iterator, Optional

from ...capture.shared.event_schema import FoundController, format_ts, parse_ts
from .sqlite_client import SQLiteClient

COLUMNS = (
    "uuid", "name", "hardware_rev", "git_hash", "git_tag", "uavo_hash",
    "gcs_os", "gcs_arch", "gcs_version",
    "addr", "country", "region", "city", "lat", "lon",
    "timestamp", "oldest", "count", "counted",
)


def _to_row(fc: FoundController) -> tuple:
    values = []
    for column in COLUMNS:
        value = getattr(fc, column)
        if column in ("timestamp", "oldest"):
            value = format_ts(value) if value else None
        elif column == "counted":
            value = int(value)
        values.append(value)
    return tuple(values)


def _from_row(row: sqlite3.Row) -> FoundController:
    data = {column: row[column] for column in COLUMNS}
    data["timestamp"] = parse_ts(data["timestamp"]) if data["timestamp"] else None
    data["oldest"] = parse_ts(data["oldest"]) if data["oldest"] else None
    data["counted"] = bool(data["counted"])
    return FoundController(**data)


class FoundControllerStore:
    """Read/write found_controllers rows, one per board identity."""

    def __init__(self, sqlite_client: SQLiteClient):
        self.client = sqlite_client

    def transaction(self):
        """Write transaction; see SQLiteClient.transaction."""
        return self.client.transaction()

    def get(self, uuid: str, conn: Optional[sqlite3.Connection] = None) -> Optional[FoundController]:
        """
        Load one controller.

        Args:
            uuid: Board identity
            conn: Connection of an open transaction (reads outside one if omitted)
        """
        sql = "SELECT * FROM found_controllers WHERE uuid = ?"
        if conn is not None:
            row = conn.execute(sql, (uuid,)).fetchone()
        else:
            with self.client.get_connection() as own:
                row = own.execute(sql, (uuid,)).fetchone()
        return _from_row(row) if row else None

    def put_multi(self, controllers: Iterable[FoundController], conn: sqlite3.Connection) -> None:
        """Insert or replace controllers inside an open transaction."""
        placeholders = ", ".join("?" for _ in COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in COLUMNS if c != "uuid")
        conn.executemany(
            f"""
            INSERT INTO found_controllers ({', '.join(COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(uuid) DO UPDATE SET {updates}
            """,
            [_to_row(fc) for fc in controllers],
        )

    def iter_all(self) -> Iterator[FoundController]:
        """All controllers, most recently seen first."""
        with self.client.get_connection() as conn:
            for row in conn.execute("SELECT * FROM found_controllers ORDER BY timestamp DESC"):
                yield _from_row(row)

    def count(self) -> int:
        with self.client.get_connection() as conn:
            return conn.execute("SELECT COUNT(*) AS n FROM found_controllers").fetchone()["n"]

    def board_stats(self) -> Dict[str, Any]:
        """Controllers and sightings per board name."""
        with self.client.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT name, COUNT(*) AS controllers, SUM(count) AS sightings
                FROM found_controllers
                GROUP BY name
                ORDER BY controllers DESC, name ASC
                """
            ).fetchall()
        boards = {row["name"]: {"controllers": row["controllers"], "sightings": row["sightings"] or 0}
                  for row in rows}
        return {
            "boards": boards,
            "total_controllers": sum(b["controllers"] for b in boards.values()),
            "total_sightings": sum(b["sightings"] for b in boards.values()),
        }
