# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Record writer for tune, usage and crash submissions.

All writes are keyed on the record_id assigned at ingest, so replaying the
same prepared record (queue redelivery) stores it exactly once.
"""

import logging
import sqlite3
from typing import Iterator, List, Optional, Union

from ...capture.shared.event_schema import (
    CrashData,
    Envelope,
    TuneResults,
    UsageStat,
    format_ts,
    parse_ts,
)
from .sqlite_client import SQLiteClient

logger = logging.getLogger(__name__)

ENVELOPE_COLUMNS = "timestamp, addr, country, region, city, lat, lon"


def _envelope_params(envelope: Envelope):
    return (
        format_ts(envelope.timestamp),
        envelope.addr,
        envelope.country,
        envelope.region,
        envelope.city,
        envelope.lat,
        envelope.lon,
    )


def _envelope_from_row(row: sqlite3.Row) -> Envelope:
    return Envelope(
        timestamp=parse_ts(row["timestamp"]),
        addr=row["addr"],
        country=row["country"],
        region=row["region"],
        city=row["city"],
        lat=row["lat"],
        lon=row["lon"],
    )


def _tune_from_row(row: sqlite3.Row) -> TuneResults:
    return TuneResults(
        record_id=row["record_id"],
        data=bytes(row["data"]),
        envelope=_envelope_from_row(row),
        uuid=row["uuid"],
        board=row["board"],
        tau=row["tau"],
        key=row["id"],
    )


def _usage_from_row(row: sqlite3.Row) -> UsageStat:
    return UsageStat(
        record_id=row["record_id"],
        data=bytes(row["data"]),
        envelope=_envelope_from_row(row),
        key=row["id"],
    )


class RecordWriter:
    """
    Durable storage for raw submissions.

    Every method raises StoreUnavailableError when SQLite fails.
    """

    def __init__(self, client: SQLiteClient):
        """
        Initialize record writer.

        Args:
            client: SQLiteClient instance
        """
        self.client = client

    def put_tune(self, record: TuneResults) -> int:
        """
        Store a tune record.

        Returns:
            Row id of the stored record (existing row id on replay)
        """
        with self.client.get_connection() as conn:
            conn.execute(
                f"""
                INSERT INTO tune_results (record_id, uuid, board, tau, data, {ENVELOPE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(record_id) DO NOTHING
                """,
                (record.record_id, record.uuid, record.board, record.tau, record.data)
                + _envelope_params(record.envelope),
            )
            row = conn.execute(
                "SELECT id FROM tune_results WHERE record_id = ?", (record.record_id,)
            ).fetchone()
        record.key = row["id"]
        return record.key

    def put_usage(self, record: UsageStat) -> int:
        """Store a usage record; returns its row id."""
        with self.client.get_connection() as conn:
            conn.execute(
                f"""
                INSERT INTO usage_stats (record_id, data, {ENVELOPE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(record_id) DO NOTHING
                """,
                (record.record_id, record.data) + _envelope_params(record.envelope),
            )
            row = conn.execute(
                "SELECT id FROM usage_stats WHERE record_id = ?", (record.record_id,)
            ).fetchone()
        record.key = row["id"]
        return record.key

    def put_record(self, record: Union[TuneResults, UsageStat]) -> int:
        """Store either kind of prepared record."""
        if isinstance(record, TuneResults):
            return self.put_tune(record)
        return self.put_usage(record)

    def put_crash(self, crash: CrashData) -> int:
        timestamp = crash.timestamp
        with self.client.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO crash_data (record_id, timestamp, properties)
                VALUES (?, ?, ?)
                ON CONFLICT(record_id) DO NOTHING
                """,
                (crash.record_id, format_ts(timestamp) if timestamp else "", crash.properties_json()),
            )
            row = conn.execute(
                "SELECT id FROM crash_data WHERE record_id = ?", (crash.record_id,)
            ).fetchone()
        crash.key = row["id"]
        return crash.key

    def update_tunes(self, records: List[TuneResults]) -> None:
        """
        Rewrite existing tune rows in a single transaction.

        Either every record is updated or none is.
        """
        with self.client.transaction() as conn:
            for record in records:
                if record.key is None:
                    raise ValueError(f"tune record {record.record_id} has no key")
                conn.execute(
                    "UPDATE tune_results SET uuid = ?, data = ? WHERE id = ?",
                    (record.uuid, record.data, record.key),
                )

    def get_tune(self, key: int) -> Optional[TuneResults]:
        with self.client.get_connection() as conn:
            row = conn.execute("SELECT * FROM tune_results WHERE id = ?", (key,)).fetchone()
        return _tune_from_row(row) if row else None

    def recent_tunes(self, limit: int = 50) -> List[TuneResults]:
        """Newest tune records first."""
        with self.client.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM tune_results ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [_tune_from_row(row) for row in rows]

    def iter_tunes(self) -> Iterator[TuneResults]:
        """All tune records, oldest first."""
        with self.client.get_connection() as conn:
            for row in conn.execute("SELECT * FROM tune_results ORDER BY timestamp ASC, id ASC"):
                yield _tune_from_row(row)

    def iter_usage_stats(self) -> Iterator[UsageStat]:
        """All usage records, newest first."""
        with self.client.get_connection() as conn:
            for row in conn.execute("SELECT * FROM usage_stats ORDER BY timestamp DESC, id DESC"):
                yield _usage_from_row(row)

    def count_usage_stats(self) -> int:
        with self.client.get_connection() as conn:
            return conn.execute("SELECT COUNT(*) AS n FROM usage_stats").fetchone()["n"]

    def recent_crashes(self, limit: int = 50) -> List[CrashData]:
        with self.client.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM crash_data ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            CrashData.from_properties_json(row["record_id"], row["properties"], key=row["id"])
            for row in rows
        ]
