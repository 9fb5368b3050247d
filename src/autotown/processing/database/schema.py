# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Database schema for the telemetry store.

Timestamps are stored as fixed-width UTC ISO-8601 text so ORDER BY timestamp
is chronological.
"""

import logging

from .sqlite_client import SQLiteClient

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS tune_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id TEXT NOT NULL UNIQUE,
    uuid TEXT NOT NULL DEFAULT '',
    board TEXT NOT NULL DEFAULT '',
    tau REAL NOT NULL DEFAULT 0,
    data BLOB NOT NULL,
    timestamp TEXT NOT NULL,
    addr TEXT NOT NULL DEFAULT '',
    country TEXT NOT NULL DEFAULT '',
    region TEXT NOT NULL DEFAULT '',
    city TEXT NOT NULL DEFAULT '',
    lat REAL NOT NULL DEFAULT 0,
    lon REAL NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_tune_results_timestamp ON tune_results(timestamp);

CREATE TABLE IF NOT EXISTS usage_stats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id TEXT NOT NULL UNIQUE,
    data BLOB NOT NULL,
    timestamp TEXT NOT NULL,
    addr TEXT NOT NULL DEFAULT '',
    country TEXT NOT NULL DEFAULT '',
    region TEXT NOT NULL DEFAULT '',
    city TEXT NOT NULL DEFAULT '',
    lat REAL NOT NULL DEFAULT 0,
    lon REAL NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_usage_stats_timestamp ON usage_stats(timestamp);

CREATE TABLE IF NOT EXISTS crash_data (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id TEXT NOT NULL UNIQUE,
    timestamp TEXT NOT NULL,
    properties TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_crash_data_timestamp ON crash_data(timestamp);

CREATE TABLE IF NOT EXISTS found_controllers (
    uuid TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    hardware_rev INTEGER NOT NULL DEFAULT 0,
    git_hash TEXT NOT NULL DEFAULT '',
    git_tag TEXT NOT NULL DEFAULT '',
    uavo_hash TEXT NOT NULL DEFAULT '',
    gcs_os TEXT NOT NULL DEFAULT '',
    gcs_arch TEXT NOT NULL DEFAULT '',
    gcs_version TEXT NOT NULL DEFAULT '',
    addr TEXT NOT NULL DEFAULT '',
    country TEXT NOT NULL DEFAULT '',
    region TEXT NOT NULL DEFAULT '',
    city TEXT NOT NULL DEFAULT '',
    lat REAL NOT NULL DEFAULT 0,
    lon REAL NOT NULL DEFAULT 0,
    timestamp TEXT,
    oldest TEXT,
    count INTEGER NOT NULL DEFAULT 0,
    counted INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_found_controllers_timestamp ON found_controllers(timestamp);
"""


def create_schema(client: SQLiteClient) -> None:
    """Create all tables and indexes (idempotent)."""
    client.executescript(SCHEMA_SQL)
    client.execute(
        "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    logger.info(f"Schema version {SCHEMA_VERSION} ready")


def get_schema_version(client: SQLiteClient) -> int:
    with client.get_connection() as conn:
        row = conn.execute("SELECT MAX(version) AS v FROM schema_version").fetchone()
        return row["v"] or 0
