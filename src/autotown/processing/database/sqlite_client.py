# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
SQLite client wrapper.

Provides connections with consistent settings and maps SQLite failures onto
StoreUnavailableError.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from ...exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


class SQLiteClient:
    """
    Thin SQLite connection factory.

    Each operation opens its own connection so the client is safe to share
    between threads (workers call the store through asyncio.to_thread).
    """

    def __init__(self, db_path: str, busy_timeout: float = 5.0):
        """
        Initialize SQLite client.

        Args:
            db_path: Path to the database file
            busy_timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = Path(db_path).expanduser()
        self.busy_timeout = busy_timeout

    def initialize_database(self) -> None:
        """Create the database file and enable WAL mode."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
        logger.info(f"Database ready: {self.db_path}")

    def connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        """
        Connection in autocommit mode.

        Raises:
            StoreUnavailableError: On any SQLite error inside the block
        """
        conn = self.connect()
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreUnavailableError(str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Write transaction (BEGIN IMMEDIATE).

        Commits when the block exits normally; rolls back on any exception.
        """
        conn = self.connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"cannot begin transaction: {e}") from e
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")
        except sqlite3.Error as e:
            raise StoreUnavailableError(str(e)) from e
        finally:
            conn.close()

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        with self.get_connection() as conn:
            conn.execute(sql, params or ())

    def executescript(self, sql: str) -> None:
        with self.get_connection() as conn:
            conn.executescript(sql)
