# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Shared fixtures: a temporary SQLite store and an in-memory work queue.
"""

import pytest

from autotown.capture.shared.config import Config
from autotown.capture.shared.event_schema import Envelope
from autotown.processing.database.controller_store import FoundControllerStore
from autotown.processing.database.schema import create_schema
from autotown.processing.database.sqlite_client import SQLiteClient
from autotown.processing.database.writer import RecordWriter

from helpers import T0, FakeQueueWriter


@pytest.fixture
def config(tmp_path) -> Config:
    return Config.from_dict({
        "database": {"path": str(tmp_path / "autotown.db")},
        "blobs": {"root": str(tmp_path / "blobs")},
    })


@pytest.fixture
def sqlite_client(config) -> SQLiteClient:
    client = SQLiteClient(config.database.path)
    client.initialize_database()
    create_schema(client)
    return client


@pytest.fixture
def writer(sqlite_client) -> RecordWriter:
    return RecordWriter(sqlite_client)


@pytest.fixture
def controller_store(sqlite_client) -> FoundControllerStore:
    return FoundControllerStore(sqlite_client)


@pytest.fixture
def queue() -> FakeQueueWriter:
    return FakeQueueWriter()


@pytest.fixture
def envelope() -> Envelope:
    return Envelope(
        timestamp=T0,
        addr="203.0.113.7",
        country="NZ",
        region="auk",
        city="auckland",
        lat=-36.85,
        lon=174.76,
    )
