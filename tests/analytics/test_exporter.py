# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for tune and board exports.
"""

import csv
import io
import json

import pytest

from autotown.analytics.exporter import (
    BOARD_HEADER,
    TUNE_COLUMNS,
    TUNE_HEADER,
    AnonymousIds,
    column_name,
    export_boards_csv,
    export_tunes_csv,
    export_tunes_json,
    format_cell,
    get_tune,
    recent_crashes,
    recent_tunes,
    resolve_pointer,
    rfc3339,
)
from autotown.capture.shared.event_schema import (
    CrashData,
    Envelope,
    FoundController,
    PropertyValue,
    TuneResults,
    new_record_id,
)
from autotown.processing.database.compression import compress

from helpers import T0, as_json, at, tune_document


def store_tune(writer, doc, minutes=0, uuid=None, data=None):
    record = TuneResults(
        record_id=new_record_id(),
        data=data if data is not None else compress(as_json(doc)),
        envelope=Envelope(timestamp=at(minutes), addr="203.0.113.7", country="NZ",
                          region="auk", city="auckland", lat=-36.85, lon=174.76),
        uuid=uuid if uuid is not None else doc.get("uniqueId", ""),
        board="Revolution",
        tau=0.0312,
    )
    writer.put_tune(record)
    return record.key


def read_csv(text):
    return list(csv.reader(io.StringIO(text)))


class TestHelpers:
    """Test pointer resolution and cell formatting."""

    def test_resolve_pointer(self):
        doc = {"a": {"b/c": [10, {"d~e": 1}]}}
        assert resolve_pointer(doc, "/a/b~1c/0") == 10
        assert resolve_pointer(doc, "/a/b~1c/1/d~0e") == 1
        assert resolve_pointer(doc, "") is doc

    def test_resolve_pointer_missing(self):
        with pytest.raises(KeyError):
            resolve_pointer({"a": {}}, "/a/b")
        with pytest.raises(KeyError):
            resolve_pointer({"a": [1]}, "/a/5")

    def test_format_cell(self):
        assert format_cell(None) == ""
        assert format_cell(True) == "true"
        assert format_cell(4.0) == "4"
        assert format_cell(0.5) == "0.5"
        assert format_cell({"k": [1]}) == '{"k":[1]}'

    def test_column_name(self):
        assert column_name("/vehicle/firmware/board") == "vehicle.firmware.board"

    def test_rfc3339(self):
        assert rfc3339(T0) == "2017-06-01T12:00:00Z"
        assert rfc3339(None) == ""

    def test_anonymous_ids(self):
        ids = AnonymousIds()
        assert [ids(u) for u in ("x", "y", "x", "z")] == ["1", "2", "1", "3"]


class TestTuneExport:
    """Test bulk tune exports."""

    def test_csv(self, writer):
        store_tune(writer, tune_document(unique_id="dev-b"), minutes=5)
        store_tune(writer, tune_document(unique_id="dev-a"), minutes=1)
        store_tune(writer, tune_document(unique_id="dev-a", tau=0.05), minutes=9)

        out = io.StringIO()
        assert export_tunes_csv(writer, out) == 3

        header, *rows = read_csv(out.getvalue())
        assert header == TUNE_HEADER + [column_name(c) for c in TUNE_COLUMNS]
        assert [row[0] for row in rows] == [
            "2017-06-01T12:01:00Z", "2017-06-01T12:05:00Z", "2017-06-01T12:09:00Z",
        ]
        # Devices are numbered by first appearance, never exported verbatim
        assert [row[1] for row in rows] == ["1", "2", "1"]
        assert "dev-a" not in out.getvalue()

        first = dict(zip(header, rows[0]))
        assert first["city"] == "auckland"
        assert first["lat"] == "-36.85"
        assert first["vehicle.batteryCells"] == "4"
        assert first["vehicle.firmware.board"] == "Revolution"
        assert first["identification.tau"] == "0.0312"
        assert first["userObservations"] == "flies well"

    def test_csv_skips_incomplete_and_corrupt(self, writer):
        incomplete = tune_document()
        del incomplete["tuning"]["computed"]["gains"]["outer"]
        store_tune(writer, incomplete, minutes=0)
        store_tune(writer, {}, minutes=1, uuid="x", data=b"corrupt")
        store_tune(writer, tune_document(), minutes=2)

        out = io.StringIO()
        assert export_tunes_csv(writer, out) == 1
        assert len(read_csv(out.getvalue())) == 2

    def test_csv_empty(self, writer):
        out = io.StringIO()
        assert export_tunes_csv(writer, out) == 0
        assert len(read_csv(out.getvalue())) == 1

    def test_json_lines(self, writer):
        store_tune(writer, tune_document(unique_id="dev-a"), minutes=0)
        store_tune(writer, tune_document(unique_id="dev-b"), minutes=1)

        out = io.StringIO()
        assert export_tunes_json(writer, out) == 2

        entries = [json.loads(line) for line in out.getvalue().splitlines()]
        assert [e["id"] for e in entries] == ["1", "2"]
        assert entries[0]["timestamp"] == "2017-06-01T12:00:00Z"
        assert entries[0]["tuneData"]["vehicle"]["firmware"]["board"] == "Revolution"
        assert entries[0]["addr"] == "203.0.113.7"


class TestBoardExport:
    """Test the found controllers export."""

    def test_csv(self, controller_store):
        with controller_store.transaction() as conn:
            controller_store.put_multi([
                FoundController(uuid="u1", name="Revolution", hardware_rev=2,
                                gcs_os="OS X 10.12", timestamp=at(30), oldest=at(0), count=4),
                FoundController(uuid="u2", name="Sparky2", gcs_os="Windows 10",
                                timestamp=at(5), oldest=at(5), count=1),
            ], conn)

        out = io.StringIO()
        assert export_boards_csv(controller_store, out) == 2

        header, *rows = read_csv(out.getvalue())
        assert header == BOARD_HEADER
        first = dict(zip(header, rows[0]))
        assert first["uuid"] == "u1"
        assert first["name"] == "Revo"
        assert first["gcs_os_abbrev"] == "Mac"
        assert first["hwrev"] == "2"
        assert first["count"] == "4"
        assert first["oldest"] == "2017-06-01T12:00:00Z"
        assert dict(zip(header, rows[1]))["gcs_os_abbrev"] == "Windows"


class TestListings:
    """Test recent listings and single tune lookup."""

    def test_recent_tunes(self, writer):
        store_tune(writer, tune_document(unique_id="dev-a"), minutes=0)
        store_tune(writer, tune_document(unique_id="dev-b"), minutes=1)

        listing = recent_tunes(writer, limit=10)
        assert [t["timestamp"] for t in listing] == ["2017-06-01T12:01:00Z", "2017-06-01T12:00:00Z"]
        assert [t["id"] for t in listing] == ["1", "2"]
        assert listing[0]["board"] == "Revolution"

    def test_get_tune(self, writer):
        key = store_tune(writer, tune_document(unique_id="dev-a"))
        tune = get_tune(writer, key)
        assert tune["key"] == key
        assert tune["orig"] == tune_document(unique_id="dev-a")

    def test_get_missing_tune(self, writer):
        assert get_tune(writer, 999) is None

    def test_recent_crashes(self, writer):
        writer.put_crash(CrashData(
            record_id=new_record_id(),
            properties={"timestamp": PropertyValue.of(T0), "uptime": PropertyValue.of(12)},
        ))
        [crash] = recent_crashes(writer)
        assert crash["properties"] == {"timestamp": "2017-06-01T12:00:00.000000+00:00", "uptime": 12}
