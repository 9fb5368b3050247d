# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for submission records and envelopes.
"""

import json
from datetime import datetime, timezone

import pytest

from autotown.capture.shared.event_schema import (
    Envelope,
    PropertyKind,
    PropertyValue,
    RollupMessage,
    TuneFields,
    UsageReport,
    UsageStat,
    decode_record,
    encode_record,
    format_ts,
    parse_document,
    parse_ts,
)
from autotown.exceptions import CodecError, MalformedInputError
from autotown.processing.database.compression import compress

from helpers import T0, as_json, board, tune_document, usage_document


class TestEnvelope:
    """Test request metadata capture."""

    def test_from_request(self):
        headers = {
            "X-AppEngine-Country": "NZ",
            "X-AppEngine-Region": "auk",
            "X-AppEngine-City": "auckland",
            "X-AppEngine-CityLatLong": "-36.85,174.76",
        }
        envelope = Envelope.from_request("203.0.113.7", headers, now=T0)
        assert envelope == Envelope(
            timestamp=T0, addr="203.0.113.7", country="NZ", region="auk",
            city="auckland", lat=-36.85, lon=174.76,
        )

    def test_missing_headers(self):
        envelope = Envelope.from_request("", {}, now=T0)
        assert envelope.country == ""
        assert (envelope.lat, envelope.lon) == (0.0, 0.0)

    def test_unparseable_latlong(self):
        envelope = Envelope.from_request("", {"X-AppEngine-CityLatLong": "?"}, now=T0)
        assert (envelope.lat, envelope.lon) == (0.0, 0.0)

    def test_timestamps_are_utc_and_sortable(self):
        naive = datetime(2017, 6, 1, 12, 0)
        assert format_ts(naive) == "2017-06-01T12:00:00.000000+00:00"
        assert parse_ts(format_ts(naive)) == T0
        assert format_ts(T0) < format_ts(datetime(2017, 6, 1, 12, 0, 1, tzinfo=timezone.utc))


class TestDocuments:
    """Test typed views over loosely typed documents."""

    def test_parse_document_rejects_non_objects(self):
        with pytest.raises(MalformedInputError):
            parse_document(b"[1, 2]")
        with pytest.raises(MalformedInputError):
            parse_document(b"{oops")

    def test_tune_fields(self):
        fields = TuneFields.from_document(tune_document(unique_id="u1", board="Sparky2"))
        assert fields.uuid == "u1"
        assert fields.board == "Sparky2"
        assert fields.commit == "deadbeef"
        assert fields.tau == pytest.approx(0.0312)

    def test_tune_fields_missing_sections(self):
        assert TuneFields.from_document({}) == TuneFields()

    def test_tune_fields_wrong_type(self):
        doc = tune_document()
        doc["identification"]["tau"] = "fast"
        with pytest.raises(MalformedInputError, match="identification.tau"):
            TuneFields.from_document(doc)

    def test_integral_tau_accepted(self):
        doc = tune_document()
        doc["identification"]["tau"] = 1
        assert TuneFields.from_document(doc).tau == 1.0

    def test_usage_report_keys_case_insensitive(self):
        doc = {"boardsseen": [board(uuid="x")], "currentos": "Ubuntu", "shareip": "true"}
        report = UsageReport.from_document(doc)
        assert report.boards_seen[0].uuid == "x"
        assert report.current_os == "Ubuntu"
        assert report.shares_ip

    def test_consent_only_from_exact_true(self):
        for value in ("false", "True", "yes", ""):
            assert not UsageReport.from_document({"ShareIP": value}).shares_ip

    def test_mistyped_sighting_left_out(self):
        """Test a bad sighting is dropped while the rest of the report decodes."""
        doc = usage_document(board(uuid="good"), board(uuid="bad", board_id="nine"), "not a board")
        report = UsageReport.from_document(doc)
        assert [b.uuid for b in report.boards_seen] == ["good"]
        assert report.malformed_sightings == 2

    def test_mistyped_board_list(self):
        with pytest.raises(MalformedInputError, match="BoardsSeen"):
            UsageReport.from_document({"BoardsSeen": {"ID": 1}})


class TestRetryRecords:
    """Test the ingest retry lane payload."""

    def test_usage_record_survives_queue(self):
        record = UsageStat(
            record_id="r1",
            data=compress(as_json(usage_document())),
            envelope=Envelope(timestamp=T0, addr="203.0.113.7"),
        )
        decoded = decode_record(encode_record(record))
        assert isinstance(decoded, UsageStat)
        assert decoded.record_id == "r1"
        assert decoded.data == record.data
        assert decoded.envelope == record.envelope

    @pytest.mark.parametrize("payload", [
        b"garbage",
        b'{"kind": "video", "record": {}}',
        b'{"kind": "tune"}',
    ])
    def test_undecodable(self, payload):
        with pytest.raises(CodecError):
            decode_record(payload)


class TestRollupMessage:
    """Test the rollup lane payload."""

    def test_from_usage_stat(self):
        raw = json.dumps(usage_document(board(uuid="b")))
        stat = UsageStat(record_id="r", data=compress(raw.encode('utf-8')),
                         envelope=Envelope(timestamp=T0))
        message = RollupMessage.from_payload(RollupMessage.from_usage_stat(stat).to_payload())
        assert message.raw_data == raw
        assert message.envelope.timestamp == T0

    def test_undecodable_payload(self):
        with pytest.raises(CodecError):
            RollupMessage.from_payload(b"not zlib")

    def test_undecompressable_usage_stat(self):
        stat = UsageStat(record_id="r", data=b"\x00\x01", envelope=Envelope(timestamp=T0))
        with pytest.raises(CodecError):
            RollupMessage.from_usage_stat(stat)

    def test_non_string_report_body(self):
        """Test a payload whose report is not a string is rejected as undecodable."""
        body = Envelope(timestamp=T0).to_dict()
        body["raw_data"] = 42
        with pytest.raises(CodecError, match="raw_data"):
            RollupMessage.from_payload(compress(json.dumps(body).encode('utf-8')))


class TestPropertyValue:
    """Test crash property typing."""

    def test_kinds(self):
        assert PropertyValue.of(True).kind is PropertyKind.BOOLEAN
        assert PropertyValue.of(3).kind is PropertyKind.NUMBER
        assert PropertyValue.of(2.5).kind is PropertyKind.NUMBER
        assert PropertyValue.of("x").kind is PropertyKind.STRING
        assert PropertyValue.of(T0).kind is PropertyKind.TIMESTAMP

    def test_nested_values_rejected(self):
        with pytest.raises(MalformedInputError, match="board"):
            PropertyValue.of({"a": 1}, "board")
        with pytest.raises(MalformedInputError):
            PropertyValue.of([1, 2])

    def test_timestamp_json(self):
        value = PropertyValue.of(T0)
        assert PropertyValue.from_json(value.to_json()) == value
        assert value.plain() == format_ts(T0)
