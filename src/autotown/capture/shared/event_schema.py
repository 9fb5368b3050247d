# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Record schema for telemetry submissions.

Incoming documents are loosely typed JSON. Only a fixed set of fields is
decoded into typed records; the full document is kept as an opaque
(compressed) blob.
"""

import base64
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from ...exceptions import CodecError, MalformedInputError
from ...processing.database.compression import compress, decompress

logger = logging.getLogger(__name__)

GEO_HEADERS = {
    "country": "x-appengine-country",
    "region": "x-appengine-region",
    "city": "x-appengine-city",
    "latlong": "x-appengine-citylatlong",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(ts: datetime) -> str:
    """Fixed-width UTC ISO-8601 string; lexical order equals time order."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def new_record_id() -> str:
    return uuid.uuid4().hex


class RecordKind(str, Enum):
    """Kinds of record that travel the ingest retry lane."""

    TUNE = "tune"
    USAGE = "usage"


@dataclass(frozen=True)
class Envelope:
    """Submission metadata captured once at ingest."""

    timestamp: datetime
    addr: str = ""
    country: str = ""
    region: str = ""
    city: str = ""
    lat: float = 0.0
    lon: float = 0.0

    @classmethod
    def from_request(
        cls,
        remote_addr: str,
        headers: Mapping[str, str],
        now: Optional[datetime] = None,
    ) -> "Envelope":
        """
        Build an envelope from request metadata.

        Args:
            remote_addr: Network origin of the submission
            headers: Request headers (names matched case-insensitively)
            now: Submission time (default: current UTC time)
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        lat, lon = _parse_latlong(lowered.get(GEO_HEADERS["latlong"], ""))
        return cls(
            timestamp=now or utcnow(),
            addr=remote_addr or "",
            country=lowered.get(GEO_HEADERS["country"], ""),
            region=lowered.get(GEO_HEADERS["region"], ""),
            city=lowered.get(GEO_HEADERS["city"], ""),
            lat=lat,
            lon=lon,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": format_ts(self.timestamp),
            "addr": self.addr,
            "country": self.country,
            "region": self.region,
            "city": self.city,
            "lat": self.lat,
            "lon": self.lon,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Envelope":
        return cls(
            timestamp=parse_ts(data["timestamp"]),
            addr=data.get("addr", ""),
            country=data.get("country", ""),
            region=data.get("region", ""),
            city=data.get("city", ""),
            lat=float(data.get("lat", 0.0)),
            lon=float(data.get("lon", 0.0)),
        )


def _parse_latlong(value: str):
    try:
        lat, lon = value.split(",", 1)
        return float(lat), float(lon)
    except ValueError:
        return 0.0, 0.0


def parse_document(raw: Union[bytes, str]) -> Dict[str, Any]:
    """
    Decode a submitted JSON document.

    Raises:
        MalformedInputError: If the body is not a JSON object
    """
    try:
        doc = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedInputError(f"invalid JSON: {e}") from e
    if not isinstance(doc, dict):
        raise MalformedInputError("document must be a JSON object")
    return doc


def _get_ci(obj: Mapping[str, Any], name: str) -> Any:
    """Look up a key, falling back to a case-insensitive match."""
    if name in obj:
        return obj[name]
    lowered = name.lower()
    for key, value in obj.items():
        if key.lower() == lowered:
            return value
    return None


def _typed(obj: Mapping[str, Any], name: str, kind, default, path: str):
    value = _get_ci(obj, name)
    if value is None:
        return default
    if kind is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise MalformedInputError(f"{path}: expected number, got {type(value).__name__}")
        return float(value)
    if kind is int:
        if isinstance(value, bool) or not isinstance(value, int):
            if isinstance(value, float) and value.is_integer():
                return int(value)
            raise MalformedInputError(f"{path}: expected integer, got {type(value).__name__}")
        return value
    if kind is dict:
        if not isinstance(value, dict):
            raise MalformedInputError(f"{path}: expected object, got {type(value).__name__}")
        return value
    if kind is list:
        if not isinstance(value, list):
            raise MalformedInputError(f"{path}: expected array, got {type(value).__name__}")
        return value
    if not isinstance(value, kind):
        raise MalformedInputError(f"{path}: expected {kind.__name__}, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class TuneFields:
    """Fields pulled out of an autotune document."""

    uuid: str = ""
    board: str = ""
    commit: str = ""
    tag: str = ""
    tau: float = 0.0

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "TuneFields":
        vehicle = _typed(doc, "vehicle", dict, {}, "vehicle")
        firmware = _typed(vehicle, "firmware", dict, {}, "vehicle.firmware")
        ident = _typed(doc, "identification", dict, {}, "identification")
        return cls(
            uuid=_typed(doc, "uniqueId", str, "", "uniqueId"),
            board=_typed(firmware, "board", str, "", "vehicle.firmware.board"),
            commit=_typed(firmware, "commit", str, "", "vehicle.firmware.commit"),
            tag=_typed(firmware, "tag", str, "", "vehicle.firmware.tag"),
            tau=_typed(ident, "tau", float, 0.0, "identification.tau"),
        )


@dataclass
class TuneResults:
    """A stored autotune submission."""

    record_id: str
    data: bytes
    envelope: Envelope
    uuid: str = ""
    board: str = ""
    tau: float = 0.0
    key: Optional[int] = None

    def document(self) -> bytes:
        """Decompressed original document."""
        return decompress(self.data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "data": base64.b64encode(self.data).decode('ascii'),
            "envelope": self.envelope.to_dict(),
            "uuid": self.uuid,
            "board": self.board,
            "tau": self.tau,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TuneResults":
        return cls(
            record_id=data["record_id"],
            data=base64.b64decode(data["data"]),
            envelope=Envelope.from_dict(data["envelope"]),
            uuid=data.get("uuid", ""),
            board=data.get("board", ""),
            tau=float(data.get("tau", 0.0)),
        )


@dataclass
class UsageStat:
    """A stored GCS usage report."""

    record_id: str
    data: bytes
    envelope: Envelope
    key: Optional[int] = None

    def document(self) -> bytes:
        return decompress(self.data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "data": base64.b64encode(self.data).decode('ascii'),
            "envelope": self.envelope.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UsageStat":
        return cls(
            record_id=data["record_id"],
            data=base64.b64decode(data["data"]),
            envelope=Envelope.from_dict(data["envelope"]),
        )


RECORD_TYPES = {
    RecordKind.TUNE: TuneResults,
    RecordKind.USAGE: UsageStat,
}


def encode_record(record: Union[TuneResults, UsageStat]) -> bytes:
    """Serialize a prepared record into a self-contained ingest retry payload."""
    kind = RecordKind.TUNE if isinstance(record, TuneResults) else RecordKind.USAGE
    body = {"kind": kind.value, "record": record.to_dict()}
    return json.dumps(body, separators=(',', ':')).encode('utf-8')


def decode_record(payload: bytes) -> Union[TuneResults, UsageStat]:
    """
    Inverse of :func:`encode_record`.

    Raises:
        CodecError: If the payload is not a valid retry record
    """
    try:
        body = json.loads(payload)
        kind = RecordKind(body["kind"])
        return RECORD_TYPES[kind].from_dict(body["record"])
    except (ValueError, KeyError, TypeError) as e:
        raise CodecError(f"undecodable ingest record: {e}") from e


@dataclass(frozen=True)
class BoardSighting:
    """One board as reported inside a usage report."""

    id: int = 0
    cpu: str = ""
    uuid: str = ""
    fw_hash: str = ""
    git_hash: str = ""
    git_tag: str = ""
    name: str = ""
    uavo_hash: str = ""

    @classmethod
    def from_document(cls, doc: Mapping[str, Any], path: str = "BoardsSeen[]") -> "BoardSighting":
        if not isinstance(doc, dict):
            raise MalformedInputError(f"{path}: expected object, got {type(doc).__name__}")
        return cls(
            id=_typed(doc, "ID", int, 0, f"{path}.ID"),
            cpu=_typed(doc, "CPU", str, "", f"{path}.CPU"),
            uuid=_typed(doc, "UUID", str, "", f"{path}.UUID"),
            fw_hash=_typed(doc, "FwHash", str, "", f"{path}.FwHash"),
            git_hash=_typed(doc, "GitHash", str, "", f"{path}.GitHash"),
            git_tag=_typed(doc, "GitTag", str, "", f"{path}.GitTag"),
            name=_typed(doc, "Name", str, "", f"{path}.Name"),
            uavo_hash=_typed(doc, "UavoHash", str, "", f"{path}.UavoHash"),
        )


@dataclass(frozen=True)
class UsageReport:
    """Typed view of a usage document."""

    boards_seen: List[BoardSighting] = field(default_factory=list)
    current_arch: str = ""
    current_os: str = ""
    gcs_version: str = ""
    share_ip: str = ""
    malformed_sightings: int = 0

    @property
    def shares_ip(self) -> bool:
        """Consent is only given by an explicit "true"."""
        return self.share_ip == "true"

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "UsageReport":
        """
        Decode a usage document.

        A mistyped sighting is logged and left out (counted in
        ``malformed_sightings``); only document-level type errors raise.

        Raises:
            MalformedInputError: If a top-level field has the wrong type
        """
        boards = _typed(doc, "BoardsSeen", list, [], "BoardsSeen")
        sightings = []
        malformed = 0
        for i, b in enumerate(boards):
            try:
                sightings.append(BoardSighting.from_document(b, f"BoardsSeen[{i}]"))
            except MalformedInputError as e:
                logger.warning(f"Skipping malformed sighting: {e}")
                malformed += 1
        return cls(
            boards_seen=sightings,
            malformed_sightings=malformed,
            current_arch=_typed(doc, "CurrentArch", str, "", "CurrentArch"),
            current_os=_typed(doc, "CurrentOS", str, "", "CurrentOS"),
            gcs_version=_typed(doc, "gcs_version", str, "", "gcs_version"),
            share_ip=_typed(doc, "ShareIP", str, "", "ShareIP"),
        )


@dataclass(frozen=True)
class RollupMessage:
    """Self-contained rollup lane payload for one usage report."""

    envelope: Envelope
    raw_data: str

    @classmethod
    def from_usage_stat(cls, stat: UsageStat) -> "RollupMessage":
        try:
            raw = stat.document().decode('utf-8')
        except UnicodeDecodeError as e:
            raise CodecError(f"usage document is not UTF-8: {e}") from e
        return cls(envelope=stat.envelope, raw_data=raw)

    def report(self) -> UsageReport:
        return UsageReport.from_document(parse_document(self.raw_data))

    def to_payload(self) -> bytes:
        body = self.envelope.to_dict()
        body["raw_data"] = self.raw_data
        return compress(json.dumps(body, separators=(',', ':')).encode('utf-8'))

    @classmethod
    def from_payload(cls, payload: bytes) -> "RollupMessage":
        """
        Raises:
            CodecError: If the payload cannot be decompressed or decoded
        """
        try:
            body = json.loads(decompress(payload))
            raw_data = body["raw_data"]
            envelope = Envelope.from_dict(body)
        except (ValueError, KeyError, TypeError) as e:
            raise CodecError(f"undecodable rollup message: {e}") from e
        if not isinstance(raw_data, str):
            raise CodecError(f"undecodable rollup message: raw_data is {type(raw_data).__name__}")
        return cls(envelope=envelope, raw_data=raw_data)


@dataclass
class FoundController:
    """Rollup of every usage report that mentioned one board."""

    uuid: str
    name: str = ""
    hardware_rev: int = 0
    git_hash: str = ""
    git_tag: str = ""
    uavo_hash: str = ""
    gcs_os: str = ""
    gcs_arch: str = ""
    gcs_version: str = ""
    addr: str = ""
    country: str = ""
    region: str = ""
    city: str = ""
    lat: float = 0.0
    lon: float = 0.0
    timestamp: Optional[datetime] = None
    oldest: Optional[datetime] = None
    count: int = 0
    counted: bool = False


class PropertyKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class PropertyValue:
    """Tagged scalar stored in a crash record's property bag."""

    kind: PropertyKind
    value: Union[str, float, int, bool, datetime]

    @classmethod
    def of(cls, value: Any, name: str = "") -> "PropertyValue":
        if isinstance(value, bool):
            return cls(PropertyKind.BOOLEAN, value)
        if isinstance(value, (int, float)):
            return cls(PropertyKind.NUMBER, value)
        if isinstance(value, str):
            return cls(PropertyKind.STRING, value)
        if isinstance(value, datetime):
            return cls(PropertyKind.TIMESTAMP, value)
        raise MalformedInputError(f"property {name!r}: unsupported value type {type(value).__name__}")

    def to_json(self) -> Dict[str, Any]:
        value = format_ts(self.value) if self.kind is PropertyKind.TIMESTAMP else self.value
        return {"type": self.kind.value, "value": value}

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "PropertyValue":
        kind = PropertyKind(data["type"])
        value = parse_ts(data["value"]) if kind is PropertyKind.TIMESTAMP else data["value"]
        return cls(kind, value)

    def plain(self) -> Any:
        """Value suitable for JSON output."""
        return format_ts(self.value) if self.kind is PropertyKind.TIMESTAMP else self.value


@dataclass
class CrashData:
    """Crash report properties; the dump itself lives in the blob sink."""

    record_id: str
    properties: Dict[str, PropertyValue] = field(default_factory=dict)
    key: Optional[int] = None

    @property
    def timestamp(self) -> Optional[datetime]:
        prop = self.properties.get("timestamp")
        return prop.value if prop and prop.kind is PropertyKind.TIMESTAMP else None

    def properties_json(self) -> str:
        return json.dumps({k: v.to_json() for k, v in self.properties.items()}, sort_keys=True)

    @classmethod
    def from_properties_json(cls, record_id: str, text: str, key: Optional[int] = None) -> "CrashData":
        props = {k: PropertyValue.from_json(v) for k, v in json.loads(text).items()}
        return cls(record_id=record_id, properties=props, key=key)
