# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Exports and listings of stored submissions.

Bulk exports and listings never carry device identities: devices are
numbered 1, 2, 3... in order of first appearance within one export.
"""

import csv
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TextIO

from ..capture.shared.event_schema import CrashData, TuneResults
from ..exceptions import CodecError
from ..processing.database.controller_store import FoundControllerStore
from ..processing.database.writer import RecordWriter
from ..processing.identity import abbrev_os, canonical_board

logger = logging.getLogger(__name__)

TUNE_HEADER = ["timestamp", "id", "country", "region", "city", "lat", "lon"]

TUNE_COLUMNS = [
    "/vehicle/batteryCells", "/vehicle/esc",
    "/vehicle/motor", "/vehicle/size", "/vehicle/type",
    "/vehicle/weight",
    "/vehicle/firmware/board",
    "/vehicle/firmware/commit",
    "/vehicle/firmware/date",
    "/vehicle/firmware/tag",

    "/identification/tau",
    "/identification/pitch/bias",
    "/identification/pitch/gain",
    "/identification/pitch/noise",
    "/identification/roll/bias",
    "/identification/roll/gain",
    "/identification/roll/noise",

    "/tuning/parameters/damping",
    "/tuning/parameters/noiseSensitivity",

    "/tuning/computed/derivativeCutoff",
    "/tuning/computed/naturalFrequency",
    "/tuning/computed/gains/outer/kp",
    "/tuning/computed/gains/pitch/kp",
    "/tuning/computed/gains/pitch/ki",
    "/tuning/computed/gains/pitch/kd",
    "/tuning/computed/gains/roll/kp",
    "/tuning/computed/gains/roll/ki",
    "/tuning/computed/gains/roll/kd",

    "/userObservations",
]

BOARD_HEADER = [
    "timestamp", "oldest", "count",
    "uuid", "name", "hwrev", "git_hash", "git_tag", "uavo_hash",
    "gcs_os", "gcs_os_abbrev", "gcs_arch", "gcs_version",
    "country", "region", "city", "lat", "lon",
]


class AnonymousIds:
    """Hands out sequential ids, stable per identity within one instance."""

    def __init__(self):
        self._ids: Dict[str, str] = {}

    def __call__(self, identity: str) -> str:
        if identity not in self._ids:
            self._ids[identity] = str(len(self._ids) + 1)
        return self._ids[identity]


def resolve_pointer(doc: Any, pointer: str) -> Any:
    """
    Resolve a JSON pointer (RFC 6901) against a decoded document.

    Raises:
        KeyError: If the pointer does not resolve
    """
    if pointer == "":
        return doc
    value = doc
    for token in pointer.lstrip("/").split("/"):
        token = token.replace("~1", "/").replace("~0", "~")
        if isinstance(value, dict) and token in value:
            value = value[token]
        elif isinstance(value, list) and token.isdigit() and int(token) < len(value):
            value = value[int(token)]
        else:
            raise KeyError(f"field {pointer}: not found")
    return value


def column_name(pointer: str) -> str:
    """``/vehicle/firmware/board`` -> ``vehicle.firmware.board``"""
    return pointer[1:].replace("/", ".")


def format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(',', ':'))
    return str(value)


def rfc3339(ts: Optional[datetime]) -> str:
    if ts is None:
        return ""
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _decoded(record: TuneResults) -> Optional[Any]:
    try:
        return json.loads(record.document())
    except (CodecError, ValueError) as e:
        logger.info(f"Error decompressing tune {record.key}: {e}")
        return None


def export_tunes_csv(writer: RecordWriter, out: TextIO) -> int:
    """
    Write every tune as one CSV row, oldest first.

    Records that cannot be decoded or lack one of the columns are skipped.

    Returns:
        Number of rows written (excluding the header)
    """
    cw = csv.writer(out)
    cw.writerow(TUNE_HEADER + [column_name(c) for c in TUNE_COLUMNS])

    anonymous = AnonymousIds()
    rows = 0
    for record in writer.iter_tunes():
        doc = _decoded(record)
        if doc is None:
            continue
        try:
            values = [format_cell(resolve_pointer(doc, c)) for c in TUNE_COLUMNS]
        except KeyError as e:
            logger.info(f"Error extracting fields from tune {record.key}: {e}")
            continue

        env = record.envelope
        cw.writerow([
            rfc3339(env.timestamp), anonymous(record.uuid),
            env.country, env.region, env.city, format_cell(env.lat), format_cell(env.lon),
        ] + values)
        rows += 1
    return rows


def export_tunes_json(writer: RecordWriter, out: TextIO) -> int:
    """Write every tune as one JSON object per line, oldest first."""
    anonymous = AnonymousIds()
    rows = 0
    for record in writer.iter_tunes():
        doc = _decoded(record)
        if doc is None:
            continue
        env = record.envelope
        entry = {
            "id": anonymous(record.uuid),
            "timestamp": rfc3339(env.timestamp),
            "addr": env.addr,
            "country": env.country,
            "region": env.region,
            "city": env.city,
            "lat": env.lat,
            "lon": env.lon,
            "tuneData": doc,
        }
        out.write(json.dumps(entry) + "\n")
        rows += 1
    return rows


def export_boards_csv(store: FoundControllerStore, out: TextIO) -> int:
    """Write every found controller as one CSV row, most recently seen first."""
    cw = csv.writer(out)
    cw.writerow(BOARD_HEADER)
    rows = 0
    for fc in store.iter_all():
        cw.writerow([
            rfc3339(fc.timestamp), rfc3339(fc.oldest), str(fc.count),
            fc.uuid, canonical_board(fc.name), str(fc.hardware_rev),
            fc.git_hash, fc.git_tag, fc.uavo_hash,
            fc.gcs_os, abbrev_os(fc.gcs_os), fc.gcs_arch, fc.gcs_version,
            fc.country, fc.region, fc.city, format_cell(fc.lat), format_cell(fc.lon),
        ])
        rows += 1
    return rows


def tune_summary(record: TuneResults, device_id: str) -> Dict[str, Any]:
    env = record.envelope
    return {
        "key": record.key,
        "id": device_id,
        "timestamp": rfc3339(env.timestamp),
        "board": record.board,
        "tau": record.tau,
        "country": env.country,
        "region": env.region,
        "city": env.city,
    }


def recent_tunes(writer: RecordWriter, limit: int = 50) -> List[Dict[str, Any]]:
    """Newest tunes with anonymised device ids."""
    anonymous = AnonymousIds()
    return [tune_summary(r, anonymous(r.uuid)) for r in writer.recent_tunes(limit)]


def get_tune(writer: RecordWriter, key: int) -> Optional[Dict[str, Any]]:
    """
    One tune including its original document.

    Raises:
        CodecError: If the stored document cannot be decompressed
    """
    record = writer.get_tune(key)
    if record is None:
        return None
    summary = tune_summary(record, record.uuid)
    summary["orig"] = json.loads(record.document())
    return summary


def crash_summary(crash: CrashData) -> Dict[str, Any]:
    return {
        "key": crash.key,
        "properties": {name: prop.plain() for name, prop in crash.properties.items()},
    }


def recent_crashes(writer: RecordWriter, limit: int = 50) -> List[Dict[str, Any]]:
    return [crash_summary(c) for c in writer.recent_crashes(limit)]
