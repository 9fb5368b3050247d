# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Crash report ingest.

The base64 crash dump goes to a blob sink named after its SHA-1; the
remaining properties are stored as a typed property bag.
"""

import base64
import binascii
import hashlib
import logging
from pathlib import Path
from typing import Optional, Protocol, Union

from ..exceptions import MalformedInputError, StoreUnavailableError
from ..processing.database.writer import RecordWriter
from .shared.deadline import Deadline, check_deadline
from .shared.event_schema import (
    CrashData,
    Envelope,
    PropertyValue,
    new_record_id,
    parse_document,
)

logger = logging.getLogger(__name__)


class BlobSink(Protocol):
    """Write-only byte store for crash dumps."""

    def write(self, name: str, data: bytes) -> None:
        ...


class LocalBlobSink:
    """Blob sink backed by a local directory."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).expanduser()

    def write(self, name: str, data: bytes) -> None:
        path = self.root / name
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError as e:
            raise StoreUnavailableError(f"error writing blob {name}: {e}") from e


def dump_filename(data: bytes) -> str:
    digest = hashlib.sha1(data).hexdigest()
    return f"crash/{digest[:2]}/{digest[2:]}"


class CrashIngest:
    """Stores crash reports. Store or blob failures propagate to the caller."""

    def __init__(self, writer: RecordWriter, blob_sink: BlobSink, deadline_seconds: float = 10.0):
        self.writer = writer
        self.blob_sink = blob_sink
        self.deadline_seconds = deadline_seconds

    def ingest_crash(
        self,
        raw: Union[bytes, str],
        envelope: Envelope,
        deadline: Optional[Deadline] = None,
    ) -> CrashData:
        """
        Ingest a crash report.

        Raises:
            MalformedInputError: Bad JSON, missing or non-base64 dump, or
                non-scalar properties
            StoreUnavailableError: Blob sink or store failed
        """
        deadline = deadline or Deadline(self.deadline_seconds)
        doc = parse_document(raw)

        dump = doc.pop("dump", None)
        if not isinstance(dump, str):
            raise MalformedInputError("crash report has no dump")
        try:
            data = base64.b64decode(dump, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedInputError(f"Bad input: {e}") from e

        properties = {name: PropertyValue.of(value, name) for name, value in doc.items()}

        filename = dump_filename(data)
        check_deadline(deadline, "crash dump write")
        self.blob_sink.write(filename, data)

        properties["file"] = PropertyValue.of(filename)
        properties["timestamp"] = PropertyValue.of(envelope.timestamp)
        properties["addr"] = PropertyValue.of(envelope.addr)
        properties["country"] = PropertyValue.of(envelope.country)
        properties["region"] = PropertyValue.of(envelope.region)
        properties["city"] = PropertyValue.of(envelope.city)
        properties["lat"] = PropertyValue.of(envelope.lat)
        properties["lon"] = PropertyValue.of(envelope.lon)

        crash = CrashData(record_id=new_record_id(), properties=properties)
        check_deadline(deadline, "crash store")
        try:
            self.writer.put_crash(crash)
        except StoreUnavailableError as e:
            logger.warning(f"Error storing crash report {crash.record_id}: {e}")
            raise
        logger.info(f"Stored crash report {crash.key} ({len(data)} byte dump at {filename})")
        return crash
