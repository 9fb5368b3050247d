# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Reliable ingest for tune and usage submissions.

A submission is prepared once (parsed, compressed, given a record id) and
then written synchronously. If the store is unavailable the prepared record
is queued on the ingest lane instead and the submitter is told it was
accepted; the IngestRetryConsumer performs the same write later.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from ..exceptions import (
    DeadlineExceededError,
    MalformedInputError,
    QueueError,
    StoreUnavailableError,
)
from ..processing.database.compression import compress
from ..processing.database.writer import RecordWriter
from .shared.config import Config
from .shared.deadline import Deadline, check_deadline
from .shared.event_schema import (
    Envelope,
    RecordKind,
    RollupMessage,
    TuneFields,
    TuneResults,
    UsageReport,
    UsageStat,
    encode_record,
    new_record_id,
    parse_document,
)
from .shared.queue_writer import MessageQueueWriter

logger = logging.getLogger(__name__)


class IngestStatus(str, Enum):
    STORED = "stored"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class IngestResult:
    """Outcome of an accepted submission."""

    status: IngestStatus
    kind: RecordKind
    record_id: str
    locator: Optional[str] = None

    @property
    def http_status(self) -> int:
        return 201


class ReliableIngest:
    """
    Accept-then-guarantee-delivery ingest.

    Callers only see a failure for malformed input (MalformedInputError) or
    when both the store and the queue are unavailable (QueueError).
    """

    def __init__(
        self,
        writer: RecordWriter,
        queue_writer: MessageQueueWriter,
        config: Config,
    ):
        """
        Initialize ingest pipeline.

        Args:
            writer: Durable record writer
            queue_writer: Work queue producer
            config: Configuration (stream names, locator base, deadline)
        """
        self.writer = writer
        self.queue_writer = queue_writer
        self.ingest_stream = config.streams.ingest.name
        self.rollup_stream = config.streams.rollup.name
        self.locator_base = config.ingest.locator_base.rstrip("/")
        self.deadline_seconds = config.ingest.deadline_seconds

    def ingest_tune(
        self,
        raw: Union[bytes, str],
        envelope: Envelope,
        deadline: Optional[Deadline] = None,
    ) -> IngestResult:
        """
        Ingest an autotune result document.

        Raises:
            MalformedInputError: Document is not JSON or fields are mistyped
            CodecError: Compression failed
            QueueError: Store and queue both unavailable
        """
        deadline = deadline or Deadline(self.deadline_seconds)
        raw_bytes = _as_bytes(raw)
        fields = TuneFields.from_document(parse_document(raw_bytes))

        record = TuneResults(
            record_id=new_record_id(),
            data=self._compress(raw_bytes, RecordKind.TUNE),
            envelope=envelope,
            uuid=fields.uuid,
            board=fields.board,
            tau=fields.tau,
        )
        return self._persist(record, RecordKind.TUNE, deadline)

    def ingest_usage(
        self,
        raw: Union[bytes, str],
        envelope: Envelope,
        deadline: Optional[Deadline] = None,
    ) -> IngestResult:
        """
        Ingest a GCS usage report and queue it for rollup.

        Raises:
            MalformedInputError: Document is not JSON or fields are mistyped
            CodecError: Compression failed
            QueueError: Store and queue both unavailable
        """
        deadline = deadline or Deadline(self.deadline_seconds)
        raw_bytes = _as_bytes(raw)
        try:
            raw_text = raw_bytes.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedInputError(f"usage report is not UTF-8: {e}") from e
        # Reject mistyped reports here rather than in the rollup worker
        UsageReport.from_document(parse_document(raw_text))

        record = UsageStat(
            record_id=new_record_id(),
            data=self._compress(raw_bytes, RecordKind.USAGE),
            envelope=envelope,
        )
        result = self._persist(record, RecordKind.USAGE, deadline)

        message = RollupMessage(envelope=envelope, raw_data=raw_text)
        try:
            check_deadline(deadline, "rollup enqueue")
            self.queue_writer.enqueue(self.rollup_stream, message.to_payload())
        except (QueueError, DeadlineExceededError) as e:
            # The usage record itself is durable; a redrive picks it up later
            logger.error(f"Error queueing rollup of usage report {record.record_id}: {e}")
        return result

    def _compress(self, raw: bytes, kind: RecordKind) -> bytes:
        data = compress(raw)
        logger.info(f"Compressed {kind.value} data from {len(raw)} -> {len(data)}")
        return data

    def _persist(
        self,
        record: Union[TuneResults, UsageStat],
        kind: RecordKind,
        deadline: Deadline,
    ) -> IngestResult:
        payload = encode_record(record)

        try:
            check_deadline(deadline, f"{kind.value} store")
            key = self.writer.put_record(record)
        except StoreUnavailableError as e:
            logger.info(f"Error performing initial put (queueing): {e}")
            deadline.check(f"{kind.value} enqueue")
            try:
                self.queue_writer.enqueue(self.ingest_stream, payload)
            except QueueError as qe:
                logger.error(f"Error queueing storage of {kind.value} record: {qe}")
                raise
            return IngestResult(IngestStatus.DEFERRED, kind, record.record_id)

        return IngestResult(
            IngestStatus.STORED,
            kind,
            record.record_id,
            locator=f"{self.locator_base}/{kind.value}/{key}",
        )


def _as_bytes(raw: Union[bytes, str]) -> bytes:
    return raw.encode('utf-8') if isinstance(raw, str) else bytes(raw)
