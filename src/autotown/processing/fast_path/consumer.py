# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Ingest retry consumer.

Completes submissions that were accepted while the store was unavailable.
Each message is a prepared record (see ``encode_record``) that is written
exactly as the synchronous path would have written it; the record_id makes
redelivery harmless.
"""

import asyncio
import logging

import redis

from ...capture.shared.event_schema import RecordKind, TuneResults, decode_record
from ..database.writer import RecordWriter
from ..slow_path.worker_base import WorkerBase

logger = logging.getLogger(__name__)


class IngestRetryConsumer(WorkerBase):
    """
    Consumer for the ingest retry lane.

    Features:
    - Redis Streams XREADGROUP for consumer groups
    - Acknowledge only after the record is durable
    - PEL retry while the store is still down
    - Dead Letter Queue for undecodable or exhausted messages
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        writer: RecordWriter,
        stream_name: str,
        consumer_group: str = "asyncstore",
        consumer_name: str = "asyncstore-1",
        **kwargs,
    ):
        """
        Initialize ingest retry consumer.

        Args:
            redis_client: Redis client instance
            writer: Durable record writer
            stream_name: Ingest retry stream name
            consumer_group: Consumer group name
            consumer_name: Consumer name (unique per instance)
            **kwargs: Passed through to WorkerBase
        """
        super().__init__(
            redis_client=redis_client,
            stream_name=stream_name,
            consumer_group=consumer_group,
            consumer_name=consumer_name,
            **kwargs,
        )
        self.writer = writer

    async def process_event(self, payload: bytes) -> None:
        record = decode_record(payload)
        key = await asyncio.to_thread(self.writer.put_record, record)
        kind = RecordKind.TUNE if isinstance(record, TuneResults) else RecordKind.USAGE
        logger.info(f"Stored deferred {kind.value} record {record.record_id} as {key}")

    async def run(self) -> None:
        """Main consumer loop."""
        await self.start()
