# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Redrive of historical usage reports through the rollup lane.

Records are re-serialized as rollup messages and enqueued in fixed-size
batches with a bounded number of batches in flight. Every batch is waited
for; batches that went through stay enqueued even if another one failed.
Duplicate delivery is absorbed by the merge (except for ``count``).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from ...capture.shared.event_schema import RollupMessage, UsageStat
from ...capture.shared.queue_writer import MessageQueueWriter
from ...exceptions import CodecError, RedriveError

logger = logging.getLogger(__name__)


@dataclass
class RedriveSummary:
    """Outcome of a redrive."""

    total: int = 0
    batches: int = 0
    failed: int = 0
    failed_batches: int = 0
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return self.failed_batches == 0


class RedriveDispatcher:
    """
    Fan-out driver for the rollup lane.

    Features:
    - Fixed batch size (one XADD pipeline per batch)
    - At most ``max_concurrency`` batches in flight
    - Joins every batch and reports the first failure
    """

    def __init__(
        self,
        queue_writer: MessageQueueWriter,
        stream_name: str,
        batch_size: int = 100,
        max_concurrency: int = 4,
    ):
        """
        Initialize dispatcher.

        Args:
            queue_writer: Work queue producer
            stream_name: Rollup stream name
            batch_size: Messages per enqueue batch
            max_concurrency: Maximum batches being enqueued at once
        """
        self.queue_writer = queue_writer
        self.stream_name = stream_name
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency

    async def redrive_all(self, records: Iterable[UsageStat]) -> RedriveSummary:
        """
        Re-queue every record for rollup.

        Args:
            records: Historical usage records. Iterated on the event loop,
                so pass loaded records rather than a live database cursor.

        Returns:
            RedriveSummary

        Raises:
            RedriveError: If any batch failed, after all batches finished
            Any error raised by ``records``, after in-flight batches finished
        """
        summary = RedriveSummary()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks: List[asyncio.Task] = []
        batch: List[bytes] = []

        async def submit(payloads: List[bytes]) -> int:
            try:
                await asyncio.to_thread(self.queue_writer.enqueue_many, self.stream_name, payloads)
                logger.info(f"Added a batch of {len(payloads)}")
                return len(payloads)
            finally:
                semaphore.release()

        async def dispatch(payloads: List[bytes]) -> None:
            await semaphore.acquire()
            tasks.append(asyncio.create_task(submit(payloads)))

        try:
            for record in records:
                try:
                    payload = RollupMessage.from_usage_stat(record).to_payload()
                except CodecError as e:
                    logger.warning(f"Failed to decompress record {record.key}: {e}")
                    summary.skipped += 1
                    continue

                batch.append(payload)
                summary.total += 1
                if len(batch) == self.batch_size:
                    await dispatch(batch)
                    batch = []

            if batch:
                await dispatch(batch)
        finally:
            # Batches already in flight are joined even if reading records failed
            results = await asyncio.gather(*tasks, return_exceptions=True)
        summary.batches = len(results)

        first_error: Optional[BaseException] = None
        for payload_count, result in zip(_batch_sizes(summary.total, self.batch_size), results):
            if isinstance(result, BaseException):
                summary.failed += payload_count
                summary.failed_batches += 1
                first_error = first_error or result

        if first_error is not None:
            logger.error(f"Error queueing stuff: {first_error}")
            raise RedriveError(
                f"{summary.failed_batches} of {summary.batches} batches failed: {first_error}",
                summary=summary,
            ) from first_error

        logger.info(f"Queued {summary.total} entries for batch processing")
        return summary


def _batch_sizes(total: int, batch_size: int) -> List[int]:
    full, rest = divmod(total, batch_size)
    return [batch_size] * full + ([rest] if rest else [])
