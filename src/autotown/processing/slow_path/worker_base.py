# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Base class for stream workers.

Workers consume ``data`` payloads from a Redis stream consumer group and
process them asynchronously. A message is acknowledged only after it was
processed; failures stay in the Pending Entries List and are retried until
the delivery count reaches ``max_deliveries``, then moved to the DLQ.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import redis

from ...capture.shared.queue_writer import PAYLOAD_FIELD
from ...exceptions import CodecError, MalformedInputError

logger = logging.getLogger(__name__)

# Failures that no amount of redelivery can fix
PERMANENT_ERRORS = (CodecError, MalformedInputError)


class WorkerBase(ABC):
    """
    Base class for stream workers.

    Workers process messages asynchronously with:
    - Automatic retry via PEL (Pending Entries List)
    - Dead Letter Queue after ``max_deliveries`` attempts
    - Graceful shutdown
    - Health monitoring
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        stream_name: str,
        consumer_group: str,
        consumer_name: str = "worker-1",
        dlq_stream: str = "autotown:dlq",
        block_ms: int = 1000,
        count: int = 1,
        max_deliveries: int = 5,
        dlq_max_length: int = 1000,
        retry_backoff: float = 1.0,
    ):
        """
        Initialize worker.

        Args:
            redis_client: Redis client instance
            stream_name: Name of stream to consume from
            consumer_group: Consumer group name
            consumer_name: Unique consumer name
            dlq_stream: Dead letter stream
            block_ms: Milliseconds to block when waiting for messages
            count: Number of messages to read per batch
            max_deliveries: Delivery attempts before a message is dead-lettered
            dlq_max_length: Approximate cap on the DLQ stream
            retry_backoff: Seconds to wait after a failed delivery
        """
        self.redis_client = redis_client
        self.stream_name = stream_name
        self.consumer_group = consumer_group
        self.consumer_name = consumer_name
        self.dlq_stream = dlq_stream
        self.block_ms = block_ms
        self.count = count
        self.max_deliveries = max_deliveries
        self.dlq_max_length = dlq_max_length
        self.retry_backoff = retry_backoff

        self.running = False
        self.stats = {
            'processed': 0,
            'failed': 0,
            'dead_lettered': 0,
            'errors': [],
        }

    async def start(self) -> None:
        """Start the worker."""
        if self.running:
            logger.warning(f"{self.consumer_name} already running")
            return

        logger.info(f"Starting worker: {self.consumer_name}")

        self.ensure_consumer_group()

        self.running = True
        await self._run()

    async def stop(self) -> None:
        """Stop the worker gracefully."""
        if not self.running:
            return

        logger.info(f"Stopping worker: {self.consumer_name}")
        self.running = False

    def ensure_consumer_group(self) -> None:
        """Ensure the consumer group exists, create if not."""
        try:
            self.redis_client.xgroup_create(
                name=self.stream_name,
                groupname=self.consumer_group,
                id='0',
                mkstream=True
            )
            logger.info(f"Created consumer group: {self.consumer_group}")
        except redis.exceptions.ResponseError as e:
            if "BUSYGROUP" in str(e):
                logger.debug(f"Consumer group {self.consumer_group} already exists")
            else:
                raise

    async def _run(self) -> None:
        """Main worker loop."""
        logger.info(f"Worker {self.consumer_name} entering main loop")

        while self.running:
            try:
                failures = self.stats['failed']
                handled = await self.poll_once()

                if not handled:
                    await asyncio.sleep(0.1)
                elif self.stats['failed'] > failures:
                    # Let a struggling store recover before redelivery
                    await asyncio.sleep(self.retry_backoff)

            except asyncio.CancelledError:
                logger.info(f"Worker {self.consumer_name} cancelled")
                break
            except Exception as e:
                logger.error(f"Error in worker loop: {e}")
                self.stats['errors'] = (self.stats['errors'] + [str(e)])[-10:]
                await asyncio.sleep(1)

        logger.info(f"Worker {self.consumer_name} exited main loop")

    async def poll_once(self) -> int:
        """
        Run one read/process cycle.

        This consumer's own pending messages (earlier failures) are retried
        before new messages are read.

        Returns:
            Number of messages handled
        """
        messages = await self._read('0')
        if not messages:
            messages = await self._read('>')

        for message_id, message_data in messages:
            await self._process_message(message_id, message_data)
        return len(messages)

    async def _read(self, start_id: str) -> List[Tuple[bytes, Dict[bytes, bytes]]]:
        block = self.block_ms if start_id == '>' else None
        response = await asyncio.to_thread(
            self.redis_client.xreadgroup,
            self.consumer_group,
            self.consumer_name,
            {self.stream_name: start_id},
            self.count,
            block,
        )
        messages = []
        for _stream, message_list in response or []:
            for message_id, message_data in message_list:
                # Pending entries that were trimmed away come back without fields
                if message_data is None:
                    await self._ack(message_id)
                    continue
                messages.append((message_id, message_data))
        return messages

    async def _process_message(self, message_id: bytes, message_data: Dict[bytes, bytes]) -> None:
        """
        Process a single message with DLQ support.

        Args:
            message_id: Redis stream message ID
            message_data: Message data dictionary
        """
        payload = message_data.get(PAYLOAD_FIELD)
        if payload is None:
            await self._dead_letter(message_id, message_data, "message has no data field", 1)
            return

        try:
            await self.process_event(payload)
        except PERMANENT_ERRORS as e:
            logger.error(f"Unprocessable message {_id(message_id)}: {e}")
            self.stats['failed'] += 1
            await self._dead_letter(message_id, message_data, str(e), 1)
            return
        except Exception as e:
            logger.error(f"Failed to process message {_id(message_id)}: {e}")
            self.stats['failed'] += 1
            await self._handle_failed_message(message_id, message_data, e)
            return

        await self._ack(message_id)
        self.stats['processed'] += 1

    async def _ack(self, message_id: bytes) -> None:
        await asyncio.to_thread(
            self.redis_client.xack,
            self.stream_name,
            self.consumer_group,
            message_id
        )

    async def _handle_failed_message(
        self,
        message_id: bytes,
        message_data: Dict[bytes, bytes],
        error: Exception
    ) -> None:
        """
        Dead-letter a failed message once its delivery budget is used up.

        Uses XPENDING to get the delivery count tracked by Redis; below the
        limit the message is left unacknowledged and retried from the PEL.
        """
        delivery_count = await self._get_delivery_count(message_id)

        if delivery_count >= self.max_deliveries:
            await self._dead_letter(message_id, message_data, str(error), delivery_count)
        else:
            logger.info(
                f"Message {_id(message_id)} will be retried "
                f"(delivery attempt {delivery_count + 1}/{self.max_deliveries})"
            )

    async def _dead_letter(
        self,
        message_id: bytes,
        message_data: Dict[bytes, bytes],
        reason: str,
        delivery_count: int,
    ) -> None:
        """Copy a message to the DLQ, then acknowledge the original."""
        dlq_data = dict(message_data)
        dlq_data[b'error'] = reason.encode('utf-8')
        dlq_data[b'failed_at'] = str(time.time()).encode('utf-8')
        dlq_data[b'source_stream'] = self.stream_name.encode('utf-8')
        dlq_data[b'original_message_id'] = message_id
        dlq_data[b'delivery_count'] = str(delivery_count).encode('utf-8')

        await asyncio.to_thread(
            self.redis_client.xadd,
            self.dlq_stream,
            dlq_data,
            maxlen=self.dlq_max_length,
            approximate=True,
        )
        await self._ack(message_id)

        self.stats['dead_lettered'] += 1
        logger.warning(f"Moved message {_id(message_id)} to DLQ after {delivery_count} attempts: {reason}")

    async def _get_delivery_count(self, message_id: bytes) -> int:
        """
        Get delivery count for a message from the PEL.

        Returns:
            Number of times the message has been delivered (1 if unknown)
        """
        try:
            pending = await asyncio.to_thread(
                self.redis_client.xpending_range,
                self.stream_name,
                self.consumer_group,
                min=message_id,
                max=message_id,
                count=1
            )
        except redis.RedisError as e:
            logger.warning(f"Could not get delivery count for {_id(message_id)}: {e}")
            return 1

        if pending:
            return pending[0].get('times_delivered', 1)
        return 1

    @abstractmethod
    async def process_event(self, payload: bytes) -> None:
        """
        Process one message payload.

        Must be implemented by subclasses. Raising marks the delivery as
        failed; CodecError and MalformedInputError dead-letter immediately.
        """
        raise NotImplementedError

    def get_stats(self) -> Dict[str, Any]:
        """Get worker statistics."""
        return {
            'worker': self.consumer_name,
            'stream': self.stream_name,
            'running': self.running,
            **self.stats
        }


def _id(message_id: Optional[Any]) -> str:
    return message_id.decode('utf-8') if isinstance(message_id, bytes) else str(message_id)
