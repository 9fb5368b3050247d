# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Message queue writer for Redis Streams.

Every message is a stream entry with one field, ``data``, holding an opaque
self-contained payload.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import redis

from ...exceptions import QueueError

logger = logging.getLogger(__name__)

PAYLOAD_FIELD = b"data"


class MessageQueueWriter:
    """
    Producer side of the work queue.

    Raises QueueError for any Redis failure; there is no further fallback
    once the queue itself is unreachable.
    """

    def __init__(self, redis_client: redis.Redis, max_length: Optional[int] = None):
        """
        Initialize queue writer.

        Args:
            redis_client: Redis client instance
            max_length: Approximate cap applied on XADD, or None to never
                trim. Only the DLQ is capped; ingest and rollup entries are
                accepted records until consumed.
        """
        self.redis_client = redis_client
        self.max_length = max_length

    def _trim_args(self) -> Dict[str, Any]:
        if self.max_length is None:
            return {}
        return {"maxlen": self.max_length, "approximate": True}

    def enqueue(self, stream_name: str, payload: bytes) -> str:
        """
        Append one payload to a stream.

        Returns:
            Stream entry id
        """
        try:
            message_id = self.redis_client.xadd(
                stream_name,
                {PAYLOAD_FIELD: payload},
                **self._trim_args(),
            )
        except redis.RedisError as e:
            raise QueueError(f"enqueue to {stream_name} failed: {e}") from e
        return _decode_id(message_id)

    def enqueue_many(self, stream_name: str, payloads: Sequence[bytes]) -> List[str]:
        """
        Append a batch of payloads in one round trip.

        A failed batch may be partially applied; consumers absorb duplicates.
        """
        if not payloads:
            return []
        try:
            pipe = self.redis_client.pipeline(transaction=False)
            for payload in payloads:
                pipe.xadd(
                    stream_name,
                    {PAYLOAD_FIELD: payload},
                    **self._trim_args(),
                )
            message_ids = pipe.execute()
        except redis.RedisError as e:
            raise QueueError(f"batch enqueue of {len(payloads)} to {stream_name} failed: {e}") from e
        logger.debug(f"Enqueued {len(payloads)} messages to {stream_name}")
        return [_decode_id(m) for m in message_ids]


def _decode_id(message_id) -> str:
    return message_id.decode('utf-8') if isinstance(message_id, bytes) else str(message_id)
