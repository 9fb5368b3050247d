# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Rollup worker.

Consumes usage reports from the rollup lane and folds them into the found
controllers store.
"""

import asyncio
import logging

import redis

from ...capture.shared.event_schema import RollupMessage
from ..rollup.merger import RollupMerger
from .worker_base import WorkerBase

logger = logging.getLogger(__name__)


class RollupWorker(WorkerBase):
    """
    Worker for merging usage reports.

    A delivery fails (and is retried) when the merge transaction fails or
    runs out of time; nothing is applied in that case.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        merger: RollupMerger,
        stream_name: str,
        consumer_group: str = "rollup",
        consumer_name: str = "rollup-worker-1",
        **kwargs,
    ):
        """
        Initialize rollup worker.

        Args:
            redis_client: Redis client instance
            merger: Rollup merge engine
            stream_name: Rollup stream name
            consumer_group: Consumer group name
            consumer_name: Unique consumer name
            **kwargs: Passed through to WorkerBase
        """
        super().__init__(
            redis_client=redis_client,
            stream_name=stream_name,
            consumer_group=consumer_group,
            consumer_name=consumer_name,
            **kwargs,
        )
        self.merger = merger
        self.stats['identities'] = 0

    async def process_event(self, payload: bytes) -> None:
        message = RollupMessage.from_payload(payload)
        summary = await asyncio.to_thread(self.merger.merge_report, message)
        self.stats['identities'] += len(summary.identities)
