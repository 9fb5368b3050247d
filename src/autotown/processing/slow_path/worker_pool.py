# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Worker pool manager for the rollup lane.

Manages lifecycle of rollup worker instances with:
- Configurable worker count
- Health monitoring
- Backpressure detection
- Graceful shutdown
"""

import asyncio
import logging
import time
from typing import Any, Dict, List

import redis

from ...capture.shared.config import Config
from ..rollup.merger import RollupMerger
from .rollup_worker import RollupWorker
from .worker_base import WorkerBase

logger = logging.getLogger(__name__)

QUEUE_WARNING_DEPTH = 10000
QUEUE_CRITICAL_DEPTH = 50000
PENDING_WARNING_COUNT = 1000


class WorkerPoolManager:
    """Runs rollup workers against one consumer group."""

    def __init__(
        self,
        redis_client: redis.Redis,
        merger: RollupMerger,
        config: Config,
        monitor_interval: float = 5.0,
    ):
        """
        Initialize worker pool manager.

        Args:
            redis_client: Redis client instance
            merger: Rollup merge engine shared by all workers
            config: Configuration (rollup lane, DLQ, worker count)
            monitor_interval: Seconds between backpressure checks
        """
        self.redis_client = redis_client
        self.merger = merger
        self.lane = config.get_stream_config("rollup")
        self.dlq = config.get_stream_config("dlq")
        self.worker_count = config.rollup.workers
        self.monitor_interval = monitor_interval

        self.workers: List[WorkerBase] = []
        self.worker_tasks: List[asyncio.Task] = []
        self.running = False

        logger.info("Initialized worker pool manager")

    async def start(self) -> None:
        """Start all rollup workers."""
        if self.running:
            logger.warning("Worker pool already running")
            return

        logger.info("Starting worker pool...")
        self.running = True

        for i in range(self.worker_count):
            worker = RollupWorker(
                redis_client=self.redis_client,
                merger=self.merger,
                stream_name=self.lane.name,
                consumer_group=self.lane.consumer_group,
                consumer_name=f"rollup-worker-{i+1}",
                dlq_stream=self.dlq.name,
                block_ms=self.lane.block_ms,
                count=self.lane.count,
                max_deliveries=self.lane.max_deliveries,
                dlq_max_length=self.dlq.max_length,
            )
            self.workers.append(worker)
            self.worker_tasks.append(asyncio.create_task(self._run_worker(worker)))

        self.worker_tasks.append(asyncio.create_task(self._monitor_backpressure()))

        logger.info(f"Worker pool started with {len(self.workers)} workers")

    async def stop(self) -> None:
        """Stop all workers gracefully."""
        if not self.running:
            return

        logger.info("Stopping worker pool...")
        self.running = False

        for worker in self.workers:
            await worker.stop()

        for task in self.worker_tasks:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self.workers.clear()
        self.worker_tasks.clear()

        logger.info("Worker pool stopped")

    async def _run_worker(self, worker: WorkerBase) -> None:
        try:
            await worker.start()
        except asyncio.CancelledError:
            logger.info(f"Worker {worker.consumer_name} cancelled")
        except Exception as e:
            logger.error(f"Worker {worker.consumer_name} failed: {e}")

    async def _monitor_backpressure(self) -> None:
        """Log warnings when the rollup lane backs up."""
        logger.info("Starting backpressure monitor")

        while self.running:
            try:
                await asyncio.sleep(self.monitor_interval)
                stats = await asyncio.to_thread(self.get_queue_stats)

                if stats['stream_length'] > QUEUE_CRITICAL_DEPTH:
                    logger.critical(
                        f"Rollup queue critically high: {stats['stream_length']} messages. "
                        f"Consider adding rollup workers."
                    )
                elif stats['stream_length'] > QUEUE_WARNING_DEPTH:
                    logger.warning(
                        f"Rollup queue depth high: {stats['stream_length']} messages. "
                        f"Processing lag: {stats['lag_seconds']:.1f}s"
                    )

                if stats['pending_count'] > PENDING_WARNING_COUNT:
                    logger.warning(
                        f"High pending count: {stats['pending_count']} unacknowledged messages"
                    )

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in backpressure monitor: {e}")

        logger.info("Backpressure monitor stopped")

    def get_queue_stats(self) -> Dict[str, Any]:
        """
        Rollup lane statistics.

        Returns:
            Dictionary with stream_length, pending_count and lag_seconds
        """
        return queue_stats(self.redis_client, self.lane.name, self.lane.consumer_group)

    def get_pool_stats(self) -> Dict[str, Any]:
        return {
            'running': self.running,
            'total_workers': len(self.workers),
            'active_workers': sum(1 for w in self.workers if w.running),
            'total_processed': sum(w.stats['processed'] for w in self.workers),
            'total_failed': sum(w.stats['failed'] for w in self.workers),
            'workers': [w.get_stats() for w in self.workers],
        }


def queue_stats(redis_client: redis.Redis, stream_name: str, consumer_group: str) -> Dict[str, Any]:
    """
    Depth, pending count and age of the oldest entry of a stream.

    Missing streams and groups report zeros.
    """
    stats = {'stream_length': 0, 'pending_count': 0, 'lag_seconds': 0.0}
    try:
        stats['stream_length'] = redis_client.xlen(stream_name)
        if stats['stream_length'] == 0:
            return stats

        pending_info = redis_client.xpending(stream_name, consumer_group)
        stats['pending_count'] = pending_info.get('pending', 0) if pending_info else 0

        messages = redis_client.xrange(stream_name, count=1)
        if messages:
            message_id = messages[0][0]
            if isinstance(message_id, bytes):
                message_id = message_id.decode('utf-8')
            timestamp_ms = int(message_id.split('-')[0])
            stats['lag_seconds'] = (time.time() * 1000 - timestamp_ms) / 1000.0
    except redis.ResponseError as e:
        logger.debug(f"No stats for {stream_name}/{consumer_group}: {e}")
    return stats
