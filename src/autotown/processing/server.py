# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Main server for the Autotown processing layer.

Wires the store, the work queue, ingest, the ingest retry consumer and the
rollup worker pool, and handles graceful shutdown. The same wiring backs the
operator CLI commands.
"""

import asyncio
import logging
import signal
from typing import Any, Dict, Optional

import redis

from ..capture.crash import CrashIngest, LocalBlobSink
from ..capture.ingest import ReliableIngest
from ..capture.shared.config import Config
from ..capture.shared.queue_writer import MessageQueueWriter
from .database.controller_store import FoundControllerStore
from .database.schema import create_schema
from .database.sqlite_client import SQLiteClient
from .database.writer import RecordWriter
from .fast_path.consumer import IngestRetryConsumer
from .maintenance.identity_migration import IdentityMigration, MigrationSummary
from .maintenance.redrive import RedriveDispatcher, RedriveSummary
from .metrics.stats_cache import StatsCache
from .rollup.merger import RollupMerger
from .slow_path.worker_pool import WorkerPoolManager

logger = logging.getLogger(__name__)


class TelemetryServer:
    """
    Main server for telemetry processing.

    Manages:
    - SQLite database initialization
    - Redis connection
    - Ingest retry consumer (fast path)
    - Rollup worker pool (slow path)
    - Graceful shutdown
    """

    def __init__(self, config: Optional[Config] = None):
        """
        Initialize telemetry server.

        Args:
            config: Configuration instance (creates default if not provided)
        """
        self.config = config or Config()

        self.sqlite_client: Optional[SQLiteClient] = None
        self.writer: Optional[RecordWriter] = None
        self.controller_store: Optional[FoundControllerStore] = None
        self.redis_client: Optional[redis.Redis] = None
        self.queue_writer: Optional[MessageQueueWriter] = None
        self.stats_cache: Optional[StatsCache] = None
        self.merger: Optional[RollupMerger] = None
        self.ingest: Optional[ReliableIngest] = None
        self.crash_ingest: Optional[CrashIngest] = None
        self.consumer: Optional[IngestRetryConsumer] = None
        self.worker_pool: Optional[WorkerPoolManager] = None
        self.running = False

    def initialize_database(self) -> None:
        """Initialize SQLite database and schema."""
        logger.info(f"Initializing database: {self.config.database.path}")

        self.sqlite_client = SQLiteClient(
            self.config.database.path,
            busy_timeout=self.config.database.busy_timeout,
        )
        self.sqlite_client.initialize_database()
        create_schema(self.sqlite_client)

        self.writer = RecordWriter(self.sqlite_client)
        self.controller_store = FoundControllerStore(self.sqlite_client)

        logger.info("Database initialized successfully")

    def initialize_redis(self, redis_client: Optional[redis.Redis] = None) -> None:
        """
        Initialize the Redis connection and everything that depends on it.

        Args:
            redis_client: Existing client to use instead of connecting

        Raises:
            RuntimeError: If Redis cannot be reached
        """
        if redis_client is None:
            logger.info("Initializing Redis connection")
            redis_config = self.config.redis
            redis_client = redis.Redis(
                host=redis_config.host,
                port=redis_config.port,
                db=redis_config.db,
                socket_timeout=redis_config.socket_timeout,
                socket_connect_timeout=redis_config.socket_connect_timeout,
                decode_responses=False,
            )
            try:
                redis_client.ping()
                logger.info("Redis connection established")
            except redis.RedisError as e:
                raise RuntimeError(f"Failed to connect to Redis: {e}") from e

        self.redis_client = redis_client
        self.queue_writer = MessageQueueWriter(redis_client)
        self.stats_cache = StatsCache(
            redis_client,
            key=self.config.cache.stats_key,
            ttl_seconds=self.config.cache.ttl_seconds,
        )

    def initialize_pipeline(self) -> None:
        """Build ingest and rollup components (database and Redis first)."""
        self.merger = RollupMerger(
            self.controller_store,
            stats_cache=self.stats_cache,
            deadline_seconds=self.config.rollup.deadline_seconds,
        )
        self.ingest = ReliableIngest(self.writer, self.queue_writer, self.config)
        self.crash_ingest = CrashIngest(
            self.writer,
            LocalBlobSink(self.config.blobs.root),
            deadline_seconds=self.config.ingest.deadline_seconds,
        )

    def initialize(self, redis_client: Optional[redis.Redis] = None) -> None:
        self.initialize_database()
        self.initialize_redis(redis_client)
        self.initialize_pipeline()

    def _initialize_consumer(self) -> None:
        """Initialize the ingest retry consumer."""
        lane = self.config.get_stream_config("ingest")
        dlq = self.config.get_stream_config("dlq")

        self.consumer = IngestRetryConsumer(
            redis_client=self.redis_client,
            writer=self.writer,
            stream_name=lane.name,
            consumer_group=lane.consumer_group,
            consumer_name=f"{lane.consumer_group}-1",
            dlq_stream=dlq.name,
            block_ms=lane.block_ms,
            count=lane.count,
            max_deliveries=lane.max_deliveries,
            dlq_max_length=dlq.max_length,
        )

        logger.info("Ingest retry consumer initialized")

    def _initialize_worker_pool(self) -> None:
        self.worker_pool = WorkerPoolManager(
            redis_client=self.redis_client,
            merger=self.merger,
            config=self.config,
        )
        logger.info("Worker pool initialized")

    async def start(self) -> None:
        """Start the server."""
        if self.running:
            logger.warning("Server already running")
            return

        logger.info("Starting Autotown Telemetry Server...")

        try:
            self.initialize()
            self._initialize_consumer()
            self._initialize_worker_pool()

            self.running = True

            await self.worker_pool.start()

            # Runs until stopped
            await self.consumer.run()

        except Exception as e:
            logger.error(f"Failed to start server: {e}")
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self.running:
            return

        logger.info("Stopping server...")
        self.running = False

        if self.worker_pool:
            await self.worker_pool.stop()

        if self.consumer:
            await self.consumer.stop()

        if self.redis_client:
            self.redis_client.close()

        logger.info("Server stopped")

    async def redrive(self) -> RedriveSummary:
        """Re-queue every stored usage report for rollup, newest first."""
        dispatcher = RedriveDispatcher(
            self.queue_writer,
            self.config.streams.rollup.name,
            batch_size=self.config.redrive.batch_size,
            max_concurrency=self.config.redrive.max_concurrency,
        )
        records = await asyncio.to_thread(lambda: list(self.writer.iter_usage_stats()))
        logger.info(f"Loaded {len(records)} usage records for redrive")
        return await dispatcher.redrive_all(records)

    def rewrite_identities(self) -> MigrationSummary:
        migration = IdentityMigration(
            self.writer,
            batch_size=self.config.maintenance.identity_batch_size,
        )
        return migration.run()

    def board_stats(self) -> Dict[str, Any]:
        """Rollup statistics, served from the cache when possible."""
        if self.stats_cache is None:
            return self.controller_store.board_stats()
        return self.stats_cache.get_or_compute(self.controller_store.board_stats)


def setup_logging(level: str = "INFO") -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


async def main(config: Optional[Config] = None) -> None:
    """Main entry point."""
    config = config or Config.load()
    setup_logging(config.logging.level)

    server = TelemetryServer(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(server.stop()))

    try:
        await server.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
