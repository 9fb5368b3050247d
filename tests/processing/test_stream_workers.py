# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for the stream workers: ack, PEL retry and dead-lettering.
"""

import asyncio
import json
from unittest.mock import MagicMock

import pytest
import redis

from autotown.capture.shared.event_schema import (
    Envelope,
    RollupMessage,
    TuneResults,
    encode_record,
    new_record_id,
)
from autotown.capture.shared.queue_writer import MessageQueueWriter
from autotown.processing.database.compression import compress
from autotown.processing.fast_path.consumer import IngestRetryConsumer
from autotown.processing.rollup.merger import RollupMerger
from autotown.processing.slow_path.rollup_worker import RollupWorker
from autotown.processing.slow_path.worker_pool import WorkerPoolManager, queue_stats

from helpers import FakeStreamRedis, FlakyWriter, T0, as_json, board, tune_document, usage_document

INGEST = "autotown:ingest"
ROLLUP = "autotown:rollup"
DLQ = "autotown:dlq"


@pytest.fixture
def fake_redis():
    return FakeStreamRedis()


def tune_payload():
    record = TuneResults(
        record_id=new_record_id(),
        data=compress(as_json(tune_document())),
        envelope=Envelope(timestamp=T0),
        uuid="a" * 64,
    )
    return record, encode_record(record)


def make_consumer(fake_redis, writer, max_deliveries=3):
    consumer = IngestRetryConsumer(
        fake_redis, writer, INGEST, dlq_stream=DLQ, max_deliveries=max_deliveries,
    )
    consumer.ensure_consumer_group()
    return consumer


class TestIngestRetryConsumer:
    """Test the deferred write path."""

    def test_stores_and_acks(self, fake_redis, writer):
        consumer = make_consumer(fake_redis, writer)
        record, payload = tune_payload()
        MessageQueueWriter(fake_redis).enqueue(INGEST, payload)

        assert asyncio.run(consumer.poll_once()) == 1
        assert fake_redis.pending_count(INGEST, "asyncstore") == 0
        [stored] = writer.recent_tunes()
        assert stored.record_id == record.record_id
        assert consumer.stats['processed'] == 1

    def test_redelivery_stores_once(self, fake_redis, writer):
        """Test the same message delivered twice results in one stored record."""
        consumer = make_consumer(fake_redis, writer)
        _, payload = tune_payload()
        queue = MessageQueueWriter(fake_redis)
        queue.enqueue(INGEST, payload)
        queue.enqueue(INGEST, payload)

        asyncio.run(consumer.poll_once())
        asyncio.run(consumer.poll_once())
        assert len(writer.recent_tunes()) == 1

    def test_store_failure_retried_from_pending(self, fake_redis, writer):
        """Test a failed write stays pending and succeeds on a later poll."""
        consumer = make_consumer(fake_redis, FlakyWriter(writer, failures=1))
        MessageQueueWriter(fake_redis).enqueue(INGEST, tune_payload()[1])

        asyncio.run(consumer.poll_once())
        assert fake_redis.pending_count(INGEST, "asyncstore") == 1
        assert writer.recent_tunes() == []

        asyncio.run(consumer.poll_once())
        assert fake_redis.pending_count(INGEST, "asyncstore") == 0
        assert len(writer.recent_tunes()) == 1
        assert consumer.stats['failed'] == 1
        assert consumer.stats['processed'] == 1

    def test_dead_lettered_after_max_deliveries(self, fake_redis, writer):
        consumer = make_consumer(fake_redis, FlakyWriter(writer, failures=10), max_deliveries=3)
        MessageQueueWriter(fake_redis).enqueue(INGEST, tune_payload()[1])

        for _ in range(3):
            asyncio.run(consumer.poll_once())

        assert fake_redis.pending_count(INGEST, "asyncstore") == 0
        [(_, dead)] = fake_redis.streams[DLQ]
        assert dead[b'delivery_count'] == b"3"
        assert dead[b'source_stream'] == INGEST.encode('utf-8')
        assert b"database is locked" in dead[b'error']
        assert consumer.stats['dead_lettered'] == 1

    def test_undecodable_message_dead_lettered(self, fake_redis, writer):
        """Test a payload that can never be decoded skips the retry budget."""
        consumer = make_consumer(fake_redis, writer)
        MessageQueueWriter(fake_redis).enqueue(INGEST, b"not a record")

        asyncio.run(consumer.poll_once())
        assert fake_redis.pending_count(INGEST, "asyncstore") == 0
        assert fake_redis.payloads(DLQ) == [b"not a record"]

    def test_message_without_data_field(self, fake_redis, writer):
        consumer = make_consumer(fake_redis, writer)
        fake_redis.xadd(INGEST, {b"other": b"x"})

        asyncio.run(consumer.poll_once())
        assert len(fake_redis.streams[DLQ]) == 1
        assert fake_redis.pending_count(INGEST, "asyncstore") == 0

    def test_idle_poll(self, fake_redis, writer):
        consumer = make_consumer(fake_redis, writer)
        assert asyncio.run(consumer.poll_once()) == 0

    def test_consumer_group_created_once(self, fake_redis, writer):
        consumer = make_consumer(fake_redis, writer)
        consumer.ensure_consumer_group()
        assert (INGEST, "asyncstore") in fake_redis.groups


class TestRollupWorker:
    """Test the rollup lane worker."""

    def make_worker(self, fake_redis, controller_store):
        worker = RollupWorker(
            fake_redis, RollupMerger(controller_store), ROLLUP, dlq_stream=DLQ, max_deliveries=2,
        )
        worker.ensure_consumer_group()
        return worker

    def test_merges_and_acks(self, fake_redis, controller_store):
        worker = self.make_worker(fake_redis, controller_store)
        message = RollupMessage(
            envelope=Envelope(timestamp=T0),
            raw_data=json.dumps(usage_document(board(uuid="b1"), board(uuid="b2"))),
        )
        MessageQueueWriter(fake_redis).enqueue(ROLLUP, message.to_payload())

        asyncio.run(worker.poll_once())
        assert controller_store.count() == 2
        assert worker.stats['identities'] == 2
        assert fake_redis.pending_count(ROLLUP, "rollup") == 0

    def test_malformed_report_dead_lettered(self, fake_redis, controller_store):
        worker = self.make_worker(fake_redis, controller_store)
        message = RollupMessage(envelope=Envelope(timestamp=T0), raw_data="[]")
        MessageQueueWriter(fake_redis).enqueue(ROLLUP, message.to_payload())

        asyncio.run(worker.poll_once())
        assert controller_store.count() == 0
        assert len(fake_redis.streams[DLQ]) == 1

    def test_non_string_report_dead_lettered_at_once(self, fake_redis, controller_store):
        """Test a payload with a non-string report skips the retry budget."""
        worker = self.make_worker(fake_redis, controller_store)
        body = Envelope(timestamp=T0).to_dict()
        body["raw_data"] = 7
        MessageQueueWriter(fake_redis).enqueue(ROLLUP, compress(json.dumps(body).encode('utf-8')))

        asyncio.run(worker.poll_once())
        assert len(fake_redis.streams[DLQ]) == 1
        assert fake_redis.pending_count(ROLLUP, "rollup") == 0

    def test_bad_sighting_does_not_block_report(self, fake_redis, controller_store):
        worker = self.make_worker(fake_redis, controller_store)
        message = RollupMessage(
            envelope=Envelope(timestamp=T0),
            raw_data=json.dumps(usage_document(board(uuid="good"), board(uuid="bad", board_id="abc"))),
        )
        MessageQueueWriter(fake_redis).enqueue(ROLLUP, message.to_payload())

        asyncio.run(worker.poll_once())
        assert controller_store.get("good") is not None
        assert controller_store.get("bad") is None
        assert DLQ not in fake_redis.streams
        assert fake_redis.pending_count(ROLLUP, "rollup") == 0

    def test_stats(self, fake_redis, controller_store):
        stats = self.make_worker(fake_redis, controller_store).get_stats()
        assert stats['stream'] == ROLLUP
        assert stats['running'] is False


class TestWorkerPool:
    """Test pool lifecycle and queue statistics."""

    def test_start_and_stop(self, fake_redis, controller_store, config):
        pool = WorkerPoolManager(fake_redis, RollupMerger(controller_store), config,
                                 monitor_interval=0.05)

        async def run():
            await pool.start()
            await asyncio.sleep(0.2)
            started = pool.get_pool_stats()
            await pool.stop()
            return started

        started = asyncio.run(run())
        assert started['running'] is True
        assert started['total_workers'] == config.rollup.workers
        assert pool.get_pool_stats()['total_workers'] == 0

    def test_queue_stats(self):
        client = MagicMock()
        client.xlen.return_value = 5
        client.xpending.return_value = {'pending': 2}
        client.xrange.return_value = [(b"1000-0", {b"data": b"x"})]

        stats = queue_stats(client, ROLLUP, "rollup")
        assert stats['stream_length'] == 5
        assert stats['pending_count'] == 2
        assert stats['lag_seconds'] > 0

    def test_queue_stats_missing_group(self):
        client = MagicMock()
        client.xlen.return_value = 3
        client.xpending.side_effect = redis.ResponseError("NOGROUP")

        stats = queue_stats(client, ROLLUP, "rollup")
        assert stats['pending_count'] == 0
        assert stats['lag_seconds'] == 0.0
