# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Test doubles and document builders shared by the test modules.
"""

import json
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Sequence

import redis

from autotown.exceptions import QueueError, StoreUnavailableError
from autotown.processing.database.writer import RecordWriter

T0 = datetime(2017, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    """Timestamp ``minutes`` after T0."""
    return T0 + timedelta(minutes=minutes)


class FakeQueueWriter:
    """In-memory stand-in for MessageQueueWriter."""

    def __init__(self):
        self.streams: Dict[str, List[bytes]] = {}
        self.fail = False
        self.fail_batches: List[int] = []
        self.batch_calls = 0
        self.batch_sizes: List[int] = []
        self.delay = 0.0
        self.in_flight = 0
        self.peak_in_flight = 0
        self._lock = threading.Lock()

    def enqueue(self, stream_name: str, payload: bytes) -> str:
        if self.fail:
            raise QueueError("queue down")
        entries = self.streams.setdefault(stream_name, [])
        entries.append(payload)
        return f"{len(entries)}-0"

    def enqueue_many(self, stream_name: str, payloads: Sequence[bytes]) -> List[str]:
        with self._lock:
            call = self.batch_calls
            self.batch_calls += 1
            self.batch_sizes.append(len(payloads))
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            time.sleep(self.delay)
            if self.fail or call in self.fail_batches:
                raise QueueError(f"batch {call} rejected")
            with self._lock:
                return [self.enqueue(stream_name, p) for p in payloads]
        finally:
            with self._lock:
                self.in_flight -= 1

    def messages(self, stream_name: str) -> List[bytes]:
        return self.streams.get(stream_name, [])


class FlakyWriter:
    """RecordWriter wrapper whose first ``failures`` puts raise StoreUnavailableError."""

    def __init__(self, writer: RecordWriter, failures: int = 1):
        self.writer = writer
        self.failures = failures

    def put_record(self, record):
        if self.failures > 0:
            self.failures -= 1
            raise StoreUnavailableError("database is locked")
        return self.writer.put_record(record)

    def __getattr__(self, name):
        return getattr(self.writer, name)


class FakeStreamRedis:
    """
    Minimal in-memory Redis Streams with consumer groups.

    Implements the subset the workers use: XGROUP CREATE, XADD, XREADGROUP
    (``>`` for new entries, ``0`` for the consumer's pending entries), XACK
    and XPENDING with a range.
    """

    def __init__(self):
        self.streams: Dict[str, List] = {}
        self.groups: Dict = {}
        self._seq = 0

    def xgroup_create(self, name, groupname, id='0', mkstream=False):
        if (name, groupname) in self.groups:
            raise redis.exceptions.ResponseError("BUSYGROUP Consumer Group name already exists")
        self.streams.setdefault(name, [])
        self.groups[(name, groupname)] = {"delivered": 0, "pending": {}}
        return True

    def xadd(self, name, fields, maxlen=None, approximate=True):
        self._seq += 1
        message_id = f"{self._seq}-0".encode('utf-8')
        entries = self.streams.setdefault(name, [])
        entries.append((message_id, dict(fields)))
        if maxlen is not None and len(entries) > maxlen:
            # Trimmed entries are gone for every group, delivered or not
            dropped = len(entries) - maxlen
            del entries[:dropped]
            for (stream, _), group in self.groups.items():
                if stream == name:
                    group["delivered"] = max(0, group["delivered"] - dropped)
        return message_id

    def xreadgroup(self, groupname, consumername, streams, count=None, block=None):
        response = []
        for name, start in streams.items():
            group = self.groups[(name, groupname)]
            entries = self.streams.get(name, [])
            if start == '>':
                batch = entries[group["delivered"]:]
                if count:
                    batch = batch[:count]
                group["delivered"] += len(batch)
                for message_id, _ in batch:
                    group["pending"][message_id] = {"consumer": consumername, "count": 1}
            else:
                by_id = dict(entries)
                batch = [
                    (message_id, by_id.get(message_id))
                    for message_id, info in group["pending"].items()
                    if info["consumer"] == consumername
                ]
                if count:
                    batch = batch[:count]
                for message_id, _ in batch:
                    group["pending"][message_id]["count"] += 1
            if batch:
                response.append([name.encode('utf-8'), batch])
        return response

    def xack(self, name, groupname, *ids):
        pending = self.groups[(name, groupname)]["pending"]
        return sum(1 for message_id in ids if pending.pop(message_id, None) is not None)

    def xpending_range(self, name, groupname, min, max, count, consumername=None):
        pending = self.groups[(name, groupname)]["pending"]
        info = pending.get(min)
        if info is None:
            return []
        return [{
            "message_id": min,
            "consumer": info["consumer"].encode('utf-8'),
            "time_since_delivered": 0,
            "times_delivered": info["count"],
        }]

    def xlen(self, name) -> int:
        return len(self.streams.get(name, []))

    def pending_count(self, name, groupname) -> int:
        return len(self.groups[(name, groupname)]["pending"])

    def payloads(self, name) -> List[bytes]:
        return [fields[b"data"] for _, fields in self.streams.get(name, [])]


def tune_document(unique_id: str = "a" * 64, board: str = "Revolution", tau: float = 0.0312) -> Dict:
    """A complete autotune document with every exported column present."""
    return {
        "uniqueId": unique_id,
        "vehicle": {
            "batteryCells": 4,
            "esc": "BLHeli",
            "motor": "2204",
            "size": "250",
            "type": "quad",
            "weight": 450,
            "firmware": {
                "board": board,
                "commit": "deadbeef",
                "date": "2017-05-30",
                "tag": "Release-20170530",
            },
        },
        "identification": {
            "tau": tau,
            "pitch": {"bias": -2.1, "gain": 9.5, "noise": 18.0},
            "roll": {"bias": -2.0, "gain": 9.7, "noise": 17.5},
        },
        "tuning": {
            "parameters": {"damping": 1.1, "noiseSensitivity": 10.0},
            "computed": {
                "derivativeCutoff": 100,
                "naturalFrequency": 12.5,
                "gains": {
                    "outer": {"kp": 7.5},
                    "pitch": {"kp": 0.002, "ki": 0.01, "kd": 0.00003},
                    "roll": {"kp": 0.0021, "ki": 0.011, "kd": 0.00003},
                },
            },
        },
        "userObservations": "flies well",
    }


def usage_document(*boards: Dict, share_ip: str = "false", os_name: str = "Windows 10") -> Dict:
    return {
        "BoardsSeen": list(boards),
        "CurrentArch": "x86_64",
        "CurrentOS": os_name,
        "gcs_version": "Release-20170530",
        "ShareIP": share_ip,
    }


def board(uuid: str = "", cpu: str = "", name: str = "Revolution", board_id: int = 0x0902, **extra) -> Dict:
    doc = {"ID": board_id, "CPU": cpu, "UUID": uuid, "Name": name,
           "FwHash": "aa", "GitHash": "deadbeef", "GitTag": "Release-20170530", "UavoHash": "bb"}
    doc.update(extra)
    return doc


def as_json(doc: Dict) -> bytes:
    return json.dumps(doc).encode('utf-8')
