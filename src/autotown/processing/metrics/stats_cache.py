# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Redis cache for the rollup statistics snapshot.

The cache is best-effort: every Redis failure is logged and behaves like a
miss, so a missing or broken cache only costs a recomputation.
"""

import json
import logging
from typing import Any, Callable, Dict, Optional

import redis

logger = logging.getLogger(__name__)


class StatsCache:
    """Single well-known key holding a JSON statistics snapshot."""

    def __init__(self, redis_client: redis.Redis, key: str, ttl_seconds: int = 3600):
        """
        Initialize stats cache.

        Args:
            redis_client: Redis client instance
            key: Cache key
            ttl_seconds: Expiry of a stored snapshot
        """
        self.redis_client = redis_client
        self.key = key
        self.ttl_seconds = ttl_seconds

    def get(self) -> Optional[Dict[str, Any]]:
        try:
            raw = self.redis_client.get(self.key)
        except redis.RedisError as e:
            logger.warning(f"Failed to read stats cache {self.key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning(f"Discarding unreadable stats snapshot: {e}")
            return None

    def store(self, snapshot: Dict[str, Any]) -> None:
        try:
            self.redis_client.set(self.key, json.dumps(snapshot), ex=self.ttl_seconds)
        except redis.RedisError as e:
            logger.warning(f"Failed to write stats cache {self.key}: {e}")

    def invalidate(self) -> None:
        """Drop the snapshot after the aggregate set changed."""
        try:
            self.redis_client.delete(self.key)
        except redis.RedisError as e:
            logger.warning(f"Failed to invalidate stats cache {self.key}: {e}")

    def get_or_compute(self, compute: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        """Cached snapshot, or a freshly computed (and cached) one."""
        snapshot = self.get()
        if snapshot is not None:
            return snapshot
        snapshot = compute()
        self.store(snapshot)
        return snapshot
