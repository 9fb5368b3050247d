# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Configuration management.

Configuration is read once from YAML, overridden from the environment, and
handed to each component as an immutable object.
"""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .redis_streams import DLQ_STREAM, INGEST_STREAM, RESULTS_STATS_KEY, ROLLUP_STREAM

DEFAULT_CONFIG_PATH = Path.home() / ".autotown" / "config.yaml"

STREAM_TYPES = ("ingest", "rollup", "dlq")


@dataclass(frozen=True)
class RedisConfig:
    """Redis connection settings."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0


@dataclass(frozen=True)
class DatabaseConfig:
    """SQLite store settings."""

    path: str = str(Path.home() / ".autotown" / "autotown.db")
    busy_timeout: float = 5.0


@dataclass(frozen=True)
class StreamConfig:
    """Settings for one Redis stream lane."""

    name: str
    consumer_group: str = "autotown"
    max_length: Optional[int] = None
    block_ms: int = 1000
    count: int = 10
    max_deliveries: int = 5


@dataclass(frozen=True)
class StreamsConfig:
    ingest: StreamConfig = StreamConfig(name=INGEST_STREAM, consumer_group="asyncstore")
    rollup: StreamConfig = StreamConfig(name=ROLLUP_STREAM, consumer_group="rollup", count=1)
    dlq: StreamConfig = StreamConfig(name=DLQ_STREAM, consumer_group="dlq", max_length=1000)


@dataclass(frozen=True)
class IngestConfig:
    locator_base: str = "https://dronin-autotown.appspot.com/at"
    deadline_seconds: float = 10.0


@dataclass(frozen=True)
class RollupConfig:
    workers: int = 2
    deadline_seconds: float = 30.0


@dataclass(frozen=True)
class RedriveConfig:
    batch_size: int = 100
    max_concurrency: int = 4


@dataclass(frozen=True)
class MaintenanceConfig:
    identity_batch_size: int = 50


@dataclass(frozen=True)
class CacheConfig:
    stats_key: str = RESULTS_STATS_KEY
    ttl_seconds: int = 3600


@dataclass(frozen=True)
class BlobConfig:
    root: str = str(Path.home() / ".autotown" / "blobs")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class Config:
    """Top-level configuration container."""

    redis: RedisConfig = field(default_factory=RedisConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    streams: StreamsConfig = field(default_factory=StreamsConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    rollup: RollupConfig = field(default_factory=RollupConfig)
    redrive: RedriveConfig = field(default_factory=RedriveConfig)
    maintenance: MaintenanceConfig = field(default_factory=MaintenanceConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    blobs: BlobConfig = field(default_factory=BlobConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source: Optional[Path] = None

    @classmethod
    def load(cls, path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> "Config":
        """
        Load configuration from YAML and the environment.

        Args:
            path: Config file (default: $AUTOTOWN_CONFIG or ~/.autotown/config.yaml).
                  A missing file yields the defaults.
            environ: Environment mapping (default: os.environ)

        Returns:
            Immutable Config
        """
        environ = os.environ if environ is None else environ
        if path is None:
            path = Path(environ.get("AUTOTOWN_CONFIG", DEFAULT_CONFIG_PATH))
        path = Path(path).expanduser()

        data: Dict[str, Any] = {}
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config file {path} must contain a mapping")

        config = cls.from_dict(data)
        config = replace(config, source=path if path.exists() else None)
        return config.with_env(environ)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build a Config from a parsed YAML mapping, keeping defaults for missing keys."""
        base = cls()
        streams_data = data.get("streams") or {}
        streams = StreamsConfig(
            ingest=_section(base.streams.ingest, streams_data.get("ingest")),
            rollup=_section(base.streams.rollup, streams_data.get("rollup")),
            dlq=_section(base.streams.dlq, streams_data.get("dlq")),
        )
        return cls(
            redis=_section(base.redis, data.get("redis")),
            database=_section(base.database, data.get("database")),
            streams=streams,
            ingest=_section(base.ingest, data.get("ingest")),
            rollup=_section(base.rollup, data.get("rollup")),
            redrive=_section(base.redrive, data.get("redrive")),
            maintenance=_section(base.maintenance, data.get("maintenance")),
            cache=_section(base.cache, data.get("cache")),
            blobs=_section(base.blobs, data.get("blobs")),
            logging=_section(base.logging, data.get("logging")),
        )

    def with_env(self, environ: Dict[str, str]) -> "Config":
        """Return a copy with environment variable overrides applied."""
        config = self
        if env_db := environ.get("AUTOTOWN_DB_PATH"):
            config = replace(config, database=replace(config.database, path=env_db))
        if env_host := environ.get("AUTOTOWN_REDIS_HOST"):
            config = replace(config, redis=replace(config.redis, host=env_host))
        if env_port := environ.get("AUTOTOWN_REDIS_PORT"):
            config = replace(config, redis=replace(config.redis, port=int(env_port)))
        if env_level := environ.get("AUTOTOWN_LOG_LEVEL"):
            config = replace(config, logging=replace(config.logging, level=env_level))
        return config

    def get_stream_config(self, stream_type: str) -> StreamConfig:
        """
        Settings of one stream lane.

        Args:
            stream_type: "ingest", "rollup" or "dlq"

        Raises:
            ValueError: If stream_type is not recognized
        """
        if stream_type not in STREAM_TYPES:
            raise ValueError(
                f"Unknown stream type: {stream_type}. "
                f"Valid types: {', '.join(STREAM_TYPES)}"
            )
        return getattr(self.streams, stream_type)

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty when valid)."""
        errors = []

        if self.redrive.batch_size <= 0:
            errors.append("redrive.batch_size must be positive")
        if self.redrive.max_concurrency <= 0:
            errors.append("redrive.max_concurrency must be positive")
        if self.rollup.workers < 0:
            errors.append("rollup.workers must be non-negative")
        if self.maintenance.identity_batch_size <= 0:
            errors.append("maintenance.identity_batch_size must be positive")
        for lane in (self.streams.ingest, self.streams.rollup):
            if lane.max_deliveries <= 0:
                errors.append(f"streams {lane.name}: max_deliveries must be positive")
            if lane.max_length is not None:
                errors.append(f"streams {lane.name}: max_length is only supported on the dlq")
        if self.ingest.deadline_seconds <= 0 or self.rollup.deadline_seconds <= 0:
            errors.append("deadline_seconds must be positive")
        if self.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"logging.level {self.logging.level!r} is not a logging level")

        return errors


def _section(default, data: Optional[Dict[str, Any]]):
    """Overlay a YAML mapping onto a default section, ignoring unknown keys."""
    if not isinstance(data, dict):
        return default
    known = {f.name for f in fields(default)}
    return replace(default, **{k: v for k, v in data.items() if k in known})
