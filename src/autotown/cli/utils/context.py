# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Click context object shared by all commands.
"""

from typing import Optional

import click
import redis

from ...capture.shared.config import Config
from ...processing.server import TelemetryServer


class CliContext:
    """
    Configuration plus lazily initialized services.

    Commands that only read the store never touch Redis.
    """

    def __init__(self, config: Config, redis_client: Optional[redis.Redis] = None):
        """
        Args:
            config: Loaded configuration
            redis_client: Client to use instead of connecting from config
        """
        self.config = config
        self.redis_client = redis_client
        self._server: Optional[TelemetryServer] = None
        self._pipeline_ready = False

    def store(self) -> TelemetryServer:
        """Server with the database initialized."""
        if self._server is None:
            self._server = TelemetryServer(self.config)
            self._server.initialize_database()
        return self._server

    def pipeline(self) -> TelemetryServer:
        """Server with database, Redis and ingest/rollup components initialized."""
        server = self.store()
        if not self._pipeline_ready:
            server.initialize_redis(self.redis_client)
            server.initialize_pipeline()
            self._pipeline_ready = True
        return server


pass_cli = click.make_pass_decorator(CliContext)
