# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Fast path processing module.
Completes deferred ingest writes from the ingest retry stream.
"""

from .consumer import IngestRetryConsumer

__all__ = ['IngestRetryConsumer']
