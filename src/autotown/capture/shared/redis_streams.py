# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Redis Stream Name Constants.

Centralized definitions for all Redis stream names used across the telemetry system.
This avoids hardcoded string values and confusion about stream naming.
"""

# =============================================================================
# WORK QUEUE STREAMS
# =============================================================================

# Ingest retry lane
# Holds fully prepared tune / usage records whose synchronous store write failed.
#
# Producers (write to this stream):
#   - ReliableIngest: when the primary store is unavailable
#
# Consumers (read from this stream):
#   - IngestRetryConsumer: decodes and writes the record, nothing else
INGEST_STREAM = "autotown:asyncstore"

# Usage rollup lane
# One self-contained message per usage report to fold into found_controllers.
#
# Producers:
#   - ReliableIngest: after every accepted usage report
#   - RedriveDispatcher: when historical usage records are replayed
#
# Consumers:
#   - RollupWorker: runs the rollup merge for each message
ROLLUP_STREAM = "autotown:async_rollup"

# Dead Letter Queue for failed messages
# Used by: ingest retry consumer and rollup workers (messages that fail max deliveries)
DLQ_STREAM = "autotown:dlq"

# =============================================================================
# CACHE KEYS
# =============================================================================

# Precomputed rollup statistics snapshot, deleted whenever a merge commits
RESULTS_STATS_KEY = "autotown:results_stats"
