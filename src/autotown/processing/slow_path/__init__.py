# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Slow path processing for rollups.

Workers consume usage reports from the rollup stream and fold them into
the found controllers store.
"""

from .worker_base import WorkerBase
from .worker_pool import WorkerPoolManager
from .rollup_worker import RollupWorker

__all__ = [
    'WorkerBase',
    'WorkerPoolManager',
    'RollupWorker',
]
