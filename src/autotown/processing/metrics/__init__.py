# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""Cached statistics derived from the rollups."""

from .stats_cache import StatsCache

__all__ = ['StatsCache']
