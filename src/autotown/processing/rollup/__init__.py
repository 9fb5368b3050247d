# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""Merge of usage reports into per-board rollups."""

from .merger import RollupMerger, RollupSummary

__all__ = ['RollupMerger', 'RollupSummary']
