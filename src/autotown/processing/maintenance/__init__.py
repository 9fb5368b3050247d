# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Operator maintenance tasks.

Provides:
- Redrive of stored usage reports through the rollup stream
- One-off rewrite of legacy board identities
"""

from .identity_migration import IdentityMigration, MigrationSummary
from .redrive import RedriveDispatcher, RedriveSummary

__all__ = [
    'IdentityMigration',
    'MigrationSummary',
    'RedriveDispatcher',
    'RedriveSummary',
]
