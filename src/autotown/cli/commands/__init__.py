# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""Command modules for the CLI."""

from . import export
from . import maintenance
from . import recent
from . import serve
from . import stats
from . import submit

__all__ = ["export", "maintenance", "recent", "serve", "stats", "submit"]
