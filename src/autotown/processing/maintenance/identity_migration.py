# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Rewrite old-style board identities in stored tune records.

Both the indexed ``uuid`` column and the ``uniqueId`` inside the compressed
document are rewritten. A batch is committed atomically; running the pass
again is a no-op because new-style identities are left alone.
"""

import json
import logging
from dataclasses import dataclass, replace
from typing import List

from ...exceptions import CodecError
from ..database.compression import compress, decompress
from ..database.writer import RecordWriter
from ..identity import migrate_identity, needs_migration

logger = logging.getLogger(__name__)


@dataclass
class MigrationSummary:
    examined: int = 0
    updated: int = 0
    skipped: int = 0


class IdentityMigration:
    """One migration pass over the most recent tune records."""

    def __init__(self, writer: RecordWriter, batch_size: int = 50):
        self.writer = writer
        self.batch_size = batch_size

    def run(self) -> MigrationSummary:
        """
        Migrate up to ``batch_size`` recent tune records.

        Records whose document cannot be decoded are skipped and logged.

        Raises:
            StoreUnavailableError: Read or commit failed (nothing was updated)
        """
        summary = MigrationSummary()
        updates: List = []

        for record in self.writer.recent_tunes(self.batch_size):
            summary.examined += 1
            if not needs_migration(record.uuid):
                continue

            try:
                doc = json.loads(decompress(record.data))
            except (CodecError, ValueError) as e:
                logger.warning(f"Skipping tune {record.key}: {e}")
                summary.skipped += 1
                continue
            if not isinstance(doc, dict):
                logger.warning(f"Skipping tune {record.key}: document is not an object")
                summary.skipped += 1
                continue

            new_id = migrate_identity(record.uuid)
            doc["uniqueId"] = new_id
            data = compress(json.dumps(doc).encode('utf-8'))
            logger.info(f"Rewriting tune {record.key}: {record.uuid or '<empty>'} -> {new_id}")
            updates.append(replace(record, uuid=new_id, data=data))

        if updates:
            self.writer.update_tunes(updates)
        summary.updated = len(updates)

        logger.info(
            f"Identity migration examined {summary.examined}, "
            f"updated {summary.updated}, skipped {summary.skipped}"
        )
        return summary
