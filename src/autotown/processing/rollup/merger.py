# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Rollup merge of usage reports into found controllers.

One usage report can mention several boards. Each board identity gets one
found_controllers row; every report that mentions it is folded in:

- current-state fields (name, hashes, GCS environment, location) follow the
  report with the latest embedded timestamp, not the latest processed one,
  so delayed or retried deliveries never roll state backwards
- ``oldest`` only moves back in time and ``count`` only goes up
- ``counted`` is sticky once set
- the address is kept only from reports that opted in with ShareIP

All identities from one report are committed in one transaction.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional

from ...capture.shared.deadline import Deadline, check_deadline
from ...capture.shared.event_schema import (
    BoardSighting,
    FoundController,
    RollupMessage,
    UsageReport,
    utcnow,
)
from ...exceptions import NoIdentityError
from ..database.controller_store import FoundControllerStore
from ..identity import canonical_board, resolve_identity
from ..metrics.stats_cache import StatsCache

logger = logging.getLogger(__name__)

CURRENT_STATE_FIELDS = (
    "name", "hardware_rev", "git_hash", "git_tag", "uavo_hash",
    "gcs_os", "gcs_arch", "gcs_version",
    "addr", "country", "region", "city", "lat", "lon",
)


@dataclass
class RollupSummary:
    """What one merge touched."""

    identities: List[str] = field(default_factory=list)
    new_boards: List[str] = field(default_factory=list)
    skipped: int = 0


def older_time(*times: Optional[datetime]) -> Optional[datetime]:
    """Earliest of the given times, ignoring unset ones."""
    known = [t for t in times if t is not None]
    return min(known) if known else None


def dedupe_sightings(boards: List[BoardSighting]) -> Dict[str, BoardSighting]:
    """
    Collapse sightings that resolve to the same identity (last one wins).

    Sightings without any identity are dropped.
    """
    seen: Dict[str, BoardSighting] = {}
    for board in boards:
        try:
            identity = resolve_identity(board.uuid, board.cpu)
        except NoIdentityError:
            logger.info(f"No UUID or CPU ID found for {board}")
            continue
        seen[identity] = board
    return seen


def build_candidate(
    identity: str,
    board: BoardSighting,
    report: UsageReport,
    message: RollupMessage,
) -> FoundController:
    """Controller state as described by this one report."""
    envelope = message.envelope
    return FoundController(
        uuid=identity,
        name=canonical_board(board.name),
        hardware_rev=board.id & 0xff,
        git_hash=board.git_hash,
        git_tag=board.git_tag,
        uavo_hash=board.uavo_hash,
        gcs_os=report.current_os,
        gcs_arch=report.current_arch,
        gcs_version=report.gcs_version,
        addr=envelope.addr if report.shares_ip else "",
        country=envelope.country,
        region=envelope.region,
        city=envelope.city,
        lat=envelope.lat,
        lon=envelope.lon,
        timestamp=envelope.timestamp,
        oldest=envelope.timestamp,
        count=1,
    )


def merge_controller(
    prior: Optional[FoundController],
    candidate: FoundController,
    shares_ip: bool,
) -> FoundController:
    """
    Fold one report's candidate into the stored controller.

    Args:
        prior: Stored controller, or None for a board never seen before
        candidate: Output of build_candidate
        shares_ip: Whether the report consented to storing its address
    """
    if prior is None:
        return candidate

    merged = replace(prior)
    if prior.timestamp is None or candidate.timestamp >= prior.timestamp:
        for name in CURRENT_STATE_FIELDS:
            setattr(merged, name, getattr(candidate, name))
        merged.timestamp = candidate.timestamp

    if not shares_ip:
        merged.addr = ""

    merged.oldest = older_time(prior.oldest, prior.timestamp, candidate.timestamp)
    merged.count = prior.count + 1
    merged.counted = prior.counted or candidate.counted
    return merged


class RollupMerger:
    """Applies usage reports to the found_controllers store."""

    def __init__(
        self,
        store: FoundControllerStore,
        stats_cache: Optional[StatsCache] = None,
        deadline_seconds: float = 30.0,
    ):
        """
        Initialize merger.

        Args:
            store: Found controller store
            stats_cache: Cache invalidated after every committed merge
            deadline_seconds: Default budget for one merge
        """
        self.store = store
        self.stats_cache = stats_cache
        self.deadline_seconds = deadline_seconds

    def merge_report(
        self,
        message: RollupMessage,
        now: Optional[datetime] = None,
        deadline: Optional[Deadline] = None,
    ) -> RollupSummary:
        """
        Merge one usage report.

        Args:
            message: Rollup lane message (report document plus envelope)
            now: Processing time, only used for logging
            deadline: Budget for the merge

        Returns:
            RollupSummary

        Raises:
            MalformedInputError: Report document cannot be parsed
            StoreUnavailableError: Transaction failed (nothing was applied)
            DeadlineExceededError: Budget ran out (nothing was applied)
        """
        deadline = deadline or Deadline(self.deadline_seconds)
        now = now or utcnow()
        report = message.report()

        seen = dedupe_sightings(report.boards_seen)
        summary = RollupSummary(
            skipped=report.malformed_sightings + len(report.boards_seen) - len(seen)
        )
        if not seen:
            logger.debug("Usage report mentions no identifiable boards")
            return summary

        candidates = {
            identity: build_candidate(identity, board, report, message)
            for identity, board in seen.items()
        }

        check_deadline(deadline, "rollup transaction")
        with self.store.transaction() as conn:
            merged = []
            for identity, candidate in candidates.items():
                prior = self.store.get(identity, conn=conn)
                if prior is None:
                    summary.new_boards.append(candidate.name)
                merged.append(merge_controller(prior, candidate, report.shares_ip))
                summary.identities.append(identity)

            logger.info(f"Updating {len(merged)} items")
            self.store.put_multi(merged, conn)
            check_deadline(deadline, "rollup commit")

        lag = (now - message.envelope.timestamp).total_seconds()
        logger.debug(f"Merged report from {message.envelope.timestamp} ({lag:.0f}s after submission)")
        for name in summary.new_boards:
            logger.info(f"New board: {name}")

        if self.stats_cache is not None:
            self.stats_cache.invalidate()

        return summary
