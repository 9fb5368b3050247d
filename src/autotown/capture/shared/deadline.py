# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""Request-scoped deadlines."""

import time
from typing import Callable, Optional

from ...exceptions import DeadlineExceededError


class Deadline:
    """
    Wall-clock budget for one ingest or merge operation.

    Checked before every blocking store or queue call.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self.expires_at

    def check(self, operation: str) -> None:
        """
        Raises:
            DeadlineExceededError: If the deadline has passed
        """
        if self.expired():
            raise DeadlineExceededError(f"deadline exceeded before {operation}")


def check_deadline(deadline: Optional[Deadline], operation: str) -> None:
    if deadline is not None:
        deadline.check(operation)
