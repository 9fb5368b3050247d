# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""Exception hierarchy for autotown."""

from typing import Optional


class AutotownError(Exception):
    """Base exception for all autotown errors."""

    http_status = 500


class MalformedInputError(AutotownError):
    """Submitted document could not be parsed or has wrongly typed fields."""

    http_status = 400


class NoIdentityError(AutotownError):
    """Board sighting carries neither a UUID nor a CPU serial."""

    http_status = 400


class CodecError(AutotownError):
    """Compression or decompression failure."""


class StoreUnavailableError(AutotownError):
    """The durable store rejected or could not complete a read or write."""


class QueueError(AutotownError):
    """The work queue could not accept a message."""


class RedriveError(QueueError):
    """
    One or more redrive batches could not be enqueued.

    Batches that were enqueued successfully stay enqueued; ``summary``
    describes what went through.
    """

    def __init__(self, message: str, summary: Optional[object] = None):
        self.summary = summary
        super().__init__(message)


class DeadlineExceededError(AutotownError):
    """The request-scoped deadline expired before the operation finished."""

    http_status = 504
