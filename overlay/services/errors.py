"""Errors raised by the poll engine.

Lock contention is not an error: ``ResolutionLock.try_acquire`` returns a
``LockResult``. Broadcast failures are logged by the publisher and never
reach callers.
"""

from __future__ import annotations


class PollError(Exception):
    """Base class for poll lifecycle errors."""


class AlreadyActive(PollError):
    """A poll is already running."""


class InvalidPoll(PollError):
    """Malformed question, options or option index."""


class NoActivePoll(PollError):
    """A vote arrived while no poll was running."""


class PollExpired(PollError):
    """A vote arrived after the poll timer elapsed."""


class QueueFull(PollError):
    def __init__(self, max_queued: int) -> None:
        super().__init__(f"Too many polls queued (max {max_queued}).")
        self.max_queued = max_queued


class StoreError(Exception):
    """The shared store could not be read or written."""
