"""Drives poll transitions that happen because time passed.

Any number of invocations may run these at once (a scheduled tick, a vote
that arrived late, the overlay's end trigger). Each transition edge is
guarded by its own resolution lock so exactly one of them performs it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from overlay.services.auto_start import AutoStartScheduler
from overlay.services.poll_engine import PollEngine
from overlay.services.poll_store import POLL_ADVANCE_LOCK_KEY, POLL_END_LOCK_KEY
from overlay.services.resolution_lock import LockResult, ResolutionLock

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    ended: Optional[str] = None
    cleared: bool = False
    started: Optional[str] = None

    def merge(self, other: "TickResult") -> "TickResult":
        return TickResult(
            ended=self.ended or other.ended,
            cleared=self.cleared or other.cleared,
            started=self.started or other.started,
        )

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PollResolver:
    def __init__(
        self,
        engine: PollEngine,
        auto_start: Optional[AutoStartScheduler] = None,
        lock_ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._engine = engine
        self._auto_start = auto_start
        self._clock = clock
        store = engine.store.store
        self._end_lock = ResolutionLock(store, POLL_END_LOCK_KEY, lock_ttl_seconds, clock)
        self._advance_lock = ResolutionLock(store, POLL_ADVANCE_LOCK_KEY, lock_ttl_seconds, clock)

    async def pop_next_queued_or_auto_start(self) -> Optional[str]:
        """Start the next queued poll, or let the scheduler decide."""
        started = await self._engine.pop_next_queued()
        if started is not None:
            logger.info("Started queued poll %s", started.id)
            return "queued"
        if self._auto_start is not None and await self._auto_start.try_auto_start_poll():
            return "auto"
        return None

    async def resolve_if_due(self) -> TickResult:
        """End the active poll once its timer has run out."""
        state = await self._engine.get_current_snapshot()
        if state is None or not state.is_due(self._clock()):
            return TickResult()
        if await self._end_lock.try_acquire() != LockResult.ACQUIRED:
            return TickResult()
        ended = await self._engine.end_poll()
        if ended is None:
            return TickResult()
        return TickResult(ended=ended.id, started=await self.pop_next_queued_or_auto_start())

    async def advance_if_due(self) -> TickResult:
        """Return to idle once the winner has been shown long enough."""
        state = await self._engine.get_current_snapshot()
        if state is None or not state.winner_display_elapsed(self._clock()):
            return TickResult()
        if await self._advance_lock.try_acquire() != LockResult.ACQUIRED:
            return TickResult()
        if not await self._engine.clear_if_expired_winner():
            return TickResult()
        return TickResult(cleared=True, started=await self.pop_next_queued_or_auto_start())

    async def tick(self) -> Dict[str, Any]:
        result = await self.resolve_if_due()
        result = result.merge(await self.advance_if_due())
        if not result.ended and not result.cleared:
            result.started = await self.pop_next_queued_or_auto_start()
        if result != TickResult():
            logger.info("Poll tick: %s", result.as_dict())
        return result.as_dict()
