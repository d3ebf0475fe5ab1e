"""Typed poll records on top of the shared store."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from overlay.schemas.poll import PollSettings, PollState, PollStatus, QueuedPoll
from overlay.services.state_store import NO_CHANGE, StateStore

logger = logging.getLogger(__name__)

POLL_STATE_KEY = "overlay:poll_state"
POLL_MODIFIED_KEY = "overlay:poll_modified_at"
POLL_QUEUE_KEY = "overlay:poll_queue"
POLL_SETTINGS_KEY = "overlay:poll_settings"
POLL_END_LOCK_KEY = "overlay:poll_end_lock"
POLL_ADVANCE_LOCK_KEY = "overlay:poll_advance_lock"
LAST_POLL_ENDED_AT_KEY = "overlay:last_poll_ended_at"
OVERLAY_SETTINGS_KEY = "overlay:settings"
POLL_EVENTS_KEY = "overlay:poll_events"


def parse_poll_state(raw: Any) -> Optional[PollState]:
    """Rehydrate a stored poll record. Absent or status-less records mean idle."""
    if not isinstance(raw, dict) or raw.get("status") is None:
        return None
    try:
        return PollState.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Ignoring unreadable poll state: %s", exc)
        return None


class PollStore:
    """Poll state, queue and settings in the shared store.

    Nothing here is cached: every call reads the store, because any other
    invocation may have written since.
    """

    def __init__(self, store: StateStore, clock: Callable[[], float] = time.time):
        self._store = store
        self._clock = clock

    @property
    def store(self) -> StateStore:
        return self._store

    # === Poll state ===

    async def get_poll_state(self) -> Optional[PollState]:
        return parse_poll_state(await self._store.get_json(POLL_STATE_KEY))

    async def update_poll_state(
        self, mutate: Callable[[Optional[PollState]], Any]
    ) -> Tuple[Optional[PollState], bool]:
        """Apply ``mutate`` to the current state in an optimistic transaction.

        ``mutate`` returns the new state, None for idle, or ``NO_CHANGE``.
        Returns the resulting state and whether a write happened.
        """
        outcome: Dict[str, Any] = {}

        def apply(raw: Any) -> Any:
            current = parse_poll_state(raw)
            updated = mutate(current)
            outcome["changed"] = updated is not NO_CHANGE
            outcome["state"] = current if updated is NO_CHANGE else updated
            if updated is NO_CHANGE:
                return NO_CHANGE
            return updated.to_document() if updated is not None else None

        await self._store.compare_and_swap(POLL_STATE_KEY, apply)
        if outcome["changed"]:
            await self._record_write(outcome["state"])
        return outcome["state"], outcome["changed"]

    async def set_poll_state(self, state: Optional[PollState]) -> None:
        """Overwrite the poll state unconditionally."""
        if state is None:
            await self._store.delete(POLL_STATE_KEY)
        else:
            await self._store.set_json(POLL_STATE_KEY, state.to_document())
        await self._record_write(state)

    async def _record_write(self, state: Optional[PollState]) -> None:
        now = self._clock()
        await self._store.set_json(POLL_MODIFIED_KEY, now)
        if state is None or state.status == PollStatus.WINNER:
            await self._store.set_json(LAST_POLL_ENDED_AT_KEY, now)

    async def get_last_poll_ended_at(self) -> Optional[float]:
        value = await self._store.get_json(LAST_POLL_ENDED_AT_KEY)
        if not isinstance(value, (int, float)) or value <= 0:
            return None
        return value / 1000.0 if value > 1e11 else float(value)

    async def get_modified_at(self) -> Optional[float]:
        value = await self._store.get_json(POLL_MODIFIED_KEY)
        return float(value) if isinstance(value, (int, float)) else None

    # === Queue ===

    async def enqueue(self, queued: QueuedPoll) -> int:
        """Append to the FIFO queue and return the new queue length."""
        return await self._store.push(POLL_QUEUE_KEY, queued.to_document())

    async def pop_queued(self) -> Optional[QueuedPoll]:
        raw = await self._store.pop_first(POLL_QUEUE_KEY)
        if raw is None:
            return None
        try:
            return QueuedPoll.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Dropping unreadable queued poll: %s", exc)
            return None

    async def requeue_front(self, queued: QueuedPoll) -> int:
        """Put a popped poll back at the head of the queue."""
        return await self._store.push_front(POLL_QUEUE_KEY, queued.to_document())

    async def get_queue(self) -> List[QueuedPoll]:
        queue = []
        for raw in await self._store.list_all(POLL_QUEUE_KEY):
            try:
                queue.append(QueuedPoll.model_validate(raw))
            except ValidationError:
                continue
        return queue

    async def queue_length(self) -> int:
        return await self._store.list_length(POLL_QUEUE_KEY)

    # === Settings ===

    async def get_settings(self) -> PollSettings:
        raw = await self._store.get_json(POLL_SETTINGS_KEY)
        try:
            return PollSettings.model_validate(raw if isinstance(raw, dict) else {})
        except ValidationError as exc:
            logger.warning("Poll settings unreadable, using defaults: %s", exc)
            return PollSettings()

    async def save_settings(self, **updates: Any) -> PollSettings:
        current = (await self.get_settings()).model_dump()
        current.update({k: v for k, v in updates.items() if v is not None})
        settings = PollSettings.model_validate(current)
        await self._store.set_json(POLL_SETTINGS_KEY, settings.to_document())
        return settings

    # === Overlay snapshot sources ===

    async def get_snapshot_sources(self) -> Tuple[Dict[str, Any], Optional[PollState]]:
        """Sibling overlay state and poll state in a single round trip."""
        overlay_settings, raw_state = await self._store.get_many(OVERLAY_SETTINGS_KEY, POLL_STATE_KEY)
        if not isinstance(overlay_settings, dict):
            overlay_settings = {}
        return overlay_settings, parse_poll_state(raw_state)
