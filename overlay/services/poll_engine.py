"""Poll lifecycle: idle -> active -> winner -> idle.

Every operation rehydrates the poll from the shared store, applies a guarded
transition in an optimistic transaction and writes it back. Nothing survives
between invocations except what is in the store.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from overlay.schemas.poll import PollOption, PollSettings, PollState, PollStatus, QueuedPoll
from overlay.services.content_filter import poll_contains_blocked_content
from overlay.services.errors import AlreadyActive, InvalidPoll, NoActivePoll, PollExpired, QueueFull
from overlay.services.poll_events import (
    EventSink,
    LoggingEventSink,
    build_result_message,
    emit_safely,
    ended_event,
    started_event,
)
from overlay.services.poll_store import PollStore
from overlay.services.snapshot import SnapshotPublisher
from overlay.services.state_store import NO_CHANGE

logger = logging.getLogger(__name__)


@dataclass
class QueueReceipt:
    position: int
    estimated_start_seconds: int


@dataclass
class SubmitResult:
    started: Optional[PollState] = None
    queued: Optional[QueueReceipt] = None


def validate_poll(question: str, options: Sequence[str]) -> Tuple[str, List[str]]:
    """Normalize question and labels, raising InvalidPoll when malformed."""
    question = (question or "").strip()
    if not question:
        raise InvalidPoll("Poll question must not be empty.")
    labels = [str(label).strip() for label in options or []]
    if len(labels) < 2:
        raise InvalidPoll("A poll needs at least two options.")
    if any(not label for label in labels):
        raise InvalidPoll("Poll options must have non-empty labels.")
    if poll_contains_blocked_content(question, labels):
        raise InvalidPoll("Question or options contain inappropriate content.")
    return question, labels


def estimate_seconds_until_start(
    position: int,
    current: Optional[PollState],
    queue: Sequence[QueuedPoll],
    settings: PollSettings,
    now: float,
) -> int:
    """Rough wait for the poll at 1-based queue ``position``."""
    seconds = 0.0
    if current is not None and current.status == PollStatus.ACTIVE:
        seconds += current.remaining_seconds(now) + settings.winner_display_seconds
    elif current is not None and current.winner_display_until is not None:
        seconds += max(0.0, current.winner_display_until - now)
    for queued in queue[: max(0, position - 1)]:
        seconds += (queued.duration_seconds or settings.duration_seconds) + settings.winner_display_seconds
    return round(seconds)


class PollEngine:
    def __init__(
        self,
        poll_store: PollStore,
        publisher: Optional[SnapshotPublisher] = None,
        event_sink: Optional[EventSink] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = poll_store
        self._publisher = publisher
        self._event_sink = event_sink or LoggingEventSink()
        self._clock = clock

    @property
    def store(self) -> PollStore:
        return self._store

    def _notify(self) -> None:
        if self._publisher is not None:
            self._publisher.notify()

    async def get_current_snapshot(self) -> Optional[PollState]:
        return await self._store.get_poll_state()

    async def start_poll(
        self, question: str, options: Sequence[str], duration_seconds: Optional[int] = None
    ) -> PollState:
        question, labels = validate_poll(question, options)
        if duration_seconds is None:
            duration_seconds = (await self._store.get_settings()).duration_seconds
        if duration_seconds < 1:
            raise InvalidPoll("Poll duration must be at least one second.")

        new_state = PollState(
            id=f"poll_{uuid.uuid4().hex[:12]}",
            question=question,
            options=[PollOption(label=label) for label in labels],
            started_at=self._clock(),
            duration_seconds=duration_seconds,
            status=PollStatus.ACTIVE,
        )

        def begin(current: Optional[PollState]):
            if current is not None and current.status == PollStatus.ACTIVE:
                raise AlreadyActive(f"Poll {current.id} is still running.")
            # Replaces an idle store or a winner still on display.
            return new_state

        state, _ = await self._store.update_poll_state(begin)
        logger.info("Poll %s started: %s (%ds)", state.id, state.question, state.duration_seconds)
        self._notify()
        await emit_safely(self._event_sink, started_event(state))
        return state

    async def cast_vote(self, voter_id: str, option_index: int) -> PollState:
        voter_id = (voter_id or "").strip()
        if not voter_id:
            raise InvalidPoll("A vote needs a voter id.")
        now = self._clock()

        def record(current: Optional[PollState]):
            if current is None or current.status != PollStatus.ACTIVE:
                raise NoActivePoll("No poll is running.")
            if now > current.ends_at:
                raise PollExpired(f"Poll {current.id} has already closed.")
            if not 0 <= option_index < len(current.options):
                raise InvalidPoll(f"option_index must be between 0 and {len(current.options) - 1}")
            previous = current.voter_choice(voter_id)
            if previous == option_index:
                return NO_CHANGE
            if previous is not None:
                old = current.options[previous]
                del old.voters[voter_id]
                old.votes -= 1
            target = current.options[option_index]
            target.voters[voter_id] = option_index
            target.votes += 1
            return current

        state, changed = await self._store.update_poll_state(record)
        if changed:
            self._notify()
        return state

    async def end_poll(self) -> Optional[PollState]:
        """Move an active poll to winner. No-op (returns None) otherwise."""
        settings = await self._store.get_settings()
        now = self._clock()

        def finish(current: Optional[PollState]):
            if current is None or current.status != PollStatus.ACTIVE:
                return NO_CHANGE
            return current.model_copy(update={
                "status": PollStatus.WINNER,
                "winner_index": current.leading_index(),
                "winner_display_until": now + settings.winner_display_seconds,
                "winner_message": build_result_message(current),
            })

        state, changed = await self._store.update_poll_state(finish)
        if not changed:
            return None
        logger.info("Poll %s ended: %s", state.id, state.winner_message)
        self._notify()
        await emit_safely(self._event_sink, ended_event(state))
        return state

    async def clear_if_expired_winner(self) -> bool:
        now = self._clock()

        def clear(current: Optional[PollState]):
            if current is not None and current.winner_display_elapsed(now):
                return None
            return NO_CHANGE

        _, changed = await self._store.update_poll_state(clear)
        if changed:
            logger.info("Winner display elapsed, poll cleared")
            self._notify()
        return changed

    # === Queue ===

    async def enqueue_poll(
        self, question: str, options: Sequence[str], duration_seconds: Optional[int] = None
    ) -> QueueReceipt:
        question, labels = validate_poll(question, options)
        settings = await self._store.get_settings()
        if await self._store.queue_length() >= settings.max_queued_polls:
            raise QueueFull(settings.max_queued_polls)
        position = await self._store.enqueue(
            QueuedPoll(question=question, options=labels, duration_seconds=duration_seconds)
        )
        current = await self._store.get_poll_state()
        queue = await self._store.get_queue()
        estimate = estimate_seconds_until_start(position, current, queue, settings, self._clock())
        logger.info("Poll queued at #%d (starts in ~%ds): %s", position, estimate, question)
        return QueueReceipt(position=position, estimated_start_seconds=estimate)

    async def start_or_queue(
        self, question: str, options: Sequence[str], duration_seconds: Optional[int] = None
    ) -> SubmitResult:
        """Start right away when nothing is running and nothing is waiting, else queue."""
        current = await self._store.get_poll_state()
        nothing_running = current is None or current.status == PollStatus.WINNER
        if nothing_running and await self._store.queue_length() == 0:
            try:
                return SubmitResult(started=await self.start_poll(question, options, duration_seconds))
            except AlreadyActive:
                logger.debug("Lost start race, queueing instead")
        return SubmitResult(queued=await self.enqueue_poll(question, options, duration_seconds))

    async def pop_next_queued(self) -> Optional[PollState]:
        """Start the oldest queued poll if the engine is idle."""
        if await self._store.get_poll_state() is not None:
            return None
        queued = await self._store.pop_queued()
        if queued is None:
            return None
        try:
            return await self.start_poll(queued.question, queued.options, queued.duration_seconds)
        except AlreadyActive:
            await self._store.requeue_front(queued)
            return None
        except InvalidPoll as exc:
            logger.warning("Dropping invalid queued poll %r: %s", queued.question, exc)
            return None
