"""Chat relay events for poll start and end.

The engine never talks to chat itself. It hands a ``PollEvent`` to a sink;
whatever relays chat messages picks them up from there.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence

from overlay.schemas.poll import PollEvent, PollState
from overlay.services.poll_store import POLL_EVENTS_KEY
from overlay.services.state_store import StateStore

logger = logging.getLogger(__name__)


def _format_choices(labels: Sequence[str]) -> str:
    quoted = [f"'{label.lower()}'" for label in labels]
    if len(quoted) == 2:
        return f"{quoted[0]} or {quoted[1]}"
    return ", ".join(quoted)


def build_poll_start_message(question: str, labels: Sequence[str], duration_seconds: int) -> str:
    return f"Poll started! {question} Type {_format_choices(labels)} in chat to vote. ({duration_seconds} seconds)"


def build_result_message(state: PollState) -> str:
    """Chat text for a finished poll. Ties go to the first declared option."""
    index = state.leading_index()
    if index is None or state.options[index].votes == 0:
        return f'Poll "{state.question}" ended with no votes.'
    winner = state.options[index]
    count = "1 vote" if winner.votes == 1 else f"{winner.votes} votes"
    return f'Poll "{state.question}": {winner.label} wins! ({count})'


def started_event(state: PollState) -> PollEvent:
    labels = [option.label for option in state.options]
    return PollEvent(
        type="poll_started",
        poll_id=state.id,
        question=state.question,
        options=labels,
        duration_seconds=state.duration_seconds,
        message=build_poll_start_message(state.question, labels, state.duration_seconds),
    )


def ended_event(state: PollState) -> PollEvent:
    winner: Optional[str] = None
    if state.winner_index is not None and state.options[state.winner_index].votes > 0:
        winner = state.options[state.winner_index].label
    return PollEvent(
        type="poll_ended",
        poll_id=state.id,
        question=state.question,
        options=[option.label for option in state.options],
        winner=winner,
        message=state.winner_message or build_result_message(state),
    )


class EventSink(Protocol):
    async def emit(self, event: PollEvent) -> None:
        ...


class LoggingEventSink:
    async def emit(self, event: PollEvent) -> None:
        logger.info("Poll event %s: %s", event.type, event.message)


class RedisEventSink:
    """Queue events in the shared store for a chat relay to consume."""

    def __init__(self, store: StateStore, key: str = POLL_EVENTS_KEY):
        self._store = store
        self._key = key

    async def emit(self, event: PollEvent) -> None:
        await self._store.push(self._key, event.to_document())


async def emit_safely(sink: Optional[EventSink], event: PollEvent) -> None:
    if sink is None:
        return
    try:
        await sink.emit(event)
    except Exception:
        logger.exception("Failed to emit %s event for poll %s", event.type, event.poll_id)
