import logging

from fastapi import APIRouter, Depends, HTTPException, status

from overlay.api.deps import get_engine, get_resolver
from overlay.core.auth import require_api_secret, require_cron_secret
from overlay.schemas.poll import PollCreate, PollVoteCreate, QueuedPollResponse
from overlay.services.errors import (
    AlreadyActive,
    InvalidPoll,
    NoActivePoll,
    PollError,
    PollExpired,
    QueueFull,
    StoreError,
)
from overlay.services.poll_engine import PollEngine
from overlay.services.poll_resolver import PollResolver

logger = logging.getLogger(__name__)

router = APIRouter()

_STATUS_CODES = {
    InvalidPoll: status.HTTP_400_BAD_REQUEST,
    AlreadyActive: status.HTTP_409_CONFLICT,
    QueueFull: status.HTTP_409_CONFLICT,
    NoActivePoll: status.HTTP_409_CONFLICT,
    PollExpired: status.HTTP_409_CONFLICT,
}


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, StoreError):
        logger.error("Store failure: %s", exc)
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Shared store unavailable")
    for error_type, code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_api_secret)])
async def create_poll(poll: PollCreate, engine: PollEngine = Depends(get_engine)):
    """Start a poll now. 409 if one is already running."""
    try:
        state = await engine.start_poll(poll.question, poll.options, poll.duration_seconds)
    except (PollError, StoreError) as exc:
        raise _http_error(exc) from exc
    return state.to_document()


@router.post("/submit", dependencies=[Depends(require_api_secret)])
async def submit_poll(poll: PollCreate, engine: PollEngine = Depends(get_engine)):
    """Start the poll if nothing is running, otherwise put it in the queue."""
    try:
        result = await engine.start_or_queue(poll.question, poll.options, poll.duration_seconds)
    except (PollError, StoreError) as exc:
        raise _http_error(exc) from exc
    if result.started is not None:
        return {"action": "started", "pollState": result.started.to_document()}
    receipt = QueuedPollResponse(
        position=result.queued.position,
        estimated_start_seconds=result.queued.estimated_start_seconds,
    )
    return {"action": "queued", **receipt.to_document()}


@router.post("/queue", dependencies=[Depends(require_api_secret)])
async def queue_poll(poll: PollCreate, engine: PollEngine = Depends(get_engine)):
    try:
        receipt = await engine.enqueue_poll(poll.question, poll.options, poll.duration_seconds)
    except (PollError, StoreError) as exc:
        raise _http_error(exc) from exc
    return QueuedPollResponse(
        position=receipt.position,
        estimated_start_seconds=receipt.estimated_start_seconds,
    ).to_document()


@router.post("/vote", dependencies=[Depends(require_api_secret)])
async def cast_vote(
    vote: PollVoteCreate,
    engine: PollEngine = Depends(get_engine),
    resolver: PollResolver = Depends(get_resolver),
):
    """Record a vote. A vote after the timer also ends the overdue poll."""
    try:
        await engine.cast_vote(vote.voter_id, vote.option_index)
    except PollExpired as exc:
        try:
            await resolver.resolve_if_due()
        except StoreError as store_exc:
            logger.warning("Could not resolve overdue poll: %s", store_exc)
        raise _http_error(exc) from exc
    except (PollError, StoreError) as exc:
        raise _http_error(exc) from exc
    return {"ok": True}


@router.get("/current", dependencies=[Depends(require_api_secret)])
async def get_current_poll(engine: PollEngine = Depends(get_engine)):
    try:
        state = await engine.get_current_snapshot()
    except StoreError as exc:
        raise _http_error(exc) from exc
    return state.to_document() if state else None


@router.post("/end-trigger", dependencies=[Depends(require_api_secret)])
async def end_trigger(resolver: PollResolver = Depends(get_resolver)):
    """Called by the overlay when its countdown reaches zero.

    Only ends a poll whose timer has actually elapsed.
    """
    try:
        result = await resolver.resolve_if_due()
    except (PollError, StoreError) as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "acted": result.ended is not None, **result.as_dict()}


@router.get("/tick", dependencies=[Depends(require_cron_secret)])
async def poll_tick(resolver: PollResolver = Depends(get_resolver)):
    """Cron entry point: end due polls, clear elapsed winners, start the next one."""
    try:
        summary = await resolver.tick()
    except (PollError, StoreError) as exc:
        raise _http_error(exc) from exc
    return {"ok": True, **summary}
