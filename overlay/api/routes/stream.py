"""Push channel and pull endpoints for overlay displays."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse

from overlay.api.deps import get_hub, get_poll_store
from overlay.core.auth import require_api_secret
from overlay.services.broadcast_hub import BroadcastHub
from overlay.services.errors import StoreError
from overlay.services.poll_store import PollStore
from overlay.services.snapshot import content_hash, load_snapshot

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_secret)])

_NO_CACHE = {"Cache-Control": "no-cache"}


@router.get("/stream")
async def stream_overlay(
    hub: BroadcastHub = Depends(get_hub),
    poll_store: PollStore = Depends(get_poll_store),
):
    """Stream snapshots to a display via SSE, starting with the current one."""
    # Register before reading so updates published during the read are queued.
    channel = hub.connect()
    try:
        initial = await load_snapshot(poll_store)
    except StoreError as exc:
        logger.warning("Initial snapshot unavailable: %s", exc)
        initial = None

    async def generator():
        try:
            async for frame in hub.stream(channel, initial):
                yield frame
        except asyncio.CancelledError:
            return

    return StreamingResponse(
        generator(),
        media_type="text/event-stream",
        headers={**_NO_CACHE, "X-Accel-Buffering": "no"},
    )


@router.get("/overlay-data")
async def overlay_data(request: Request, poll_store: PollStore = Depends(get_poll_store)):
    """Current snapshot, tagged with its content hash."""
    try:
        snapshot = await load_snapshot(poll_store)
    except StoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    etag = f'"{content_hash(snapshot)}"'
    if request.headers.get("If-None-Match") == etag:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers={"ETag": etag})
    return JSONResponse(snapshot, headers={**_NO_CACHE, "ETag": etag})


@router.get("/poll-state")
async def poll_state(poll_store: PollStore = Depends(get_poll_store)):
    try:
        state = await poll_store.get_poll_state()
    except StoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return JSONResponse({"pollState": state.to_document() if state else None}, headers=_NO_CACHE)
