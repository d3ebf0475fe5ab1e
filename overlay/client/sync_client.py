"""Display-side sync: SSE push with a pull fallback.

The client keeps one push channel open to ``/api/stream``. When the channel
is down or silent it pulls ``/api/overlay-data`` instead, faster during the
last seconds of a poll. Whatever the source, a snapshot is rendered only if
its content hash differs from the last one rendered.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

import httpx

from overlay.services.snapshot import content_hash

logger = logging.getLogger(__name__)

BASE_PULL_SECONDS = 5.0
FINAL_COUNTDOWN_PULL_SECONDS = 3.0
FINAL_COUNTDOWN_WINDOW_SECONDS = 20.0
PUSH_SILENCE_SECONDS = 15.0
RECONNECT_DELAY_SECONDS = 2.0


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class OverlaySyncClient:
    def __init__(
        self,
        base_url: str,
        on_render: Callable[[Dict[str, Any]], None],
        secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
    ):
        headers = {"Authorization": f"Bearer {secret}"} if secret else {}
        self._http = httpx.AsyncClient(base_url=base_url, headers=headers, transport=transport, timeout=None)
        self._on_render = on_render
        self._clock = clock
        self._reconnect_delay = reconnect_delay

        self.state = ConnectionState.DISCONNECTED
        self.view: Dict[str, Any] = {}
        self.last_hash: Optional[str] = None
        self.last_push_at: Optional[float] = None
        self.last_pull_at: Optional[float] = None
        self._etag: Optional[str] = None
        self._push_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    # === Applying snapshots ===

    def apply(self, snapshot: Dict[str, Any]) -> bool:
        """Merge ``snapshot`` into the view and render if it changed anything.

        A key missing from ``snapshot`` keeps its previous value; a key sent
        as null is cleared.
        """
        merged = {**self.view, **snapshot}
        digest = content_hash(merged)
        if digest == self.last_hash:
            logger.debug("Snapshot unchanged, skipping render")
            return False
        self.view = merged
        self.last_hash = digest
        self._on_render(merged)
        return True

    def handle_message(self, message: Dict[str, Any]) -> bool:
        """Process one push frame. Every frame counts as a sign of life."""
        self.last_push_at = self._clock()
        if message.get("type") == "heartbeat":
            return False
        return self.apply(message)

    # === Pull cadence ===

    def push_is_healthy(self, now: float) -> bool:
        return (
            self.state == ConnectionState.CONNECTED
            and self.last_push_at is not None
            and now - self.last_push_at < PUSH_SILENCE_SECONDS
        )

    def _poll_remaining(self, now: float) -> Optional[float]:
        poll = self.view.get("pollState")
        if not isinstance(poll, dict) or poll.get("status") != "active":
            return None
        try:
            return float(poll["startedAt"]) + float(poll["durationSeconds"]) - now
        except (KeyError, TypeError, ValueError):
            return None

    def next_pull_delay(self, now: float) -> Optional[float]:
        """Seconds between pulls right now, or None while push covers it."""
        remaining = self._poll_remaining(now)
        if remaining is not None and remaining <= FINAL_COUNTDOWN_WINDOW_SECONDS:
            return FINAL_COUNTDOWN_PULL_SECONDS
        if self.push_is_healthy(now):
            return None
        return BASE_PULL_SECONDS

    def should_pull(self, now: float) -> bool:
        delay = self.next_pull_delay(now)
        if delay is None:
            return False
        return self.last_pull_at is None or now - self.last_pull_at >= delay

    async def pull(self) -> bool:
        self.last_pull_at = self._clock()
        headers = {"If-None-Match": self._etag} if self._etag else {}
        try:
            response = await self._http.get("/api/overlay-data", headers=headers)
            if response.status_code == 304:
                return False
            response.raise_for_status()
            snapshot = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Overlay pull failed: %s", exc)
            return False
        self._etag = response.headers.get("ETag")
        return self.apply(snapshot)

    # === Push channel ===

    def on_channel_error(self, error: Union[BaseException, str, None] = None) -> None:
        """Drop to disconnected and schedule exactly one reconnect."""
        logger.warning("Push channel lost (%s), reconnecting in %.1fs", error, self._reconnect_delay)
        self.state = ConnectionState.DISCONNECTED
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect())

    async def _reconnect(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        # cleared first so a failure inside connect can schedule the next attempt
        self._reconnect_task = None
        await self.connect()

    async def connect(self) -> None:
        """Read the push channel until it closes or fails."""
        self.state = ConnectionState.CONNECTING
        try:
            async with self._http.stream("GET", "/api/stream") as response:
                response.raise_for_status()
                self.state = ConnectionState.CONNECTED
                logger.info("Push channel connected")
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    try:
                        message = json.loads(line[len("data:"):].strip())
                    except ValueError:
                        logger.warning("Skipping malformed push frame")
                        continue
                    self.handle_message(message)
        except httpx.HTTPError as exc:
            self.on_channel_error(exc)
            return
        self.on_channel_error("stream closed by server")

    async def run(self, step_seconds: float = 1.0) -> None:
        """Keep the display in sync until cancelled."""
        self._push_task = asyncio.create_task(self.connect())
        try:
            while True:
                if self.should_pull(self._clock()):
                    await self.pull()
                await asyncio.sleep(step_seconds)
        finally:
            await self.close()

    async def close(self) -> None:
        for task in (self._push_task, self._reconnect_task):
            if task is not None and not task.done():
                task.cancel()
        self.state = ConnectionState.DISCONNECTED
        await self._http.aclose()
