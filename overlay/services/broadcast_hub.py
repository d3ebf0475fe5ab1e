"""In-memory hub pushing overlay snapshots to connected displays.

The hub only knows the displays connected to this process. Snapshots
produced elsewhere reach it through ``BroadcastRelay``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, List, Optional

from overlay.core.config import get_settings

logger = logging.getLogger(__name__)

# Put on a channel queue to end its stream.
_CLOSE = None


def format_sse(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


def heartbeat_frame() -> Dict[str, Any]:
    return {"type": "heartbeat", "timestamp": time.time()}


@dataclass
class Channel:
    id: str
    queue: asyncio.Queue
    connected_at: float = field(default_factory=time.time)
    closed: bool = False


class BroadcastHub:
    def __init__(self, queue_size: Optional[int] = None, heartbeat_interval: Optional[float] = None) -> None:
        settings = get_settings()
        self._channels: Dict[str, Channel] = {}
        self._queue_size = queue_size or settings.channel_queue_size
        self.heartbeat_interval = heartbeat_interval or settings.heartbeat_interval_seconds

    def connect(self, channel_id: Optional[str] = None) -> Channel:
        channel = Channel(
            id=channel_id or f"conn_{uuid.uuid4().hex[:12]}",
            queue=asyncio.Queue(maxsize=self._queue_size),
        )
        self._channels[channel.id] = channel
        logger.info("Display %s connected (%d active)", channel.id, len(self._channels))
        return channel

    def disconnect(self, channel: Channel) -> None:
        if self._channels.pop(channel.id, None) is not None:
            logger.info("Display %s disconnected (%d active)", channel.id, len(self._channels))
        channel.closed = True

    def _close(self, channel: Channel) -> None:
        self.disconnect(channel)
        while not channel.queue.empty():
            channel.queue.get_nowait()
        channel.queue.put_nowait(_CLOSE)

    def publish(self, message: Dict[str, Any]) -> int:
        """Queue ``message`` on every channel without waiting for delivery.

        A channel whose buffer is full is closed; its display reconnects and
        gets a fresh snapshot.
        """
        delivered = 0
        stalled: List[Channel] = []
        for channel in list(self._channels.values()):
            try:
                channel.queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                stalled.append(channel)
        for channel in stalled:
            logger.warning("Closing stalled display channel %s", channel.id)
            self._close(channel)
        return delivered

    def connection_info(self) -> Dict[str, Any]:
        return {"count": len(self._channels), "ids": list(self._channels.keys())}

    async def stream(
        self, channel: Channel, initial: Optional[Dict[str, Any]] = None
    ) -> AsyncGenerator[str, None]:
        """SSE frames for one display: initial snapshot, updates, heartbeats."""
        try:
            if initial is not None:
                yield format_sse(initial)
            while not channel.closed:
                try:
                    message = await asyncio.wait_for(channel.queue.get(), timeout=self.heartbeat_interval)
                except asyncio.TimeoutError:
                    message = heartbeat_frame()
                if message is _CLOSE:
                    break
                yield format_sse(message)
        finally:
            self.disconnect(channel)
