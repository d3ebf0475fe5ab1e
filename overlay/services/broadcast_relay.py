"""Redis pub/sub relay so every process's hub sees every snapshot."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from overlay.core.config import get_settings
from overlay.services.broadcast_hub import BroadcastHub
from overlay.services.state_store import StateStore

logger = logging.getLogger(__name__)


class BroadcastRelay:
    def __init__(self, store: StateStore, channel: Optional[str] = None, retry_delay: float = 2.0):
        self._store = store
        self._channel = channel or get_settings().broadcast_channel
        self._retry_delay = retry_delay

    @property
    def channel(self) -> str:
        return self._channel

    async def publish(self, snapshot: Dict[str, Any]) -> None:
        await self._store.publish(self._channel, snapshot)

    async def _forward(self, hub: BroadcastHub) -> None:
        pubsub = self._store.client.pubsub()
        try:
            await pubsub.subscribe(self._channel)
            logger.info("Relay subscribed to %s", self._channel)
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    snapshot = json.loads(message["data"])
                except (TypeError, ValueError):
                    logger.warning("Dropping malformed relay message")
                    continue
                hub.publish(snapshot)
        finally:
            await pubsub.aclose()

    async def listen(self, hub: BroadcastHub) -> None:
        """Forward relayed snapshots to ``hub`` until cancelled."""
        while True:
            try:
                await self._forward(hub)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Relay listener failed, resubscribing in %.1fs", self._retry_delay)
            await asyncio.sleep(self._retry_delay)
