"""Combined overlay snapshot and its best-effort publication."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Set

from overlay.schemas.poll import PollState
from overlay.services.broadcast_hub import BroadcastHub
from overlay.services.poll_store import PollStore

logger = logging.getLogger(__name__)

SNAPSHOT_TYPE = "settings_update"

DEFAULT_OVERLAY_SETTINGS: Dict[str, Any] = {
    "showLocation": True,
    "showWeather": True,
    "showWeatherIcon": True,
    "showWeatherCondition": True,
    "weatherIconPosition": "left",
    "showSpeed": True,
    "showTime": True,
    "showPoll": True,
}

# Volatile fields that change on every frame without changing what is shown.
HASH_EXCLUDED_KEYS = frozenset({"type", "timestamp"})


def build_snapshot(
    overlay_settings: Dict[str, Any], poll_state: Optional[PollState], now: float
) -> Dict[str, Any]:
    snapshot = {**DEFAULT_OVERLAY_SETTINGS, **overlay_settings}
    snapshot["pollState"] = poll_state.to_document() if poll_state else None
    snapshot["type"] = SNAPSHOT_TYPE
    snapshot["timestamp"] = now
    return snapshot


def content_hash(snapshot: Dict[str, Any]) -> str:
    """Stable digest of what a display would render."""
    payload = {k: v for k, v in snapshot.items() if k not in HASH_EXCLUDED_KEYS}
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


async def load_snapshot(poll_store: PollStore, clock: Callable[[], float] = time.time) -> Dict[str, Any]:
    overlay_settings, poll_state = await poll_store.get_snapshot_sources()
    return build_snapshot(overlay_settings, poll_state, clock())


class SnapshotPublisher:
    """Re-reads the snapshot from the store and pushes it to displays.

    Publishing never raises: the store already holds the truth, and displays
    that miss a push catch up through the pull endpoint.
    """

    def __init__(
        self,
        poll_store: PollStore,
        hub: Optional[BroadcastHub] = None,
        relay: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._poll_store = poll_store
        self._hub = hub
        self._relay = relay
        self._clock = clock
        self._pending: Set[asyncio.Task] = set()

    def notify(self) -> None:
        """Schedule a publish and return immediately."""
        task = asyncio.get_running_loop().create_task(self.publish_now())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def publish_now(self) -> bool:
        try:
            snapshot = await load_snapshot(self._poll_store, self._clock)
            if self._relay is not None:
                await self._relay.publish(snapshot)
            elif self._hub is not None:
                self._hub.publish(snapshot)
            else:
                logger.debug("No broadcast target configured, snapshot not pushed")
                return False
            return True
        except Exception as exc:
            logger.warning("Snapshot broadcast failed: %s", exc)
            return False

    async def drain(self) -> None:
        """Wait for publishes scheduled by ``notify``."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
