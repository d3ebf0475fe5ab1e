"""Short-lived mutual exclusion for poll transitions.

There is deliberately no release call: the key expires on its own, so a
crashed holder delays the next attempt by at most one TTL.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Optional

from overlay.core.config import get_settings
from overlay.services.state_store import StateStore

logger = logging.getLogger(__name__)


class LockResult(str, Enum):
    ACQUIRED = "acquired"
    NOT_ACQUIRED = "not_acquired"


class ResolutionLock:
    def __init__(
        self,
        store: StateStore,
        key: str,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._key = key
        self._ttl_seconds = ttl_seconds or get_settings().resolution_lock_ttl_seconds
        self._clock = clock

    @property
    def key(self) -> str:
        return self._key

    async def try_acquire(self) -> LockResult:
        """Single non-blocking attempt to create the lock key."""
        created = await self._store.set_if_absent(
            self._key, {"acquiredAt": self._clock()}, ttl_seconds=self._ttl_seconds
        )
        if created:
            return LockResult.ACQUIRED
        logger.debug("Lock %s held elsewhere, skipping", self._key)
        return LockResult.NOT_ACQUIRED
