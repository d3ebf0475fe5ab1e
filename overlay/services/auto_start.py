"""Decides on each tick whether a new poll should start on its own."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from overlay.schemas.poll import PollStatus
from overlay.services.errors import AlreadyActive, InvalidPoll
from overlay.services.liveness import LivenessCheck
from overlay.services.poll_content import ContentProvider
from overlay.services.poll_engine import PollEngine

logger = logging.getLogger(__name__)


class AutoStartScheduler:
    def __init__(
        self,
        engine: PollEngine,
        content_provider: ContentProvider,
        liveness: LivenessCheck,
        clock: Callable[[], float] = time.time,
    ):
        self._engine = engine
        self._content_provider = content_provider
        self._liveness = liveness
        self._clock = clock

    async def try_auto_start_poll(self) -> bool:
        """Start a poll if every gate passes. Returns True when one was started.

        Safe to run from several invocations at once: at most one start wins,
        the rest see ``AlreadyActive`` and return False.
        """
        store = self._engine.store
        settings = await store.get_settings()
        if not settings.enabled or not settings.auto_start_enabled:
            logger.debug("Auto-start skipped: disabled")
            return False

        now = self._clock()
        state = await store.get_poll_state()
        if state is not None:
            if state.status == PollStatus.ACTIVE:
                logger.debug("Auto-start skipped: poll %s running", state.id)
                return False
            if not state.winner_display_elapsed(now):
                logger.debug("Auto-start skipped: winner still on display")
                return False

        last_ended_at = await store.get_last_poll_ended_at()
        min_gap = settings.minutes_since_last_poll * 60
        if last_ended_at is not None and now - last_ended_at < min_gap:
            logger.debug(
                "Auto-start skipped: last poll ended %.0fs ago (< %ds)", now - last_ended_at, min_gap
            )
            return False

        if not await self._liveness.is_session_live():
            logger.debug("Auto-start skipped: session not live")
            return False

        try:
            content = await self._content_provider.generate_poll_content()
        except Exception as exc:
            logger.warning("Content provider failed: %s", exc)
            return False
        if content is None:
            logger.warning("Content provider returned nothing, no poll started")
            return False

        try:
            state = await self._engine.start_poll(content.question, content.options, settings.duration_seconds)
        except AlreadyActive:
            logger.debug("Auto-start lost the race to another start")
            return False
        except InvalidPoll as exc:
            logger.warning("Auto-start content rejected: %s", exc)
            return False

        logger.info("Auto-started poll %s: %s", state.id, state.question)
        return True
