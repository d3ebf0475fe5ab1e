"""FastAPI dependency providers.

Everything except the hub is rebuilt per request from the shared store.
Tests swap any of these through ``app.dependency_overrides``.
"""

from functools import lru_cache
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends

from overlay.core.config import get_settings
from overlay.services.auto_start import AutoStartScheduler
from overlay.services.broadcast_hub import BroadcastHub
from overlay.services.broadcast_relay import BroadcastRelay
from overlay.services.liveness import HttpLivenessCheck
from overlay.services.poll_content import RandomPollContentProvider
from overlay.services.poll_engine import PollEngine
from overlay.services.poll_events import EventSink, RedisEventSink
from overlay.services.poll_resolver import PollResolver
from overlay.services.poll_store import PollStore
from overlay.services.snapshot import SnapshotPublisher
from overlay.services.state_store import StateStore, create_redis_client


@lru_cache
def get_redis_client() -> redis.Redis:
    return create_redis_client()


@lru_cache
def get_hub() -> BroadcastHub:
    """The displays connected to this process."""
    return BroadcastHub()


def get_state_store() -> StateStore:
    return StateStore(get_redis_client())


def get_poll_store(store: StateStore = Depends(get_state_store)) -> PollStore:
    return PollStore(store)


def get_relay(store: StateStore = Depends(get_state_store)) -> Optional[BroadcastRelay]:
    if not get_settings().broadcast_relay_enabled:
        return None
    return BroadcastRelay(store)


def get_publisher(
    poll_store: PollStore = Depends(get_poll_store),
    hub: BroadcastHub = Depends(get_hub),
    relay: Optional[BroadcastRelay] = Depends(get_relay),
) -> SnapshotPublisher:
    return SnapshotPublisher(poll_store, hub=hub, relay=relay)


def get_event_sink(store: StateStore = Depends(get_state_store)) -> EventSink:
    return RedisEventSink(store)


def get_engine(
    poll_store: PollStore = Depends(get_poll_store),
    publisher: SnapshotPublisher = Depends(get_publisher),
    event_sink: EventSink = Depends(get_event_sink),
) -> PollEngine:
    return PollEngine(poll_store, publisher=publisher, event_sink=event_sink)


def get_resolver(engine: PollEngine = Depends(get_engine)) -> PollResolver:
    auto_start = AutoStartScheduler(engine, RandomPollContentProvider(), HttpLivenessCheck())
    return PollResolver(engine, auto_start=auto_start)
