import asyncio

from worker.celery_app import celery_app


async def run_poll_tick() -> dict:
    """One resolution pass against the shared store.

    The worker has no connected displays, so snapshots go out through the
    pub/sub relay and the web processes forward them.
    """
    from overlay.services.auto_start import AutoStartScheduler
    from overlay.services.broadcast_relay import BroadcastRelay
    from overlay.services.liveness import HttpLivenessCheck
    from overlay.services.poll_content import RandomPollContentProvider
    from overlay.services.poll_engine import PollEngine
    from overlay.services.poll_events import RedisEventSink
    from overlay.services.poll_resolver import PollResolver
    from overlay.services.poll_store import PollStore
    from overlay.services.snapshot import SnapshotPublisher
    from overlay.services.state_store import StateStore, create_redis_client

    client = create_redis_client()
    try:
        store = StateStore(client)
        poll_store = PollStore(store)
        publisher = SnapshotPublisher(poll_store, relay=BroadcastRelay(store))
        engine = PollEngine(poll_store, publisher=publisher, event_sink=RedisEventSink(store))
        auto_start = AutoStartScheduler(engine, RandomPollContentProvider(), HttpLivenessCheck())
        summary = await PollResolver(engine, auto_start=auto_start).tick()
        await publisher.drain()
        return summary
    finally:
        await client.aclose()


@celery_app.task(bind=True)
def poll_tick_task(self) -> dict:
    """End due polls, clear elapsed winners and start the next poll."""
    summary = asyncio.run(run_poll_tick())
    return {"task_id": self.request.id, "status": "completed", **summary}
