import json
import time

import pytest

from overlay.schemas.poll import PollOption, PollState, PollStatus
from overlay.services import state_store as state_store_module
from overlay.services.poll_store import POLL_EVENTS_KEY, POLL_STATE_KEY
from worker.celery_app import celery_app
from worker.tasks import run_poll_tick


def test_beat_schedule_runs_poll_tick():
    entry = celery_app.conf.beat_schedule["poll-tick"]
    assert entry["task"] == "worker.tasks.poll_tick_task"
    assert entry["schedule"] == 30.0


@pytest.mark.asyncio
async def test_tick_ends_overdue_poll_and_relays_snapshot(fake_redis, monkeypatch):
    overdue = PollState(
        id="poll_overdue",
        question="Best snack?",
        options=[PollOption(label="Chips", voters={"v1": 0}), PollOption(label="Candy")],
        started_at=time.time() - 120,
        duration_seconds=30,
        status=PollStatus.ACTIVE,
    )
    await fake_redis.set(POLL_STATE_KEY, json.dumps(overdue.to_document()))
    monkeypatch.setattr(state_store_module, "create_redis_client", lambda url=None: fake_redis)

    summary = await run_poll_tick()

    assert summary["ended"] == "poll_overdue"
    stored = json.loads(await fake_redis.get(POLL_STATE_KEY))
    assert stored["status"] == "winner"
    assert stored["winnerMessage"] == 'Poll "Best snack?": Chips wins! (1 vote)'

    channels = [channel for channel, _ in fake_redis.published]
    assert channels == ["overlay:broadcast"]
    events = [json.loads(raw) for raw in await fake_redis.lrange(POLL_EVENTS_KEY, 0, -1)]
    assert [event["type"] for event in events] == ["poll_ended"]
    assert fake_redis.closed is True
