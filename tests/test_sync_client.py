import asyncio
import json

import httpx
import pytest

from overlay.client.sync_client import PUSH_SILENCE_SECONDS, ConnectionState, OverlaySyncClient
from overlay.core.config import Settings


def _snapshot(**fields):
    snapshot = {"type": "settings_update", "timestamp": 1.0, "showPoll": True, "pollState": None}
    snapshot.update(fields)
    return snapshot


class Renders:
    def __init__(self):
        self.views = []

    def __call__(self, view):
        self.views.append(view)


@pytest.fixture
def renders():
    return Renders()


def _client(renders, handler, clock=None, **kwargs):
    return OverlaySyncClient(
        "http://overlay.test",
        on_render=renders,
        transport=httpx.MockTransport(handler),
        clock=clock or (lambda: 1000.0),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_identical_pulls_render_once(renders):
    calls = []

    def handler(request):
        calls.append(request)
        # only the timestamp differs between the two responses
        return httpx.Response(200, json=_snapshot(timestamp=float(len(calls))))

    client = _client(renders, handler)
    assert await client.pull() is True
    assert await client.pull() is False
    assert len(calls) == 2
    assert len(renders.views) == 1
    await client.close()


@pytest.mark.asyncio
async def test_pull_sends_etag_and_honours_not_modified(renders):
    seen = []

    def handler(request):
        seen.append(request.headers.get("If-None-Match"))
        if request.headers.get("If-None-Match") == '"abc"':
            return httpx.Response(304)
        return httpx.Response(200, json=_snapshot(), headers={"ETag": '"abc"'})

    client = _client(renders, handler, secret="s3cret")
    await client.pull()
    assert await client.pull() is False
    assert seen == [None, '"abc"']
    assert len(renders.views) == 1
    await client.close()


@pytest.mark.asyncio
async def test_pull_failure_is_not_fatal(renders):
    def handler(request):
        return httpx.Response(503)

    client = _client(renders, handler)
    assert await client.pull() is False
    assert renders.views == []
    await client.close()


def test_push_and_pull_of_same_state_render_once(renders):
    client = OverlaySyncClient("http://overlay.test", on_render=renders)
    assert client.handle_message(_snapshot(timestamp=5.0)) is True
    assert client.apply(_snapshot(timestamp=9.0)) is False
    assert client.handle_message({"type": "heartbeat", "timestamp": 10.0}) is False
    assert len(renders.views) == 1


def test_absent_keys_keep_previous_values_and_null_clears(renders):
    client = OverlaySyncClient("http://overlay.test", on_render=renders)
    client.apply(_snapshot(leaderboard=["amy"], alert={"text": "hi"}))

    client.apply({"type": "settings_update", "showPoll": False})
    assert client.view["leaderboard"] == ["amy"]
    assert client.view["showPoll"] is False

    client.apply({"type": "settings_update", "alert": None})
    assert client.view["alert"] is None
    assert client.view["leaderboard"] == ["amy"]


def test_every_frame_counts_as_sign_of_life(renders):
    now = [100.0]
    client = OverlaySyncClient("http://overlay.test", on_render=renders, clock=lambda: now[0])
    client.state = ConnectionState.CONNECTED

    client.handle_message({"type": "heartbeat"})
    assert client.last_push_at == 100.0
    assert client.next_pull_delay(110.0) is None

    # push silent for too long
    assert client.next_pull_delay(115.0) == 5.0


def test_idle_channel_stays_healthy_between_server_heartbeats(renders):
    interval = Settings.model_fields["heartbeat_interval_seconds"].default
    assert interval < PUSH_SILENCE_SECONDS

    now = [100.0]
    client = OverlaySyncClient("http://overlay.test", on_render=renders, clock=lambda: now[0])
    client.state = ConnectionState.CONNECTED
    for _ in range(3):
        client.handle_message({"type": "heartbeat"})
        now[0] += interval
        assert client.next_pull_delay(now[0]) is None


def test_pull_cadence(renders):
    client = OverlaySyncClient("http://overlay.test", on_render=renders)
    assert client.state == ConnectionState.DISCONNECTED
    assert client.next_pull_delay(0.0) == 5.0
    assert client.should_pull(0.0) is True

    client.apply(_snapshot(pollState={"status": "active", "startedAt": 0.0, "durationSeconds": 60}))
    assert client.next_pull_delay(30.0) == 5.0
    assert client.next_pull_delay(40.0) == 3.0

    client.state = ConnectionState.CONNECTED
    client.last_push_at = 41.0
    # final countdown is pulled even with a healthy push channel
    assert client.next_pull_delay(42.0) == 3.0

    client.last_pull_at = 42.0
    assert client.should_pull(44.0) is False
    assert client.should_pull(45.0) is True


@pytest.mark.asyncio
async def test_channel_errors_schedule_a_single_reconnect(renders):
    def handler(request):
        return httpx.Response(500)

    client = _client(renders, handler, reconnect_delay=0.01)
    client.state = ConnectionState.CONNECTED

    client.on_channel_error(RuntimeError("boom"))
    first = client._reconnect_task
    client.on_channel_error(RuntimeError("boom again"))

    assert client._reconnect_task is first
    assert client.state == ConnectionState.DISCONNECTED
    await client.close()


@pytest.mark.asyncio
async def test_failed_reconnect_schedules_the_next_one(renders):
    attempts = []

    def handler(request):
        attempts.append(request.url.path)
        return httpx.Response(500)

    client = _client(renders, handler, reconnect_delay=0.01)
    client.on_channel_error("initial failure")
    for _ in range(50):
        if len(attempts) >= 2:
            break
        await asyncio.sleep(0.01)

    assert len(attempts) >= 2
    assert set(attempts) == {"/api/stream"}
    await client.close()


@pytest.mark.asyncio
async def test_connect_reads_sse_frames(renders):
    body = (
        "data: " + json.dumps(_snapshot(showPoll=False)) + "\n\n"
        + "data: " + json.dumps({"type": "heartbeat", "timestamp": 2.0}) + "\n\n"
    )

    def handler(request):
        return httpx.Response(200, text=body, headers={"Content-Type": "text/event-stream"})

    client = _client(renders, handler, reconnect_delay=10)
    await client.connect()

    assert len(renders.views) == 1
    assert renders.views[0]["showPoll"] is False
    # the server closing the stream schedules a reconnect
    assert client.state == ConnectionState.DISCONNECTED
    assert client._reconnect_task is not None
    await client.close()
