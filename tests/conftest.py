import asyncio
from collections import defaultdict

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from overlay.services.broadcast_hub import BroadcastHub
from overlay.services.poll_engine import PollEngine
from overlay.services.poll_store import PollStore
from overlay.services.snapshot import SnapshotPublisher
from overlay.services.state_store import StateStore


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakePubSub:
    def __init__(self, redis):
        self._redis = redis
        self._queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels):
        for channel in channels:
            self._redis._subscribers[channel].append(self._queue)

    async def listen(self):
        while True:
            channel, data = await self._queue.get()
            yield {"type": "message", "channel": channel, "data": data}

    async def aclose(self):
        for queues in self._redis._subscribers.values():
            if self._queue in queues:
                queues.remove(self._queue)
        self.closed = True


class FakePipeline:
    def __init__(self, redis):
        self._redis = redis
        self._watched = {}
        self._commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self._watched.clear()
        self._commands.clear()
        return False

    async def watch(self, *keys):
        for key in keys:
            self._watched[key] = self._redis._versions[key]

    async def get(self, key):
        value = await self._redis.get(key)
        # let concurrent writers interleave between read and commit
        await asyncio.sleep(0)
        return value

    async def unwatch(self):
        self._watched.clear()

    def multi(self):
        self._commands.clear()

    def set(self, key, value, **kwargs):
        self._commands.append(("set", (key, value), kwargs))
        return self

    def delete(self, *keys):
        self._commands.append(("delete", keys, {}))
        return self

    async def execute(self):
        self._redis._check()
        for key, version in self._watched.items():
            if self._redis._versions[key] != version:
                raise WatchError("Watched variable changed.")
        results = []
        for name, args, kwargs in self._commands:
            results.append(await getattr(self._redis, name)(*args, **kwargs))
        return results


class FakeRedis:
    """In-memory stand-in for the subset of redis.asyncio the store uses."""

    def __init__(self, clock=None):
        self._clock = clock or FakeClock()
        self._data = {}
        self._expires = {}
        self._versions = defaultdict(int)
        self._subscribers = defaultdict(list)
        self.published = []
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("fake redis unavailable")

    def _expire(self, key):
        expires_at = self._expires.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            self._data.pop(key, None)
            self._expires.pop(key, None)
            self._versions[key] += 1

    def _touch(self, key):
        self._versions[key] += 1

    async def get(self, key):
        self._check()
        self._expire(key)
        value = self._data.get(key)
        return value if isinstance(value, str) else None

    async def set(self, key, value, ex=None, nx=False):
        self._check()
        self._expire(key)
        if nx and key in self._data:
            return None
        self._data[key] = value
        if ex:
            self._expires[key] = self._clock() + ex
        else:
            self._expires.pop(key, None)
        self._touch(key)
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
            self._expires.pop(key, None)
            self._touch(key)
        return removed

    async def mget(self, keys):
        return [await self.get(key) for key in keys]

    async def ttl(self, key):
        self._expire(key)
        if key not in self._data:
            return -2
        if key not in self._expires:
            return -1
        return int(self._expires[key] - self._clock())

    async def rpush(self, key, *values):
        self._check()
        items = self._data.setdefault(key, [])
        items.extend(values)
        self._touch(key)
        return len(items)

    async def lpush(self, key, *values):
        self._check()
        items = self._data.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        self._touch(key)
        return len(items)

    async def lpop(self, key):
        self._check()
        items = self._data.get(key)
        if not items:
            return None
        value = items.pop(0)
        if not items:
            del self._data[key]
        self._touch(key)
        return value

    async def lrange(self, key, start, end):
        self._check()
        items = self._data.get(key) or []
        return list(items[start:] if end == -1 else items[start:end + 1])

    async def llen(self, key):
        self._check()
        return len(self._data.get(key) or [])

    async def publish(self, channel, message):
        self._check()
        self.published.append((channel, message))
        for queue in self._subscribers[channel]:
            queue.put_nowait((channel, message))
        return len(self._subscribers[channel])

    def pubsub(self):
        return FakePubSub(self)

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True


class RecordingSink:
    def __init__(self):
        self.events = []

    async def emit(self, event):
        self.events.append(event)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def state_store(fake_redis):
    return StateStore(redis_client=fake_redis, cas_retries=50)


@pytest.fixture
def poll_store(state_store, clock):
    return PollStore(state_store, clock=clock)


@pytest.fixture
def hub():
    return BroadcastHub(queue_size=8, heartbeat_interval=0.05)


@pytest.fixture
def publisher(poll_store, hub, clock):
    return SnapshotPublisher(poll_store, hub=hub, clock=clock)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def engine(poll_store, publisher, sink, clock):
    return PollEngine(poll_store, publisher=publisher, event_sink=sink, clock=clock)
