"""Shared fakes and fixtures for the realtime core tests."""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from exceptions import ConnectionClosedError


class FakeConnection:
    """In-memory connection that records every frame it is sent."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.frames = []

    def send(self, text: str) -> None:
        if self.fail:
            raise ConnectionClosedError("transport gone")
        self.frames.append(json.loads(text))

    @property
    def types(self):
        return [frame["type"] for frame in self.frames]

    def clear(self):
        self.frames.clear()


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Client transport fed from a queue. None ends the stream cleanly, an exception breaks it."""

    def __init__(self):
        self.inbox = asyncio.Queue()
        self.sent = []
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.inbox.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, text):
        self.sent.append(json.loads(text))

    async def close(self):
        self.closed = True
        self.inbox.put_nowait(None)

    def push(self, raw):
        self.inbox.put_nowait(raw)

    def end(self):
        self.inbox.put_nowait(None)

    def drop(self):
        self.inbox.put_nowait(ConnectionResetError("connection reset by peer"))


class FakeConnector:
    """Hands out scripted transports or raises scripted errors. Hangs once the script runs out."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.urls = []

    async def __call__(self, url):
        self.urls.append(url)
        if not self.outcomes:
            await asyncio.get_running_loop().create_future()
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeSleeper:
    """Records backoff delays. Returns at once when auto, otherwise waits for release()."""

    def __init__(self, auto: bool = False):
        self.auto = auto
        self.delays = []
        self._waiters = []

    async def __call__(self, delay):
        self.delays.append(delay)
        if self.auto:
            await asyncio.sleep(0)
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        await waiter

    def release(self):
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)


async def until(predicate, attempts: int = 200):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class FakeRedis:
    """The handful of set commands the membership backend uses."""

    def __init__(self):
        self.sets = {}

    def ping(self):
        return True

    def sadd(self, key, *values):
        members = self.sets.setdefault(key, set())
        before = len(members)
        members.update(values)
        return len(members) - before

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def sismember(self, key, value):
        return value in self.sets.get(key, set())

    def delete(self, key):
        return 1 if self.sets.pop(key, None) is not None else 0


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(monkeypatch):
    """Point the shared membership backend at an in-memory Redis."""
    from backend import redis_backend

    fake = FakeRedis()
    monkeypatch.setattr(redis_backend, "redis_client", fake)
    return fake


@pytest.fixture
def message_data():
    """A persisted message as the API layer serializes it."""
    created = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc).isoformat()
    return {
        "id": "msg-1",
        "coupleId": "couple-1",
        "senderId": "user-1",
        "content": "good morning",
        "messageType": "text",
        "mediaUrl": None,
        "readAt": None,
        "createdAt": created,
        "sender": {"id": "user-1", "name": "Sam", "avatarUrl": None, "lastSeen": created},
        "reactions": [],
    }


@pytest.fixture
def new_message_frame(message_data):
    return {"type": "message:new", "payload": {"message": message_data}, "timestamp": 1760779800000}
