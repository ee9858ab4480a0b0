"""Shared fixtures: a controllable clock, a recording broadcaster and a stub resolver."""
import asyncio

import pytest

from backend import RoomStore
from protocol import EventRouter
from resolver import SearchResult


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds * 1000


class RecordingBroadcaster:
    def __init__(self):
        self.sent = []

    async def send(self, connection_id, event, data=None):
        self.sent.append((connection_id, event, data))

    async def broadcast(self, connection_ids, event, data=None):
        for connection_id in connection_ids:
            await self.send(connection_id, event, data)

    def events_for(self, connection_id):
        return [(event, data) for cid, event, data in self.sent if cid == connection_id]

    def names_for(self, connection_id):
        return [event for event, _ in self.events_for(connection_id)]

    def last(self, connection_id, event):
        matching = [data for e, data in self.events_for(connection_id) if e == event]
        return matching[-1] if matching else None

    def clear(self):
        self.sent.clear()


class StubResolver:
    def __init__(self, results=None, error=None):
        self.results = results if results is not None else []
        self.error = error
        self.queries = []

    async def search_async(self, text):
        self.queries.append(text)
        if self.error:
            raise self.error
        return self.results


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock) -> RoomStore:
    return RoomStore(clock=clock)


@pytest.fixture()
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture()
def resolver() -> StubResolver:
    return StubResolver(results=[
        SearchResult(id="abc123", title="Song X", thumbnail="http://img/x.jpg", channel="Band", duration="3:05"),
    ])


@pytest.fixture()
def router(store, broadcaster, resolver) -> EventRouter:
    return EventRouter(store, broadcaster, resolver, max_consecutive_failures=5, skip_delay=0)


async def settle(rounds: int = 10):
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
