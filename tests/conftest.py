import json

import pytest

from privchat import Coordinator


class FakeChannel:
    """Stands in for a WebSocket connection and records every frame sent to it."""

    def __init__(self, name: str, fail: bool = False):
        self.name = name
        self.fail = fail
        self.frames = []

    async def send(self, raw: str) -> None:
        if self.fail:
            raise ConnectionError(f"{self.name} is gone")
        self.frames.append(json.loads(raw))

    def events(self, event_type=None):
        return [f for f in self.frames if event_type is None or f["type"] == event_type]

    def payloads(self, event_type):
        return [f["payload"] for f in self.events(event_type)]

    def clear(self):
        self.frames.clear()

    def __repr__(self):
        return f"FakeChannel({self.name})"


class DeliveringCoordinator(Coordinator):
    """Waits for queued frames after each call so tests can assert on them."""

    async def handle_event(self, handle, event_type, payload=None):
        await super().handle_event(handle, event_type, payload)
        await self.flush()

    async def disconnect(self, handle):
        await super().disconnect(handle)
        await self.flush()


@pytest.fixture()
async def coordinator():
    coordinator = DeliveringCoordinator()
    yield coordinator
    await coordinator.close()


@pytest.fixture()
def channel_factory(coordinator):
    def _make(name: str, fail: bool = False) -> FakeChannel:
        ch = FakeChannel(name, fail=fail)
        coordinator.connect(ch, ch.send)
        return ch

    return _make


@pytest.fixture()
async def alice(coordinator):
    return (await coordinator.register("alice"))["userId"]


@pytest.fixture()
async def bob(coordinator):
    return (await coordinator.register("bob"))["userId"]


@pytest.fixture()
async def logged_in(coordinator, channel_factory, alice, bob):
    """alice and bob both online, with their channels' frames cleared."""
    a, b = channel_factory("alice"), channel_factory("bob")
    await coordinator.handle_event(a, "login", {"userId": alice})
    await coordinator.handle_event(b, "login", {"userId": bob})
    a.clear()
    b.clear()
    return a, b
