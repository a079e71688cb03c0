import json

import pytest

from relay import ChatRelay


class FakeWebSocket:
    """Stands in for a Starlette WebSocket: records every frame sent to it."""

    def __init__(self):
        self.frames = []

    async def send_text(self, text: str):
        self.frames.append(json.loads(text))

    def events(self, name: str = None):
        return [frame for frame in self.frames if name is None or frame["event"] == name]

    def data(self, name: str):
        return [frame["data"] for frame in self.events(name)]

    def system_messages(self):
        return self.data("systemMessage")

    def clear(self):
        self.frames.clear()


class Client:
    """A connected test participant."""

    def __init__(self, relay: ChatRelay, websocket: FakeWebSocket, connection_id: str):
        self.relay = relay
        self.ws = websocket
        self.connection_id = connection_id

    async def emit(self, event: str, data=None):
        await self.relay.handle_event(self.connection_id, event, data)

    async def create_room(self, name: str = None):
        await self.emit("createRoom", {"name": name} if name else None)
        return self.ws.data("roomCreated")[-1]

    async def join(self, **data):
        await self.emit("joinRoom", data)

    async def close(self):
        await self.relay.disconnect(self.connection_id)

    @property
    def session(self):
        return self.relay.sessions.get(self.connection_id)


@pytest.fixture
async def make_relay():
    relays = []

    def _make(**overrides):
        options = dict(ttl_seconds=60, grace_seconds=0.05, sweep_interval=60)
        options.update(overrides)
        relay = ChatRelay(**options)
        relay.start()
        relays.append(relay)
        return relay

    yield _make
    for relay in relays:
        await relay.close()


@pytest.fixture
async def relay(make_relay):
    return make_relay()


@pytest.fixture
def connect(relay):
    async def _connect(target: ChatRelay = None):
        target = target or relay
        websocket = FakeWebSocket()
        connection_id = await target.connect(websocket)
        return Client(target, websocket, connection_id)
    return _connect
