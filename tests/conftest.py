import asyncio
import json
from types import SimpleNamespace

import pytest
import pytest_asyncio
from fastapi.websockets import WebSocketState
from tortoise import Tortoise, connections

from partytrivia.broadcast import BroadcastFabric
from partytrivia.coordinator import ClientSession, RoomSessionCoordinator
from partytrivia.models import Room, RoomUser, User
from partytrivia.registry import ConnectionRegistry
from partytrivia.store import TortoiseStore
from partytrivia.turns import TurnStateMachine

ANSWER_SECONDS = 3
# Slow enough that no countdown expires unless a test speeds it up
TICK_SECONDS = 5.0
FAST_TICK_SECONDS = 0.01


# ---------------------------------------------------------------------------
# Mock WebSocket
# ---------------------------------------------------------------------------

class MockWebSocket:
    """Lightweight stand-in for fastapi.WebSocket that records sent frames."""

    def __init__(self):
        self.sent_messages: list[dict] = []
        self.client_state = WebSocketState.CONNECTED
        self.close_code = None

    async def send_text(self, data: str):
        self.sent_messages.append(json.loads(data))

    async def close(self, code: int = 1000):
        self.client_state = WebSocketState.DISCONNECTED
        self.close_code = code

    def last(self, msg_type: str):
        """Return the last sent message of a given type."""
        for msg in reversed(self.sent_messages):
            if msg.get("type") == msg_type:
                return msg
        return None

    def all(self, msg_type: str) -> list[dict]:
        return [m for m in self.sent_messages if m.get("type") == msg_type]

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent_messages]

    def clear(self):
        self.sent_messages.clear()


class BrokenWebSocket(MockWebSocket):
    """Socket that looks open but fails every write."""

    async def send_text(self, data: str):
        raise RuntimeError("connection reset by peer")


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.005):
    """Poll *predicate* until it is truthy or *timeout* seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return bool(predicate())


# ---------------------------------------------------------------------------
# Database + coordinator graph
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db():
    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": ["partytrivia.models"]})
    await Tortoise.generate_schemas()
    yield
    await connections.close_all()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def fabric(registry):
    return BroadcastFabric(registry)


@pytest.fixture
def store():
    return TortoiseStore()


@pytest_asyncio.fixture
async def turns(store, fabric):
    machine = TurnStateMachine(store, fabric, answer_seconds=ANSWER_SECONDS, tick_seconds=TICK_SECONDS)
    yield machine
    await machine.shutdown()


@pytest.fixture
def coordinator(registry, fabric, store, turns):
    return RoomSessionCoordinator(registry, fabric, store, turns)


async def make_user(username: str) -> User:
    # Coordinator tests never log in, so a placeholder hash is enough
    return await User.create(username=username, password_hash="not-a-real-hash")


@pytest_asyncio.fixture
async def game(db, coordinator):
    """A room with a host on red, one more red player, two blue players and a spectator.

    Every player has joined over a mock socket; all frames sent during setup
    are cleared.
    """
    host = await make_user("hostess")
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    sam = await make_user("sam")

    room = await Room.create(code="ABC123", host_id=host.id)
    teams = {host: "red", alice: "red", bob: "blue", carol: "blue", sam: "spectator"}
    for user, team in teams.items():
        await RoomUser.create(room_id=room.id, user_id=user.id, team=team, is_host=user is host)

    sockets = {}
    sessions = {}
    for user in teams:
        ws = MockWebSocket()
        session = ClientSession(user_id=user.id, room_id=room.id, socket=ws)
        await coordinator.handle_raw(session, json.dumps({"type": "join_room", "roomId": room.id, "userId": user.id}))
        sockets[user.username] = ws
        sessions[user.username] = session

    for ws in sockets.values():
        ws.clear()

    async def send(username: str, payload: dict):
        await coordinator.handle_raw(sessions[username], json.dumps(payload))

    return SimpleNamespace(
        room=room,
        users={u.username: u for u in teams},
        sockets=sockets,
        sessions=sessions,
        send=send,
        coordinator=coordinator,
    )
