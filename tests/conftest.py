"""Test configuration and fixtures."""
import asyncio
from datetime import datetime
from typing import List, Optional

import pytest
import pytest_asyncio

from roomchat.broker import ChatRoomBroker
from roomchat.chat_config import ChatClientConfig
from roomchat.chat_models import ChatMessage, SessionEvent
from roomchat.session import RoomChatSession
from roomchat.transport.connection import InProcessConnection

ROOM = "room42"
T0 = datetime(2024, 5, 1, 12, 0, 0)
T1 = datetime(2024, 5, 1, 12, 0, 5)


async def settle(delay: float = 0.02) -> None:
    """Let scheduled publishes, deliveries and history loads run."""
    await asyncio.sleep(delay)


class ConnectionFactory:
    """Creates in-process connections and remembers them for assertions."""

    def __init__(self, broker: ChatRoomBroker, connection_class=InProcessConnection):
        self.broker = broker
        self.connection_class = connection_class
        self.connections: List[InProcessConnection] = []

    def __call__(self, config: ChatClientConfig) -> InProcessConnection:
        connection = self.connection_class(self.broker)
        self.connections.append(connection)
        return connection


class GatedConnection(InProcessConnection):
    """Connection whose handshake waits until ``gate`` is set."""

    def __init__(self, broker: ChatRoomBroker):
        super().__init__(broker)
        self.gate = asyncio.Event()

    async def connect(self) -> None:
        await self.gate.wait()
        await super().connect()


class StubbornConnection(GatedConnection):
    """Gated connection that finishes its handshake even when cancelled."""

    async def connect(self) -> None:
        try:
            await self.gate.wait()
        except asyncio.CancelledError:
            await self.gate.wait()
        await InProcessConnection.connect(self)


class StaticRoomService:
    """Room service stand-in returning fixed history or raising."""

    def __init__(self, history: Optional[List[ChatMessage]] = None, error: Optional[Exception] = None):
        self.history = history or []
        self.error = error
        self.calls = []

    async def fetch_history(self, room_id: str, page: int = 0, size: int = 50) -> List[ChatMessage]:
        self.calls.append((room_id, page, size))
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        return list(self.history)


class EventRecorder:
    """Session listener collecting every event."""

    def __init__(self):
        self.events: List[SessionEvent] = []

    def __call__(self, event: SessionEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type) -> List[SessionEvent]:
        return [e for e in self.events if e.type == event_type]

    @property
    def states(self):
        return [e.snapshot.state for e in self.events if e.type.value == "state_changed"]


@pytest.fixture
def broker():
    """Broker with one room and a fixed server clock."""
    b = ChatRoomBroker(clock=lambda: T1)
    b.create_room(ROOM)
    return b


@pytest.fixture
def config():
    """Client config with short timers so tests run fast."""
    return ChatClientConfig(
        connect_timeout=1.0,
        send_cooldown=0.2,
        typing_quiet_period=0.3,
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.05,
    )


@pytest.fixture
def connections(broker):
    return ConnectionFactory(broker)


@pytest_asyncio.fixture
async def make_session(config, connections):
    """Session factory; every session it creates is closed after the test."""
    sessions = []

    def factory(cfg=None, room_service=None, connection_factory=None):
        session = RoomChatSession(
            cfg or config,
            connection_factory=connection_factory or connections,
            room_service=room_service,
        )
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        await session.aclose()


async def join(session: RoomChatSession, user: str, room_id: str = ROOM) -> RoomChatSession:
    """Start ``session`` and wait until the connect attempt finished."""
    await session.start(room_id, user)
    await settle()
    return session


class HeldConnection(InProcessConnection):
    """Connection that holds inbound frames until ``release`` is called."""

    def __init__(self, broker: ChatRoomBroker):
        super().__init__(broker)
        self.held = []

    def _deliver(self, on_frame, frame) -> None:
        self.held.append((on_frame, frame))

    def release(self, count: Optional[int] = None) -> None:
        count = len(self.held) if count is None else count
        batch, self.held = self.held[:count], self.held[count:]
        for on_frame, frame in batch:
            self._dispatch(on_frame, frame)
