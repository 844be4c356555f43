"""In-memory chat room broker.

Implements the server side of the wire contract: rooms with their message
history, destination subscriptions with fan-out, and routing of published
frames (new messages get a server timestamp, typing signals are relayed).

Used by InProcessConnection for tests and offline sessions, and by the
development server behind its REST and STOMP endpoints.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from pydantic import ValidationError

from roomchat.chat_config import DestinationConfig
from roomchat.chat_models import ChatMessage, OutgoingChatMessage, RoomDescriptor
from roomchat.errors import RoomAlreadyExistsError, RoomNotFoundError
from roomchat.transport.frames import StompFrame

logger = logging.getLogger(__name__)

FrameCallback = Callable[[StompFrame], None]


class ChatRoomBroker:
    """Rooms, subscriptions and message routing, all in memory."""

    def __init__(
        self,
        destinations: Optional[DestinationConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.destinations = destinations or DestinationConfig()
        self._clock = clock
        self._rooms: Dict[str, List[ChatMessage]] = {}
        self._subscriptions: Dict[str, Tuple[str, FrameCallback]] = {}
        self._connections: set = set()
        self.received: List[Tuple[str, str]] = []
        self.accepting = True

    # ── Rooms ─────────────────────────────────────────────────

    def create_room(self, room_id: str) -> RoomDescriptor:
        if room_id in self._rooms:
            raise RoomAlreadyExistsError(f"Room {room_id} already exists!", status=400)
        self._rooms[room_id] = []
        logger.info(f"[BROKER] Created room {room_id}")
        return RoomDescriptor(room_id=room_id)

    def get_room(self, room_id: str) -> RoomDescriptor:
        messages = self._rooms.get(room_id)
        if messages is None:
            raise RoomNotFoundError(f"Room {room_id} not found!", status=400)
        return RoomDescriptor(room_id=room_id, messages=list(messages))

    def get_messages(self, room_id: str, page: int = 0, size: int = 50) -> List[ChatMessage]:
        """Return one page of history, oldest first. Page 0 holds the newest messages."""
        messages = self._rooms.get(room_id)
        if messages is None:
            raise RoomNotFoundError(f"Room {room_id} not found!", status=400)
        end = max(0, len(messages) - page * size)
        start = max(0, end - size)
        return messages[start:end]

    # ── Subscriptions ─────────────────────────────────────────

    def subscribe(self, destination: str, callback: FrameCallback) -> str:
        token = uuid4().hex
        self._subscriptions[token] = (destination, callback)
        logger.debug(f"[BROKER] Subscription {token} on {destination}")
        return token

    def unsubscribe(self, token: str) -> None:
        self._subscriptions.pop(token, None)

    def subscriber_count(self, destination: str) -> int:
        return sum(1 for dest, _ in self._subscriptions.values() if dest == destination)

    # ── Routing ───────────────────────────────────────────────

    def handle_send(self, destination: str, body: str) -> None:
        """Route a published frame body by its destination."""
        self.received.append((destination, body))

        room_id = self.destinations.match(self.destinations.send_message, destination)
        if room_id is not None:
            self._accept_message(room_id, body)
            return

        room_id = self.destinations.match(self.destinations.send_typing, destination)
        if room_id is not None:
            self.broadcast(self.destinations.render(self.destinations.typing_topic, room_id), body, "text/plain")
            return

        logger.warning(f"[BROKER] Dropping frame for unknown destination {destination}")

    def _accept_message(self, room_id: str, body: str) -> None:
        try:
            outgoing = OutgoingChatMessage.model_validate_json(body)
        except ValidationError as e:
            logger.warning(f"[BROKER] Dropping malformed message for room {room_id}: {e}")
            return

        messages = self._rooms.get(outgoing.room_id)
        if messages is None or outgoing.room_id != room_id:
            logger.warning(f"[BROKER] Dropping message for unknown room {outgoing.room_id}")
            return

        message = ChatMessage(sender=outgoing.sender, content=outgoing.content, timestamp=self._clock())
        messages.append(message)
        self.broadcast(
            self.destinations.render(self.destinations.message_topic, room_id),
            message.model_dump_json(by_alias=True),
            "application/json",
        )

    def broadcast(self, destination: str, body: str, content_type: str = "text/plain") -> None:
        """Deliver a MESSAGE frame to every subscriber of ``destination``."""
        frame = StompFrame(
            command="MESSAGE",
            headers={
                "destination": destination,
                "content-type": content_type,
                "message-id": uuid4().hex,
            },
            body=body,
        )
        for token, (dest, callback) in list(self._subscriptions.items()):
            if dest != destination:
                continue
            try:
                callback(frame)
            except Exception as e:
                logger.error(f"[BROKER] Subscriber {token} failed: {e}")

    # ── Connection bookkeeping (in-process transport) ─────────

    def attach(self, connection) -> None:
        self._connections.add(connection)

    def detach(self, connection) -> None:
        self._connections.discard(connection)

    def drop_connections(self, error: Exception) -> int:
        """Fail every attached connection as if the network went away."""
        dropped = list(self._connections)
        for connection in dropped:
            connection.fail(error)
        return len(dropped)
