"""roomchat — room chat session client package."""

from roomchat.chat_models import (
    ChatMessage, OutgoingChatMessage, RoomDescriptor, TypingSignal,
    SessionState, SessionEvent, SessionEventType, SessionSnapshot,
)
from roomchat.chat_config import ChatClientConfig, DestinationConfig
from roomchat.errors import (
    ChatError, ConnectFailure, ConnectFailureKind, TransportError, MalformedFrame,
    HistoryFetchFailure, RoomServiceError, RoomNotFoundError, RoomAlreadyExistsError,
)
from roomchat.session import RoomChatSession
from roomchat.room_service import RoomService
from roomchat.broker import ChatRoomBroker
from roomchat.timeline import TimelineMerger
from roomchat.typing_coordinator import TypingCoordinator

__all__ = [
    "RoomChatSession",
    "RoomService",
    "ChatRoomBroker",
    "TimelineMerger",
    "TypingCoordinator",
    "ChatClientConfig",
    "DestinationConfig",
    "ChatMessage",
    "OutgoingChatMessage",
    "RoomDescriptor",
    "TypingSignal",
    "SessionState",
    "SessionEvent",
    "SessionEventType",
    "SessionSnapshot",
    "ChatError",
    "ConnectFailure",
    "ConnectFailureKind",
    "TransportError",
    "MalformedFrame",
    "HistoryFetchFailure",
    "RoomServiceError",
    "RoomNotFoundError",
    "RoomAlreadyExistsError",
    "create_app",
]


def __getattr__(name: str):
    if name == "create_app":
        from roomchat.dev_server import create_app
        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
