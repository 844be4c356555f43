"""Models for room chat sessions."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """A single message in a room timeline.

    The server assigns ``timestamp`` when it accepts the message; on the wire
    the field is called ``timeStamp``.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sender: str
    content: str
    timestamp: Optional[datetime] = Field(default=None, alias="timeStamp")


class OutgoingChatMessage(BaseModel):
    """Envelope published to the send destination (no timestamp)."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sender: str
    content: str
    room_id: str = Field(alias="roomId")


class RoomDescriptor(BaseModel):
    """A chat room as returned by the room service."""
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId")
    messages: List[ChatMessage] = Field(default_factory=list)


class TypingSignal(BaseModel):
    """An observed 'someone is typing' signal. Never part of the timeline."""
    actor: str
    observed_at: datetime = Field(default_factory=datetime.now)


class SessionState(str, Enum):
    """Connection lifecycle state of a RoomChatSession."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class SessionEventType(str, Enum):
    """Kinds of events pushed to session listeners."""
    STATE_CHANGED = "state_changed"
    READY = "ready"
    TIMELINE_UPDATED = "timeline_updated"
    TYPING_UPDATED = "typing_updated"
    NOTICE = "notice"  # recoverable problem, e.g. history fetch failed


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session handed to observers."""
    state: SessionState
    room_id: Optional[str]
    user: Optional[str]
    timeline: Tuple[ChatMessage, ...]
    remote_typing: bool
    typing_actor: Optional[str] = None
    last_error: Optional[Exception] = None


@dataclass(frozen=True)
class SessionEvent:
    """A single notification delivered to session listeners."""
    type: SessionEventType
    snapshot: SessionSnapshot
    error: Optional[Exception] = None
