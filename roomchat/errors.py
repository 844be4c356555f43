"""Error types raised or reported by roomchat."""
from enum import Enum
from typing import Optional


class ChatError(Exception):
    """Base class for roomchat errors."""
    pass


class ConnectFailureKind(str, Enum):
    """Why a connect attempt failed."""
    NETWORK = "network"
    HANDSHAKE = "handshake"
    TIMEOUT = "timeout"


class ConnectFailure(ChatError):
    """Raised when a transport connect attempt fails."""
    def __init__(self, message: str, kind: ConnectFailureKind = ConnectFailureKind.NETWORK):
        self.kind = kind
        super().__init__(message)


class TransportError(ChatError):
    """An established connection failed or a frame could not be sent."""
    pass


class MalformedFrame(ChatError):
    """An inbound frame or its payload could not be decoded."""
    pass


class HistoryFetchFailure(ChatError):
    """Loading the room history failed. The session stays usable."""
    def __init__(self, message: str, room_id: Optional[str] = None):
        self.room_id = room_id
        super().__init__(message)


class RoomServiceError(ChatError):
    """The room REST service returned an error or could not be reached."""
    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class RoomNotFoundError(RoomServiceError):
    """The requested room does not exist."""
    pass


class RoomAlreadyExistsError(RoomServiceError):
    """A room with the requested id already exists."""
    pass
