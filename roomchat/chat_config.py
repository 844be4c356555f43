"""Pydantic config models for roomchat clients.

DestinationConfig — broker destination templates for one room.
ChatClientConfig — endpoints, timeouts and session policy.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field

ROOM_PLACEHOLDER = "{room_id}"


class DestinationConfig(BaseModel):
    """Broker destinations. Each template contains ``{room_id}`` once."""
    message_topic: str = Field("/topic/room/{room_id}", description="Subscription carrying accepted chat messages")
    typing_topic: str = Field("/topic/typing/{room_id}", description="Subscription carrying typing signals")
    send_message: str = Field("/app/sendMessage/{room_id}", description="Publish destination for new messages")
    send_typing: str = Field("/app/typing/{room_id}", description="Publish destination for typing signals")

    def render(self, template: str, room_id: str) -> str:
        """Fill a destination template for a room."""
        return template.replace(ROOM_PLACEHOLDER, room_id)

    def match(self, template: str, destination: str) -> Optional[str]:
        """Return the room id if ``destination`` was rendered from ``template``."""
        prefix, _, suffix = template.partition(ROOM_PLACEHOLDER)
        if not destination.startswith(prefix) or not destination.endswith(suffix):
            return None
        room_id = destination[len(prefix):len(destination) - len(suffix)]
        if not room_id or "/" in room_id:
            return None
        return room_id


class ChatClientConfig(BaseModel):
    """Client-side settings shared by the session, transport and room service."""
    broker_url: str = Field("ws://localhost:8080/chat/websocket", description="STOMP-over-WebSocket endpoint")
    api_base_url: str = Field("http://localhost:8080", description="Base URL of the room REST service")
    destinations: DestinationConfig = Field(default_factory=DestinationConfig)

    connect_timeout: float = Field(10.0, gt=0, description="Seconds before a pending connect attempt fails")
    send_cooldown: float = Field(0.5, ge=0, description="Seconds a send blocks further sends unless its echo arrives first")
    typing_quiet_period: float = Field(1.5, gt=0, description="Seconds after the last remote typing signal before it expires")
    typing_coalesce_window: float = Field(0.0, ge=0, description="Minimum seconds between local typing publishes. 0 = every call publishes")

    max_reconnect_attempts: int = Field(0, ge=0, description="Automatic reconnect attempts after a lost connection. 0 = none")
    reconnect_base_delay: float = Field(0.5, ge=0, description="Delay before the first reconnect attempt, doubled per attempt")
    reconnect_max_delay: float = Field(8.0, ge=0, description="Upper bound for the reconnect delay")

    history_page_size: int = Field(50, gt=0, description="Number of history messages fetched on connect")
    auto_load_history: bool = Field(True, description="Fetch history once connected when a room service is available")

    @classmethod
    def from_env(cls, **overrides) -> "ChatClientConfig":
        """Build a config from ``ROOMCHAT_*`` environment variables.

        Loads .env from the current working directory or any parent directory
        first. Keyword arguments take precedence over the environment.
        """
        from dotenv import load_dotenv, find_dotenv
        load_dotenv(find_dotenv(usecwd=True))

        env_map = {
            "broker_url": "ROOMCHAT_BROKER_URL",
            "api_base_url": "ROOMCHAT_API_URL",
            "connect_timeout": "ROOMCHAT_CONNECT_TIMEOUT",
            "send_cooldown": "ROOMCHAT_SEND_COOLDOWN",
            "typing_quiet_period": "ROOMCHAT_TYPING_QUIET_PERIOD",
            "typing_coalesce_window": "ROOMCHAT_TYPING_COALESCE_WINDOW",
            "max_reconnect_attempts": "ROOMCHAT_MAX_RECONNECT_ATTEMPTS",
            "history_page_size": "ROOMCHAT_HISTORY_PAGE_SIZE",
        }
        values = {}
        for field_name, var in env_map.items():
            value = os.environ.get(var)
            if value:
                values[field_name] = value
        values.update(overrides)
        return cls(**values)
