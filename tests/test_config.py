"""Tests for client configuration."""
import pytest
from pydantic import ValidationError

from roomchat.chat_config import ChatClientConfig, DestinationConfig


class TestDestinations:

    def test_render(self):
        destinations = DestinationConfig()
        assert destinations.render(destinations.message_topic, "r1") == "/topic/room/r1"
        assert destinations.render(destinations.typing_topic, "r1") == "/topic/typing/r1"
        assert destinations.render(destinations.send_message, "r1") == "/app/sendMessage/r1"
        assert destinations.render(destinations.send_typing, "r1") == "/app/typing/r1"

    def test_match(self):
        destinations = DestinationConfig()
        assert destinations.match(destinations.send_message, "/app/sendMessage/r1") == "r1"
        assert destinations.match(destinations.send_message, "/app/typing/r1") is None
        assert destinations.match(destinations.send_message, "/app/sendMessage/") is None
        assert destinations.match(destinations.send_message, "/app/sendMessage/a/b") is None

    def test_match_with_suffix(self):
        destinations = DestinationConfig(message_topic="/rooms/{room_id}/messages")
        assert destinations.match(destinations.message_topic, "/rooms/r1/messages") == "r1"
        assert destinations.match(destinations.message_topic, "/rooms/r1/typing") is None


class TestClientConfig:

    def test_defaults(self):
        config = ChatClientConfig()
        assert config.broker_url == "ws://localhost:8080/chat/websocket"
        assert config.api_base_url == "http://localhost:8080"
        assert config.connect_timeout == 10.0
        assert config.send_cooldown == 0.5
        assert config.typing_quiet_period == 1.5
        assert config.typing_coalesce_window == 0.0
        assert config.max_reconnect_attempts == 0
        assert config.history_page_size == 50
        assert config.auto_load_history is True

    @pytest.mark.parametrize("field,value", [
        ("connect_timeout", 0),
        ("typing_quiet_period", -1),
        ("send_cooldown", -0.1),
        ("max_reconnect_attempts", -1),
        ("history_page_size", 0),
    ])
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            ChatClientConfig(**{field: value})

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ROOMCHAT_BROKER_URL", "wss://chat.example.com/chat/websocket")
        monkeypatch.setenv("ROOMCHAT_CONNECT_TIMEOUT", "3.5")
        monkeypatch.setenv("ROOMCHAT_MAX_RECONNECT_ATTEMPTS", "4")
        monkeypatch.delenv("ROOMCHAT_API_URL", raising=False)

        config = ChatClientConfig.from_env(send_cooldown=1.0)

        assert config.broker_url == "wss://chat.example.com/chat/websocket"
        assert config.connect_timeout == 3.5
        assert config.max_reconnect_attempts == 4
        assert config.send_cooldown == 1.0

    def test_overrides_beat_environment(self, monkeypatch):
        monkeypatch.setenv("ROOMCHAT_HISTORY_PAGE_SIZE", "20")
        assert ChatClientConfig.from_env(history_page_size=5).history_page_size == 5
