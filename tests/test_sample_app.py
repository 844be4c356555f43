"""Tests for the terminal sample client."""
import importlib.util
from pathlib import Path

import pytest

APP_PATH = Path(__file__).resolve().parent.parent / "samples" / "chat" / "app.py"


def _load_app():
    spec = importlib.util.spec_from_file_location("roomchat_sample_app", APP_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class KnownRooms:
    """RoomService stand-in that knows every room."""

    def __init__(self, base_url):
        self.joined = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def join_room(self, room_id):
        self.joined.append(room_id)


@pytest.mark.asyncio
async def test_missing_user_name_exits_cleanly(monkeypatch, capsys):
    app = _load_app()
    monkeypatch.setattr(app, "RoomService", KnownRooms)

    assert await app.main("room42", "") == 2
    assert "user name are required" in capsys.readouterr().out
