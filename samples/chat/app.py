#!/usr/bin/env python3
"""Terminal chat client — join a room and chat from the command line.

    poetry run roomchat-dev-server          # in another terminal
    cd samples/chat
    poetry run python app.py room42 Alice

Lines typed are sent to the room; "/quit" leaves. Typing indicators from
other users are printed as they arrive. The room is created if it does
not exist yet.

Environment variables:
    ROOMCHAT_BROKER_URL   — STOMP WebSocket endpoint (default: ws://localhost:8080/chat/websocket)
    ROOMCHAT_API_URL      — Room REST service (default: http://localhost:8080)
"""
import asyncio
import logging
import sys

from roomchat import (
    ChatClientConfig, RoomChatSession, RoomNotFoundError, RoomService, SessionEvent,
    SessionEventType, SessionState,
)
from roomchat.profiles import ProfileCache, time_ago

profiles = ProfileCache()


def render(event: SessionEvent, shown: list) -> None:
    """Print what changed; ``shown`` holds how many timeline entries were printed."""
    snapshot = event.snapshot
    if event.type == SessionEventType.STATE_CHANGED:
        suffix = f" ({event.error})" if event.error else ""
        print(f"-- {snapshot.state.value}{suffix}")
    elif event.type == SessionEventType.READY:
        print(f"-- joined {snapshot.room_id} as {snapshot.user}. Type /quit to leave.")
    elif event.type == SessionEventType.NOTICE:
        print(f"!! {event.error}")
    elif event.type == SessionEventType.TYPING_UPDATED and snapshot.remote_typing:
        print(f"   {snapshot.typing_actor} is typing...")
    elif event.type == SessionEventType.TIMELINE_UPDATED:
        if len(snapshot.timeline) < shown[0]:
            shown[0] = 0
        for message in snapshot.timeline[shown[0]:]:
            profile = profiles.get(message.sender)
            print(f"[{profile.initials:>2}] {message.sender} ({time_ago(message.timestamp)}): {message.content}")
        shown[0] = len(snapshot.timeline)


async def ensure_room(rooms: RoomService, room_id: str) -> None:
    try:
        await rooms.join_room(room_id)
    except RoomNotFoundError:
        await rooms.create_room(room_id)
        print(f"-- created room {room_id}")


async def main(room_id: str, user: str) -> int:
    config = ChatClientConfig.from_env()
    async with RoomService(config.api_base_url) as rooms:
        await ensure_room(rooms, room_id)

        session = RoomChatSession(config, room_service=rooms)
        shown = [0]
        session.add_listener(lambda event: render(event, shown))
        task = session.start(room_id, user)
        if task is None:
            print("-- room id and user name are required")
            return 2
        await task
        if session.state != SessionState.CONNECTED:
            return 1

        loop = asyncio.get_running_loop()
        try:
            while session.state == SessionState.CONNECTED:
                line = await loop.run_in_executor(None, sys.stdin.readline)
                if not line or line.strip() == "/quit":
                    break
                session.notify_typing()
                session.send_message(line.rstrip("\n"))
        finally:
            await session.aclose()
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print("usage: app.py ROOM_ID USER_NAME")
        sys.exit(2)
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    sys.exit(asyncio.run(main(sys.argv[1], sys.argv[2])))
