"""Development chat server — room REST API plus a STOMP-over-WebSocket broker.

Usage::

    poetry run roomchat-dev-server

    # Custom port / interface:
    PORT=9000 HOST=0.0.0.0 poetry run roomchat-dev-server

Environment variables:
    HOST                    — Interface to bind (default: 127.0.0.1)
    PORT                    — Server port (default: 8080)
    ROOMCHAT_CORS_ORIGINS   — Comma separated allowed origins (default: *)

Rooms and messages live in memory and are gone when the server stops.
Loads .env from the current working directory or any parent directory.
"""

import asyncio
import logging
import os
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.websockets import WebSocket, WebSocketState

from roomchat.broker import ChatRoomBroker
from roomchat.errors import MalformedFrame, RoomAlreadyExistsError, RoomNotFoundError
from roomchat.room_service import API_ROOMS
from roomchat.transport.connection import STOMP_SUBPROTOCOLS
from roomchat.transport.frames import StompFrame, decode_frames, encode_frame

logger = logging.getLogger(__name__)

STOMP_PATH = "/chat/websocket"


# ── STOMP endpoint ───────────────────────────────────────────────


class StompEndpoint:
    """Serves one WebSocket client: STOMP frames in, broker fan-out back."""

    def __init__(self, broker: ChatRoomBroker, websocket: WebSocket):
        self.broker = broker
        self.websocket = websocket
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._subscriptions: Dict[str, str] = {}

    async def run(self) -> None:
        offered = self.websocket.scope.get("subprotocols") or []
        subprotocol = next((p for p in STOMP_SUBPROTOCOLS if p in offered), None)
        await self.websocket.accept(subprotocol=subprotocol)
        writer = asyncio.create_task(self._write())
        try:
            while True:
                message = await self.websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                data = message.get("text")
                if data is None:
                    data = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                try:
                    frames = decode_frames(data)
                except MalformedFrame as e:
                    self._queue_error(str(e))
                    break
                if not all(self._handle(frame) for frame in frames):
                    break
        finally:
            for token in self._subscriptions.values():
                self.broker.unsubscribe(token)
            self._subscriptions.clear()
            self._outbox.put_nowait(None)
            await writer
            if self.websocket.client_state == WebSocketState.CONNECTED:
                await self.websocket.close()

    def _handle(self, frame: StompFrame) -> bool:
        """Process one client frame. Returns False when the session should end."""
        if frame.command in ("CONNECT", "STOMP"):
            self._queue(StompFrame(command="CONNECTED", headers={"version": "1.2", "heart-beat": "0,0"}))
        elif frame.command == "SUBSCRIBE":
            sub_id, destination = frame.header("id"), frame.header("destination")
            if not sub_id or not destination:
                self._queue_error("SUBSCRIBE requires id and destination headers")
                return False
            self._subscriptions[sub_id] = self.broker.subscribe(
                destination, lambda message, sub_id=sub_id: self._forward(sub_id, message),
            )
        elif frame.command == "UNSUBSCRIBE":
            token = self._subscriptions.pop(frame.header("id", ""), None)
            if token:
                self.broker.unsubscribe(token)
        elif frame.command == "SEND":
            destination = frame.header("destination")
            if not destination:
                self._queue_error("SEND requires a destination header")
                return False
            self.broker.handle_send(destination, frame.body)
        elif frame.command == "DISCONNECT":
            receipt = frame.header("receipt")
            if receipt:
                self._queue(StompFrame(command="RECEIPT", headers={"receipt-id": receipt}))
            return False
        else:
            self._queue_error(f"Unsupported command {frame.command}")
            return False
        return True

    def _forward(self, sub_id: str, message: StompFrame) -> None:
        headers = dict(message.headers, subscription=sub_id)
        self._queue(StompFrame(command=message.command, headers=headers, body=message.body))

    def _queue(self, frame: StompFrame) -> None:
        self._outbox.put_nowait(encode_frame(frame))

    def _queue_error(self, message: str) -> None:
        logger.warning(f"[STOMP] Closing client session: {message}")
        self._queue(StompFrame(command="ERROR", headers={"message": message}))

    async def _write(self) -> None:
        while True:
            text = await self._outbox.get()
            if text is None:
                return
            try:
                await self.websocket.send_text(text)
            except Exception as e:
                logger.debug(f"[STOMP] Send failed: {e}")
                return


# ── FastAPI app factory ──────────────────────────────────────────


def create_app(broker: Optional[ChatRoomBroker] = None) -> FastAPI:
    """Create the FastAPI application serving one in-memory broker."""
    broker = broker or ChatRoomBroker()

    _app = FastAPI(title="roomchat dev server", docs_url=None, redoc_url=None)
    _app.state.broker = broker

    origins = [o.strip() for o in os.environ.get("ROOMCHAT_CORS_ORIGINS", "*").split(",") if o.strip()]
    _app.add_middleware(CORSMiddleware, allow_origins=origins, allow_methods=["*"], allow_headers=["*"])

    @_app.post(API_ROOMS)
    async def create_room(request: Request):
        room_id = (await request.body()).decode("utf-8").strip()
        if not room_id:
            return PlainTextResponse("Room id is required", status_code=400)
        try:
            room = broker.create_room(room_id)
        except RoomAlreadyExistsError:
            return PlainTextResponse("Room already exists!", status_code=400)
        return JSONResponse(room.model_dump(by_alias=True, mode="json"), status_code=201)

    @_app.get(API_ROOMS + "/{room_id}")
    async def join_room(room_id: str):
        try:
            room = broker.get_room(room_id)
        except RoomNotFoundError:
            return PlainTextResponse("Room not found!", status_code=400)
        return JSONResponse(room.model_dump(by_alias=True, mode="json"))

    @_app.get(API_ROOMS + "/{room_id}/messages")
    async def room_messages(room_id: str, page: int = 0, size: int = 50):
        try:
            messages = broker.get_messages(room_id, page=page, size=size)
        except RoomNotFoundError:
            return PlainTextResponse("Room not found!", status_code=400)
        return JSONResponse([m.model_dump(by_alias=True, mode="json") for m in messages])

    @_app.websocket(STOMP_PATH)
    async def stomp(websocket: WebSocket):
        await StompEndpoint(broker, websocket).run()

    return _app


# ── Entry point ──────────────────────────────────────────────────


def main():
    """Load .env, configure logging and start the server."""
    from dotenv import load_dotenv, find_dotenv
    load_dotenv(find_dotenv(usecwd=True))

    import uvicorn

    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", "8080"))

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )

    print(f"\n  roomchat dev server → http://{host}:{port}  (STOMP: ws://{host}:{port}{STOMP_PATH})\n")
    uvicorn.run("roomchat.dev_server:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":
    main()
