"""Broker connections for STOMP over WebSocket and in-process brokers.

This module provides connection classes that open a session with a message
broker, subscribe to destinations, publish frames and disconnect. Inbound
frames are handed to per-subscription callbacks on the event loop.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Dict, List, Optional
from urllib.parse import urlparse

import aiohttp

from roomchat.chat_config import ChatClientConfig
from roomchat.errors import ConnectFailure, ConnectFailureKind, MalformedFrame, TransportError
from roomchat.transport.frames import StompFrame, decode_frames, encode_frame

if TYPE_CHECKING:
    from roomchat.broker import ChatRoomBroker

logger = logging.getLogger(__name__)

STOMP_SUBPROTOCOLS = ("v12.stomp", "v11.stomp", "v10.stomp")

FrameCallback = Callable[[StompFrame], None]
LostCallback = Callable[[Exception], None]


class TransportConnection(ABC):
    """Abstract base class for broker connections.

    ``on_connection_lost`` is called with the cause when an established
    connection fails. It is not called for a disconnect the owner requested.
    """

    on_connection_lost: Optional[LostCallback] = None

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection. Raises ConnectFailure."""
        pass

    @abstractmethod
    async def subscribe(self, destination: str, on_frame: FrameCallback) -> str:
        """Register a callback for a destination and return the subscription id."""
        pass

    @abstractmethod
    async def publish(self, destination: str, body: str, content_type: str = "text/plain;charset=UTF-8") -> None:
        """Send a frame body to a destination. Raises TransportError."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection. Calling it again is a no-op."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass

    def _notify_lost(self, error: Exception) -> None:
        if self.on_connection_lost:
            try:
                self.on_connection_lost(error)
            except Exception as e:
                logger.error(f"[STOMP] Connection-lost handler failed: {e}")


class StompWebSocketConnection(TransportConnection):
    """STOMP 1.2 session over an aiohttp WebSocket.

    Owns exactly one ``aiohttp.ClientSession`` and one WebSocket; both are
    released by ``disconnect`` and by a failed ``connect``.
    """

    def __init__(self, config: ChatClientConfig):
        """Initialize the connection.

        Args:
            config: client configuration providing ``broker_url``
        """
        self.config = config
        self.url = config.broker_url
        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._handlers: Dict[str, FrameCallback] = {}
        self._subscription_id = 0
        self._connected = False
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open the WebSocket and complete the STOMP handshake."""
        if self._connected:
            return

        self._closing = False
        self._http = aiohttp.ClientSession()
        try:
            self._ws = await self._http.ws_connect(self.url, protocols=STOMP_SUBPROTOCOLS)
            await self._ws.send_str(encode_frame(StompFrame(
                command="CONNECT",
                headers={
                    "accept-version": "1.1,1.2",
                    "host": urlparse(self.url).hostname or "localhost",
                    "heart-beat": "0,0",
                },
            )))
            connected = await self._receive_handshake()
        except ConnectFailure:
            await self._release()
            raise
        except (aiohttp.ClientError, OSError) as e:
            await self._release()
            raise ConnectFailure(f"Could not reach broker at {self.url}: {e}", ConnectFailureKind.NETWORK) from e
        except asyncio.CancelledError:
            await self._release()
            raise

        self._connected = True
        self._reader_task = asyncio.create_task(self._read_frames())
        logger.info(f"[STOMP] Connected to {self.url} (version {connected.header('version', '1.0')})")

    async def _receive_handshake(self) -> StompFrame:
        """Wait for the broker's answer to CONNECT."""
        while True:
            msg = await self._ws.receive()
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                try:
                    frames = decode_frames(_message_text(msg))
                except MalformedFrame as e:
                    raise ConnectFailure(f"Invalid handshake response: {e}", ConnectFailureKind.HANDSHAKE)
                if not frames:
                    continue
                frame = frames[0]
                if frame.command == "CONNECTED":
                    return frame
                if frame.command == "ERROR":
                    reason = frame.header("message") or frame.body or "unknown error"
                    raise ConnectFailure(f"Broker rejected connection: {reason}", ConnectFailureKind.HANDSHAKE)
                raise ConnectFailure(f"Unexpected {frame.command} frame during handshake", ConnectFailureKind.HANDSHAKE)
            raise ConnectFailure("Connection closed during handshake", ConnectFailureKind.NETWORK)

    async def _read_frames(self) -> None:
        """Dispatch inbound frames until the socket closes."""
        error: Optional[Exception] = None
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.ERROR:
                    error = TransportError(f"WebSocket error: {self._ws.exception()}")
                    break
                if msg.type not in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    continue
                try:
                    frames = decode_frames(_message_text(msg))
                except MalformedFrame as e:
                    logger.warning(f"[STOMP] Dropping malformed frame: {e}")
                    continue
                for frame in frames:
                    if frame.command == "ERROR":
                        error = TransportError(f"Broker error: {frame.header('message') or frame.body}")
                        break
                    self._dispatch(frame)
                if error:
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = TransportError(f"WebSocket reader failed: {e}")

        if self._closing:
            return
        self._connected = False
        error = error or TransportError("Connection closed by broker")
        logger.warning(f"[STOMP] Connection lost: {error}")
        await self._release()
        self._notify_lost(error)

    def _dispatch(self, frame: StompFrame) -> None:
        if frame.command != "MESSAGE":
            logger.debug(f"[STOMP] Ignoring {frame.command} frame")
            return
        handler = self._handlers.get(frame.header("subscription", ""))
        if handler is None:
            logger.debug(f"[STOMP] No handler for subscription {frame.header('subscription')}")
            return
        try:
            handler(frame)
        except Exception as e:
            logger.error(f"[STOMP] Frame handler failed for {frame.header('destination')}: {e}")

    async def subscribe(self, destination: str, on_frame: FrameCallback) -> str:
        if not self._connected:
            raise TransportError("Connection not started")
        self._subscription_id += 1
        sub_id = f"sub-{self._subscription_id}"
        self._handlers[sub_id] = on_frame
        await self._send(StompFrame(
            command="SUBSCRIBE",
            headers={"id": sub_id, "destination": destination, "ack": "auto"},
        ))
        logger.debug(f"[STOMP] Subscribed {sub_id} to {destination}")
        return sub_id

    async def publish(self, destination: str, body: str, content_type: str = "text/plain;charset=UTF-8") -> None:
        if not self._connected:
            raise TransportError("Connection not started")
        await self._send(StompFrame(
            command="SEND",
            headers={"destination": destination, "content-type": content_type},
            body=body,
        ))

    async def _send(self, frame: StompFrame) -> None:
        if self._ws is None or self._ws.closed:
            raise TransportError("WebSocket is closed")
        try:
            await self._ws.send_str(encode_frame(frame))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            raise TransportError(f"Failed to send {frame.command} frame: {e}") from e

    async def disconnect(self) -> None:
        """Send DISCONNECT (best effort) and release the socket."""
        if self._closing or self._http is None:
            return
        self._closing = True
        if self._connected:
            try:
                await self._send(StompFrame(command="DISCONNECT"))
            except TransportError as e:
                logger.debug(f"[STOMP] DISCONNECT not delivered: {e}")
        self._connected = False
        await self._release()
        logger.info(f"[STOMP] Disconnected from {self.url}")

    async def _release(self) -> None:
        reader, self._reader_task = self._reader_task, None
        if reader and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._http is not None:
            await self._http.close()
            self._http = None
        self._handlers.clear()


class InProcessConnection(TransportConnection):
    """Connection attached directly to a ChatRoomBroker in the same process.

    Frames are delivered through the event loop, so callbacks never run inside
    ``publish`` and arrive in FIFO order.
    """

    def __init__(self, broker: "ChatRoomBroker"):
        self.broker = broker
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tokens: List[str] = []
        self._connected = False
        self.connect_count = 0
        self.disconnect_count = 0

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            return
        await asyncio.sleep(0)
        if not self.broker.accepting:
            raise ConnectFailure("Broker refused the connection", ConnectFailureKind.HANDSHAKE)
        self._loop = asyncio.get_running_loop()
        self._connected = True
        self.connect_count += 1
        self.broker.attach(self)

    async def subscribe(self, destination: str, on_frame: FrameCallback) -> str:
        if not self._connected:
            raise TransportError("Connection not started")
        token = self.broker.subscribe(destination, lambda frame: self._deliver(on_frame, frame))
        self._tokens.append(token)
        return token

    def _deliver(self, on_frame: FrameCallback, frame: StompFrame) -> None:
        self._loop.call_soon(self._dispatch, on_frame, frame)

    def _dispatch(self, on_frame: FrameCallback, frame: StompFrame) -> None:
        if not self._connected:
            return
        try:
            on_frame(frame)
        except Exception as e:
            logger.error(f"[STOMP] Frame handler failed for {frame.header('destination')}: {e}")

    async def publish(self, destination: str, body: str, content_type: str = "text/plain;charset=UTF-8") -> None:
        await asyncio.sleep(0)
        if not self._connected:
            raise TransportError("Connection not started")
        self.broker.handle_send(destination, body)

    async def disconnect(self) -> None:
        if not self._connected:
            return
        self._teardown()
        self.disconnect_count += 1

    def fail(self, error: Exception) -> None:
        """Drop the connection and report ``error`` as the cause."""
        if not self._connected:
            return
        self._teardown()
        self._loop.call_soon(self._notify_lost, error)

    def _teardown(self) -> None:
        self._connected = False
        for token in self._tokens:
            self.broker.unsubscribe(token)
        self._tokens.clear()
        self.broker.detach(self)


def _message_text(msg: aiohttp.WSMessage) -> str:
    if msg.type == aiohttp.WSMsgType.BINARY:
        try:
            return msg.data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrame(f"Binary frame is not UTF-8: {e}")
    return msg.data


def create_connection(config: ChatClientConfig) -> TransportConnection:
    """Create the connection matching the configured broker URL.

    Raises:
        ValueError: If the broker URL is not a WebSocket URL
    """
    scheme = urlparse(config.broker_url).scheme
    if scheme in ("ws", "wss"):
        return StompWebSocketConnection(config)
    raise ValueError(f"Unsupported broker URL {config.broker_url!r}, expected ws:// or wss://")
