"""Room chat session: connection lifecycle, timeline and typing state.

RoomChatSession is the single owner of the session state. Presentation layers
issue intents (start, send_message, notify_typing, leave) and observe changes
through listeners; they never mutate the timeline or state directly.
"""
import asyncio
import logging
from typing import Callable, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from roomchat.chat_config import ChatClientConfig
from roomchat.chat_models import (
    ChatMessage, OutgoingChatMessage, SessionEvent, SessionEventType, SessionSnapshot, SessionState,
)
from roomchat.errors import ConnectFailure, ConnectFailureKind, HistoryFetchFailure, TransportError
from roomchat.room_service import RoomService
from roomchat.timeline import TimelineMerger
from roomchat.transport.connection import TransportConnection, create_connection
from roomchat.transport.frames import StompFrame
from roomchat.typing_coordinator import TypingCoordinator

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent], None]
ConnectionFactory = Callable[[ChatClientConfig], TransportConnection]


class RoomChatSession:
    """Chat session for one room and one local user.

    All operations return immediately. Work that needs the network is
    scheduled on the running event loop and the task is returned; ignored
    intents return None. Outcomes are reported to listeners, never raised.

    Every start/leave bumps a generation counter. Callbacks and task results
    that belong to an older generation are discarded, so a handshake that
    completes after ``leave()`` cannot bring the session back.
    """

    def __init__(
        self,
        config: Optional[ChatClientConfig] = None,
        *,
        connection_factory: Optional[ConnectionFactory] = None,
        room_service: Optional[RoomService] = None,
    ):
        """Initialize the session.

        Args:
            config: Client configuration (defaults apply when omitted)
            connection_factory: Builds a transport connection for each connect attempt
            room_service: Used to load history once connected
        """
        self.config = config or ChatClientConfig()
        self.room_service = room_service
        self._connection_factory = connection_factory or create_connection

        self.room_id: Optional[str] = None
        self.user: Optional[str] = None
        self._state = SessionState.DISCONNECTED
        self._last_error: Optional[Exception] = None

        self._timeline = TimelineMerger()
        self._typing = TypingCoordinator(
            quiet_period=self.config.typing_quiet_period,
            coalesce_window=self.config.typing_coalesce_window,
            on_change=self._on_typing_expired,
        )

        self._connection: Optional[TransportConnection] = None
        self._generation = 0
        self._connect_task: Optional[asyncio.Task] = None
        self._history_task: Optional[asyncio.Task] = None
        self._send_in_flight = False
        self._pending_send: Optional[Tuple[str, str]] = None
        self._send_release: Optional[asyncio.TimerHandle] = None
        self._listeners: List[SessionListener] = []

    # ── Observation ───────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error

    @property
    def timeline(self):
        return self._timeline.snapshot()

    @property
    def remote_typing(self) -> bool:
        return self._typing.remote_typing

    @property
    def is_sending(self) -> bool:
        return self._send_in_flight

    def snapshot(self) -> SessionSnapshot:
        signal = self._typing.last_signal
        return SessionSnapshot(
            state=self._state,
            room_id=self.room_id,
            user=self.user,
            timeline=self._timeline.snapshot(),
            remote_typing=self._typing.remote_typing,
            typing_actor=signal.actor if signal else None,
            last_error=self._last_error,
        )

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener. Returns a function that removes it again."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _emit(self, event_type: SessionEventType, error: Optional[Exception] = None) -> None:
        event = SessionEvent(type=event_type, snapshot=self.snapshot(), error=error)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"[SESSION] Listener failed on {event_type.value}: {type(e).__name__}: {e}")

    def _set_state(self, state: SessionState, error: Optional[Exception] = None) -> None:
        self._state = state
        self._last_error = error
        if error:
            logger.info(f"[SESSION] {self.room_id}: {state.value} ({error})")
        else:
            logger.info(f"[SESSION] {self.room_id}: {state.value}")
        self._emit(SessionEventType.STATE_CHANGED, error)

    # ── Intents ───────────────────────────────────────────────

    def start(self, room_id: str, user: str) -> Optional[asyncio.Task]:
        """Connect to a room as ``user``.

        Only valid while disconnected or closed. The returned task finishes
        once the attempt has succeeded or failed.
        """
        if self._state not in (SessionState.DISCONNECTED, SessionState.CLOSED):
            logger.debug(f"[SESSION] Ignoring start in state {self._state.value}")
            return None
        if not room_id or not user:
            logger.debug("[SESSION] Ignoring start without room id or user name")
            return None

        loop = asyncio.get_running_loop()
        self.room_id = room_id
        self.user = user
        self._timeline.clear()
        self._typing.close()
        self._release_send_guard()

        self._generation += 1
        self._set_state(SessionState.CONNECTING)
        self._connect_task = loop.create_task(self._connect(self._generation))
        return self._connect_task

    def send_message(self, text: str) -> Optional[asyncio.Task]:
        """Publish a chat message.

        The message is not added to the timeline here; it appears once the
        broker echoes it back. Blank text and sends while a previous one is
        still in flight are ignored. The guard is released by the cooldown
        timer or by the echo of this same message, whichever comes first.
        """
        if self._state != SessionState.CONNECTED:
            logger.debug(f"[SESSION] Ignoring send in state {self._state.value}")
            return None
        if not text or not text.strip():
            return None
        if self._send_in_flight:
            logger.debug("[SESSION] Ignoring send while previous send is in flight")
            return None

        loop = asyncio.get_running_loop()
        self._send_in_flight = True
        self._pending_send = (self.user, text)
        self._send_release = loop.call_later(self.config.send_cooldown, self._release_send_guard)

        envelope = OutgoingChatMessage(sender=self.user, content=text, room_id=self.room_id)
        destinations = self.config.destinations
        return loop.create_task(self._publish(
            self._generation,
            destinations.render(destinations.send_message, self.room_id),
            envelope.model_dump_json(by_alias=True),
            "application/json",
        ))

    def notify_typing(self) -> Optional[asyncio.Task]:
        """Tell the room that the local user is typing."""
        if self._state != SessionState.CONNECTED:
            return None
        if not self._typing.should_publish():
            return None
        destinations = self.config.destinations
        return asyncio.get_running_loop().create_task(self._publish(
            self._generation,
            destinations.render(destinations.send_typing, self.room_id),
            self.user,
            "text/plain;charset=UTF-8",
        ))

    def leave(self) -> Optional[asyncio.Task]:
        """End the session from any state. Safe to call repeatedly.

        Pending connect, reconnect and history work is cancelled. Returns the
        disconnect task when there was a connection to close.
        """
        if self._state == SessionState.CLOSED and self._connection is None:
            return None

        self._generation += 1
        current = asyncio.current_task() if _loop_running() else None
        for task in (self._connect_task, self._history_task):
            if task is not None and not task.done() and task is not current:
                task.cancel()
        self._connect_task = None
        self._history_task = None

        self._release_send_guard()
        self._typing.close()
        self._timeline.clear()
        connection, self._connection = self._connection, None
        self._set_state(SessionState.CLOSED)

        if connection is None:
            return None
        return asyncio.get_running_loop().create_task(connection.disconnect())

    async def aclose(self) -> None:
        """Leave and wait until the connection is closed."""
        task = self.leave()
        if task is not None:
            await task

    # ── History ───────────────────────────────────────────────

    def hydrate_history(self, messages: Iterable[ChatMessage]) -> None:
        """Replace the timeline with previously stored messages."""
        if self._state == SessionState.CLOSED:
            logger.debug("[SESSION] Ignoring history for a closed session")
            return
        self._timeline.hydrate(messages)
        self._emit(SessionEventType.TIMELINE_UPDATED)

    async def load_history(self) -> bool:
        """Fetch the room history from the room service and hydrate the timeline.

        Failures are reported as a NOTICE event carrying HistoryFetchFailure;
        the session stays connected. Returns True when the timeline was hydrated.
        """
        if self.room_service is None or self._state != SessionState.CONNECTED:
            return False

        generation, room_id = self._generation, self.room_id
        try:
            history = await self.room_service.fetch_history(room_id, page=0, size=self.config.history_page_size)
        except Exception as e:
            if generation != self._generation:
                return False
            failure = HistoryFetchFailure(f"Failed to load messages: {e}", room_id=room_id)
            logger.error(f"[SESSION] {failure}")
            self._emit(SessionEventType.NOTICE, failure)
            return False

        if generation != self._generation:
            return False
        self.hydrate_history(history)
        logger.info(f"[SESSION] Loaded {len(history)} messages for room {room_id}")
        return True

    # ── Connection handling ───────────────────────────────────

    async def _connect(self, generation: int) -> None:
        connection = None
        try:
            connection = self._connection_factory(self.config)
            self._connection = connection
            await self._open(connection, generation)
        except asyncio.CancelledError:
            if connection is not None:
                await connection.disconnect()
            raise
        except Exception as e:
            failure = self._as_connect_failure(e)
            if connection is not None:
                await connection.disconnect()
            if generation != self._generation:
                return
            self._connection = None
            logger.warning(f"[SESSION] Connection to room {self.room_id} failed: {failure}")
            self._set_state(SessionState.DISCONNECTED, failure)
            return

        if generation != self._generation:
            # left while the handshake was pending
            await connection.disconnect()
            return

        self._set_state(SessionState.CONNECTED)
        self._emit(SessionEventType.READY)
        if self.room_service is not None and self.config.auto_load_history:
            self._history_task = asyncio.create_task(self.load_history())

    async def _open(self, connection: TransportConnection, generation: int) -> None:
        """Connect and subscribe to the room topics, bounded by connect_timeout."""
        destinations = self.config.destinations
        room_id = self.room_id
        connection.on_connection_lost = lambda error: self._on_connection_lost(generation, connection, error)

        async def handshake():
            await connection.connect()
            await connection.subscribe(
                destinations.render(destinations.message_topic, room_id),
                lambda frame: self._on_message_frame(generation, frame),
            )
            await connection.subscribe(
                destinations.render(destinations.typing_topic, room_id),
                lambda frame: self._on_typing_frame(generation, frame),
            )

        await asyncio.wait_for(handshake(), timeout=self.config.connect_timeout)

    def _as_connect_failure(self, error: Exception) -> ConnectFailure:
        if isinstance(error, ConnectFailure):
            return error
        if isinstance(error, asyncio.TimeoutError):
            return ConnectFailure(
                f"Connect timed out after {self.config.connect_timeout}s", ConnectFailureKind.TIMEOUT,
            )
        return ConnectFailure(f"{type(error).__name__}: {error}", ConnectFailureKind.NETWORK)

    def _on_connection_lost(self, generation: int, connection: TransportConnection, error: Exception) -> None:
        if (
            generation != self._generation
            or connection is not self._connection
            or self._state != SessionState.CONNECTED
        ):
            return

        self._connection = None
        self._release_send_guard()
        asyncio.get_running_loop().create_task(connection.disconnect())

        if self.config.max_reconnect_attempts > 0:
            self._set_state(SessionState.RECONNECTING, error)
            self._connect_task = asyncio.get_running_loop().create_task(self._reconnect(generation, error))
        else:
            self._set_state(SessionState.DISCONNECTED, error)

    async def _reconnect(self, generation: int, error: Exception) -> None:
        """Retry with exponential backoff until connected or out of attempts."""
        last_error = error
        attempts = self.config.max_reconnect_attempts
        for attempt in range(1, attempts + 1):
            delay = min(self.config.reconnect_base_delay * 2 ** (attempt - 1), self.config.reconnect_max_delay)
            await asyncio.sleep(delay)
            if generation != self._generation:
                return

            connection = None
            try:
                connection = self._connection_factory(self.config)
                self._connection = connection
                await self._open(connection, generation)
            except asyncio.CancelledError:
                if connection is not None:
                    await connection.disconnect()
                raise
            except Exception as e:
                last_error = self._as_connect_failure(e)
                if connection is not None:
                    await connection.disconnect()
                if generation != self._generation:
                    return
                self._connection = None
                logger.warning(f"[SESSION] Reconnect attempt {attempt}/{attempts} failed: {last_error}")
                continue

            if generation != self._generation:
                await connection.disconnect()
                return
            logger.info(f"[SESSION] Reconnected to room {self.room_id} after {attempt} attempt(s)")
            self._set_state(SessionState.CONNECTED)
            return

        self._set_state(SessionState.DISCONNECTED, last_error)

    async def _publish(self, generation: int, destination: str, body: str, content_type: str) -> None:
        connection = self._connection
        if connection is None or generation != self._generation:
            return
        try:
            await connection.publish(destination, body, content_type)
        except TransportError as e:
            logger.warning(f"[SESSION] Publish to {destination} failed: {e}")
            self._on_connection_lost(generation, connection, e)

    # ── Inbound frames ────────────────────────────────────────

    def _on_message_frame(self, generation: int, frame: StompFrame) -> None:
        if generation != self._generation:
            return
        try:
            message = ChatMessage.model_validate_json(frame.body)
        except ValidationError as e:
            logger.warning(f"[SESSION] Dropping malformed chat frame: {e}")
            return

        self._timeline.append_live(message)
        if self._pending_send == (message.sender, message.content):
            self._release_send_guard()
        self._emit(SessionEventType.TIMELINE_UPDATED)
        if self._typing.clear_remote():
            self._emit(SessionEventType.TYPING_UPDATED)

    def _on_typing_frame(self, generation: int, frame: StompFrame) -> None:
        if generation != self._generation:
            return
        actor = frame.body
        if not actor:
            logger.warning("[SESSION] Dropping typing frame without actor")
            return
        if actor == self.user:
            return
        self._typing.observe_remote(actor)
        self._emit(SessionEventType.TYPING_UPDATED)

    def _on_typing_expired(self, typing: bool) -> None:
        if self._state != SessionState.CLOSED:
            self._emit(SessionEventType.TYPING_UPDATED)

    def _release_send_guard(self) -> None:
        self._send_in_flight = False
        self._pending_send = None
        if self._send_release is not None:
            self._send_release.cancel()
            self._send_release = None


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True
