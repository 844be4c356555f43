"""Typing indicator state: local publish coalescing and remote expiry."""
import asyncio
import logging
import time
from typing import Callable, Optional

from roomchat.chat_models import TypingSignal

logger = logging.getLogger(__name__)


class TypingCoordinator:
    """Tracks whether anyone else in the room is typing.

    There is a single flag, not one per actor. Every remote signal sets it and
    restarts the quiet-period timer; the flag clears when the timer fires
    without a newer signal. No explicit "stopped typing" message exists.
    """

    def __init__(
        self,
        quiet_period: float = 1.5,
        coalesce_window: float = 0.0,
        on_change: Optional[Callable[[bool], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the coordinator.

        Args:
            quiet_period: Seconds after the last remote signal before the flag clears
            coalesce_window: Minimum seconds between local publishes (0 = no limit)
            on_change: Called with the new flag when the quiet-period timer clears it
            clock: Monotonic clock used for local coalescing
        """
        self.quiet_period = quiet_period
        self.coalesce_window = coalesce_window
        self.on_change = on_change
        self._clock = clock
        self._last_local_publish: Optional[float] = None
        self._last_signal: Optional[TypingSignal] = None
        self._expiry: Optional[asyncio.TimerHandle] = None
        self._remote_typing = False

    @property
    def remote_typing(self) -> bool:
        return self._remote_typing

    @property
    def last_signal(self) -> Optional[TypingSignal]:
        return self._last_signal if self._remote_typing else None

    # ── Local side ────────────────────────────────────────────

    def should_publish(self) -> bool:
        """Whether a local typing notification may go out now."""
        now = self._clock()
        if (
            self.coalesce_window > 0
            and self._last_local_publish is not None
            and now - self._last_local_publish < self.coalesce_window
        ):
            return False
        self._last_local_publish = now
        return True

    # ── Remote side ───────────────────────────────────────────

    def observe_remote(self, actor: str) -> bool:
        """Record a typing signal from another user. Returns True if the flag changed."""
        self._last_signal = TypingSignal(actor=actor)
        self._cancel_expiry()
        self._expiry = asyncio.get_running_loop().call_later(self.quiet_period, self._expire)
        changed = not self._remote_typing
        self._remote_typing = True
        return changed

    def clear_remote(self) -> bool:
        """Clear the flag early. Returns True if it was set."""
        self._cancel_expiry()
        changed = self._remote_typing
        self._remote_typing = False
        return changed

    def close(self) -> None:
        self.clear_remote()
        self._last_signal = None
        self._last_local_publish = None

    def _expire(self) -> None:
        self._expiry = None
        if not self._remote_typing:
            return
        self._remote_typing = False
        logger.debug("[TYPING] Remote typing signal expired")
        if self.on_change:
            self.on_change(False)

    def _cancel_expiry(self) -> None:
        if self._expiry is not None:
            self._expiry.cancel()
            self._expiry = None
