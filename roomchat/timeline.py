"""Room timeline: history hydration plus live appends."""
import logging
from typing import Iterable, List, Tuple

from roomchat.chat_models import ChatMessage

logger = logging.getLogger(__name__)


class TimelineMerger:
    """Ordered sequence of chat messages for one session.

    History replaces the timeline verbatim in server order; live messages are
    appended in arrival order without reordering by timestamp. No
    deduplication happens between the two, so a message present in history
    and echoed live shows up twice.
    """

    def __init__(self):
        self._messages: List[ChatMessage] = []
        self._hydrated = False

    def hydrate(self, history: Iterable[ChatMessage]) -> None:
        """Replace the timeline with ``history``, keeping its order."""
        if self._hydrated:
            logger.warning("[TIMELINE] Timeline hydrated more than once, replacing previous history")
        self._messages = list(history)
        self._hydrated = True

    def append_live(self, message: ChatMessage) -> None:
        """Append a message received from the live stream."""
        self._messages.append(message)

    def snapshot(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def clear(self) -> None:
        self._messages = []
        self._hydrated = False

    @property
    def hydrated(self) -> bool:
        return self._hydrated

    def __len__(self) -> int:
        return len(self._messages)
