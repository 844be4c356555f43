"""REST client for the room service (create, join, history)."""
import asyncio
import logging
from typing import Any, List, Optional, Type
from urllib.parse import quote

import aiohttp
from pydantic import TypeAdapter, ValidationError

from roomchat.chat_models import ChatMessage, RoomDescriptor
from roomchat.errors import RoomAlreadyExistsError, RoomNotFoundError, RoomServiceError

logger = logging.getLogger(__name__)

# API path constants
API_ROOMS = "/api/v1/rooms"

_MESSAGE_LIST = TypeAdapter(List[ChatMessage])


class RoomService:
    """Async client for the room REST API.

    Use as an async context manager, or call ``close()`` when done. A passed-in
    ``aiohttp.ClientSession`` is borrowed and not closed.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self) -> "RoomService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    def _http(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    def _room_url(self, room_id: str, suffix: str = "") -> str:
        return f"{self.base_url}{API_ROOMS}/{quote(room_id, safe='')}{suffix}"

    async def create_room(self, room_id: str) -> RoomDescriptor:
        """Create a room. Raises RoomAlreadyExistsError if the id is taken."""
        data = await self._request(
            "POST", f"{self.base_url}{API_ROOMS}",
            data=room_id, headers={"Content-Type": "text/plain"},
            client_error=RoomAlreadyExistsError,
        )
        logger.info(f"[ROOMS] Created room {room_id}")
        return self._parse(RoomDescriptor, data)

    async def join_room(self, room_id: str) -> RoomDescriptor:
        """Look up an existing room. Raises RoomNotFoundError for unknown ids."""
        data = await self._request("GET", self._room_url(room_id), client_error=RoomNotFoundError)
        return self._parse(RoomDescriptor, data)

    async def fetch_history(self, room_id: str, page: int = 0, size: int = 50) -> List[ChatMessage]:
        """Fetch one page of room history, oldest message first."""
        data = await self._request(
            "GET", self._room_url(room_id, "/messages"),
            params={"page": str(page), "size": str(size)},
            client_error=RoomNotFoundError,
        )
        try:
            return _MESSAGE_LIST.validate_python(data)
        except ValidationError as e:
            raise RoomServiceError(f"Invalid history payload for room {room_id}: {e}")

    async def _request(
        self,
        method: str,
        url: str,
        client_error: Type[RoomServiceError],
        **kwargs,
    ) -> Any:
        try:
            async with self._http().request(method, url, **kwargs) as resp:
                if resp.status in (400, 404):
                    raise client_error(await resp.text() or f"{method} {url} failed", status=resp.status)
                if resp.status >= 300:
                    raise RoomServiceError(f"{method} {url} failed: {resp.status}", status=resp.status)
                return await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise RoomServiceError(f"{method} {url} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise RoomServiceError(f"{method} {url} timed out") from e
        except ValueError as e:
            raise RoomServiceError(f"{method} {url} returned invalid JSON: {e}") from e

    @staticmethod
    def _parse(model, data: Any):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RoomServiceError(f"Invalid room payload: {e}")
