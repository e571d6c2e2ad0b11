"""Chat API protocol and the Campfire HTTP implementation.

The :class:`ChatAPI` protocol abstracts how a session talks to the chat
service.  Each configured account owns one client; rooms are addressed
by name and resolved to service ids on first use.

``CampfireClient`` implements the protocol over the Campfire JSON API::

    GET  /rooms.json                              list rooms
    POST /room/{id}/join.json                     join a room
    POST /room/{id}/speak.json                    post a message or paste
    GET  /room/{id}/recent.json?since_message_id  poll for new messages
    GET  /users/{id}.json                         resolve a user's name

The client never retries.  Failures surface as
:class:`~kindling.errors.ApiError` subclasses and the daemon loop
decides what to do with them.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol

import httpx
from pydantic import ValidationError

from kindling.errors import (
    ApiError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    RoomNotFoundError,
)
from kindling.models import AccountConfig, ChatEvent, EventType, RoomInfo

logger = logging.getLogger(__name__)

_TIMEOUT = 30.0
_USER_RETRY = 300.0
_USER_AGENT = "kindling (+https://pypi.org/project/kindling-chat/)"
_KNOWN_TYPES = frozenset(t.value for t in EventType)


class ChatAPI(Protocol):
    """Interface between a session and the chat service for one account."""

    async def list_rooms(self) -> list[RoomInfo]: ...

    async def join_room(self, room: str) -> None: ...

    async def post_message(self, room: str, text: str) -> None: ...

    async def post_paste(self, room: str, text: str) -> None: ...

    async def poll_events(
        self, room: str, since: int | None = None
    ) -> tuple[list[ChatEvent], int | None]: ...

    async def close(self) -> None: ...


class CampfireClient:
    """Campfire JSON API client for a single account.

    The underlying ``httpx.AsyncClient`` is created eagerly and closed
    by :meth:`close`.  Pass *transport* to route requests through a
    custom (e.g. mock) transport.
    """

    def __init__(
        self,
        account: AccountConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = _TIMEOUT,
    ) -> None:
        self._account = account
        self._http = httpx.AsyncClient(
            base_url=account.url,
            headers={
                "Authorization": f"Bearer {account.token}",
                "Accept": "application/json",
                "User-Agent": _USER_AGENT,
            },
            timeout=timeout,
            transport=transport,
        )
        self._room_ids: dict[str, int] = {}
        self._user_names: dict[int, str] = {}
        self._user_retry_at: dict[int, float] = {}

    @property
    def subdomain(self) -> str:
        return self._account.subdomain

    async def close(self) -> None:
        """Close the HTTP connection pool."""
        await self._http.aclose()

    # -- Requests --

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: object | None = None,
        params: dict[str, object] | None = None,
    ) -> httpx.Response:
        """Send a request and map failures onto typed errors."""
        try:
            response = await self._http.request(method, path, json=json, params=params)
        except httpx.TransportError as exc:
            msg = f"{self.subdomain}: cannot reach {self._account.url} ({exc})"
            raise NetworkError(msg) from exc
        except httpx.HTTPError as exc:
            # Decoding failures, redirect loops, and other non-transport errors.
            msg = f"{self.subdomain}: {method} {path} failed ({exc})"
            raise ApiError(msg) from exc

        status = response.status_code
        if status in (401, 403):
            msg = f"{self.subdomain}: authentication failed (HTTP {status})"
            raise AuthenticationError(msg, status_code=status)
        if status == 429:
            raise RateLimitError(
                f"{self.subdomain}: rate limited",
                retry_after=_retry_after(response),
            )
        if response.is_redirect:
            location = response.headers.get("Location", "?")
            msg = (
                f"{self.subdomain}: {method} {path} was redirected to {location} "
                f"(HTTP {status})"
            )
            raise ApiError(msg, status_code=status)
        if not response.is_success:
            msg = f"{self.subdomain}: {method} {path} failed (HTTP {status})"
            raise ApiError(msg, status_code=status)
        return response

    async def _get_json(
        self, path: str, *, params: dict[str, object] | None = None
    ) -> dict[str, object]:
        response = await self._request("GET", path, params=params)
        try:
            data = response.json()
        except ValueError as exc:
            msg = f"{self.subdomain}: malformed JSON from {path}"
            raise ApiError(msg, status_code=response.status_code) from exc
        if not isinstance(data, dict):
            msg = f"{self.subdomain}: unexpected payload from {path}"
            raise ApiError(msg, status_code=response.status_code)
        return data

    # -- Rooms --

    async def list_rooms(self) -> list[RoomInfo]:
        """List every room visible to this account.  Refreshes the id cache."""
        data = await self._get_json("/rooms.json")
        raw_rooms = data.get("rooms", [])
        if not isinstance(raw_rooms, list):
            msg = f"{self.subdomain}: unexpected room listing"
            raise ApiError(msg)
        rooms: list[RoomInfo] = []
        for raw in raw_rooms:
            try:
                rooms.append(RoomInfo.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping malformed room entry: %r", raw)
        self._room_ids = {r.name: r.id for r in rooms}
        return rooms

    async def _room_id(self, room: str) -> int:
        """Resolve a room name to its service id, listing rooms on a miss."""
        if room not in self._room_ids:
            await self.list_rooms()
        try:
            return self._room_ids[room]
        except KeyError:
            msg = f"No room named {room!r} in account {self.subdomain!r}"
            raise RoomNotFoundError(msg) from None

    async def join_room(self, room: str) -> None:
        """Join *room* so that posts and polls are permitted."""
        room_id = await self._room_id(room)
        await self._request("POST", f"/room/{room_id}/join.json")

    # -- Posting --

    async def _speak(self, room: str, text: str, message_type: EventType) -> None:
        room_id = await self._room_id(room)
        payload = {"message": {"type": message_type.value, "body": text}}
        await self._request("POST", f"/room/{room_id}/speak.json", json=payload)
        logger.debug("Posted %s to %s/%s", message_type.value, self.subdomain, room)

    async def post_message(self, room: str, text: str) -> None:
        """Post a text message to *room*."""
        await self._speak(room, text, EventType.TEXT)

    async def post_paste(self, room: str, text: str) -> None:
        """Post a paste (monospaced, multi-line) to *room*."""
        await self._speak(room, text, EventType.PASTE)

    # -- Polling --

    async def poll_events(
        self, room: str, since: int | None = None
    ) -> tuple[list[ChatEvent], int | None]:
        """Fetch messages newer than *since*, oldest first.

        Returns the events and the next cursor: the largest message id
        seen, or *since* itself when nothing new arrived.  Messages of
        unknown type are logged and skipped but still advance the cursor.
        """
        room_id = await self._room_id(room)
        params: dict[str, object] | None = None
        if since is not None:
            params = {"since_message_id": since}
        data = await self._get_json(f"/room/{room_id}/recent.json", params=params)
        raw_messages = data.get("messages", [])
        if not isinstance(raw_messages, list):
            msg = f"{self.subdomain}: unexpected message listing"
            raise ApiError(msg)

        cursor = since
        events: list[ChatEvent] = []
        for raw in raw_messages:
            if not isinstance(raw, dict):
                continue
            msg_id = raw.get("id")
            if isinstance(msg_id, int) and (cursor is None or msg_id > cursor):
                cursor = msg_id
            if since is not None and isinstance(msg_id, int) and msg_id <= since:
                continue
            if raw.get("type") not in _KNOWN_TYPES:
                logger.info("Skipping message of unknown type %r", raw.get("type"))
                continue
            user_id = raw.get("user_id")
            fields: dict[str, object] = {
                "id": msg_id,
                "type": raw["type"],
                "room": room,
                "account": self.subdomain,
                "body": raw.get("body"),
                "user_id": user_id,
            }
            if isinstance(user_id, int):
                fields["user_name"] = await self.user_name(user_id)
            if raw.get("created_at"):
                fields["created_at"] = raw["created_at"]
            try:
                events.append(ChatEvent.model_validate(fields))
            except ValidationError:
                logger.warning("Skipping malformed message in %s: %r", room, raw)
        events.sort(key=lambda e: e.id)
        return events, cursor

    # -- Users --

    async def user_name(self, user_id: int) -> str:
        """Resolve a user's display name, cached.  Returns ``""`` on failure.

        A failed lookup is not retried for ``_USER_RETRY`` seconds.
        """
        if user_id in self._user_names:
            return self._user_names[user_id]
        if time.monotonic() < self._user_retry_at.get(user_id, 0.0):
            return ""
        try:
            data = await self._get_json(f"/users/{user_id}.json")
        except ApiError:
            logger.debug("Could not resolve user %s", user_id, exc_info=True)
            self._user_retry_at[user_id] = time.monotonic() + _USER_RETRY
            return ""
        self._user_retry_at.pop(user_id, None)
        user = data.get("user")
        name = user.get("name", "") if isinstance(user, dict) else ""
        self._user_names[user_id] = name if isinstance(name, str) else ""
        return self._user_names[user_id]


def _retry_after(response: httpx.Response) -> float | None:
    """Parse a numeric ``Retry-After`` header, or ``None``."""
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
