"""Accounts, rooms, and the per-invocation session.

A :class:`Session` is built fresh for every CLI command and once at
daemon start.  It owns one :class:`Account` per configured subdomain;
each account owns its rooms and its chat client.  Rooms hold a
back-reference to their account so that posting always goes through
the owning account's credentials.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator

from kindling.client import CampfireClient, ChatAPI
from kindling.errors import RoomNotFoundError
from kindling.events import Dispatcher
from kindling.hooks import register_hooks
from kindling.models import AccountConfig, KindlingConfig, RoomInfo
from kindling.plugins import activate_plugins

logger = logging.getLogger(__name__)

ClientFactory = Callable[[AccountConfig], ChatAPI]


class Room:
    """A named room belonging to exactly one :class:`Account`."""

    def __init__(self, name: str, account: Account) -> None:
        self.name = name
        self.account = account

    @property
    def key(self) -> str:
        """``subdomain/room`` display key."""
        return f"{self.account.subdomain}/{self.name}"

    async def say(self, text: str) -> None:
        await self.account.client.post_message(self.name, text)

    async def paste(self, text: str) -> None:
        await self.account.client.post_paste(self.name, text)

    def __repr__(self) -> str:
        return f"Room({self.key!r})"


class Account:
    """A configured chat identity, its client, and its rooms."""

    def __init__(self, config: AccountConfig, client: ChatAPI) -> None:
        self.config = config
        self.client = client
        self.rooms: dict[str, Room] = {name: Room(name, self) for name in config.rooms}

    @property
    def subdomain(self) -> str:
        return self.config.subdomain

    async def list_rooms(self) -> list[RoomInfo]:
        """Rooms visible to this account on the service."""
        return await self.client.list_rooms()

    def __repr__(self) -> str:
        return f"Account({self.subdomain!r}, rooms={list(self.rooms)!r})"


class Session:
    """Configured accounts, the default room, and the event dispatcher."""

    def __init__(
        self,
        accounts: dict[str, Account],
        *,
        default_room: Room | None = None,
        dispatcher: Dispatcher | None = None,
    ) -> None:
        self.accounts = accounts
        self.default_room = default_room
        self.dispatcher = dispatcher or Dispatcher()

    def selected_room(
        self, subdomain: str | None = None, room: str | None = None
    ) -> Room:
        """Resolve the room a command should act on.

        When both *subdomain* and *room* are given, returns exactly that
        room.  Otherwise returns the session's default room.
        """
        if subdomain and room:
            account = self.accounts.get(subdomain)
            if account is None:
                msg = f"No account configured for subdomain {subdomain!r}"
                raise RoomNotFoundError(msg)
            found = account.rooms.get(room)
            if found is None:
                msg = f"No room {room!r} configured for account {subdomain!r}"
                raise RoomNotFoundError(msg)
            return found
        if self.default_room is None:
            raise RoomNotFoundError(
                "No default room configured; pass --subdomain and --room"
            )
        return self.default_room

    def rooms(self) -> Iterator[Room]:
        """Every configured room, account by account."""
        for account in self.accounts.values():
            yield from account.rooms.values()

    async def close(self) -> None:
        """Close every account's client."""
        for account in self.accounts.values():
            try:
                await account.client.close()
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Failed to close client for %s", account.subdomain, exc_info=True
                )


def _default_room(
    config: KindlingConfig, accounts: dict[str, Account]
) -> Room | None:
    """``[default]`` account/room, else the first room of the first account."""
    if config.default_account is not None:
        account = accounts[config.default_account]
        if config.default_room is not None:
            return account.rooms.get(config.default_room)
        return next(iter(account.rooms.values()), None)
    for account in accounts.values():
        if config.default_room is not None:
            if config.default_room in account.rooms:
                return account.rooms[config.default_room]
            continue
        first = next(iter(account.rooms.values()), None)
        if first is not None:
            return first
    return None


def build_session(
    config: KindlingConfig,
    *,
    client_factory: ClientFactory = CampfireClient,
    with_handlers: bool = True,
) -> Session:
    """Build a :class:`Session` from validated configuration.

    With *with_handlers* (the default) the configured plugins and
    command hooks are registered on the dispatcher; plugins first, then
    hooks, each in file order.
    """
    accounts = {a.subdomain: Account(a, client_factory(a)) for a in config.accounts}
    session = Session(accounts, default_room=_default_room(config, accounts))
    if with_handlers:
        activate_plugins(session, config.plugins, config.plugin_settings)
        register_hooks(session.dispatcher, config.hooks)
    return session
