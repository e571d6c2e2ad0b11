"""Shared test fixtures for kindling."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from pathlib import Path

import pytest

from kindling.models import (
    AccountConfig,
    ChatEvent,
    EventType,
    KindlingConfig,
    RoomInfo,
)
from kindling.session import Session, build_session

PollResult = tuple[list[ChatEvent], int | None] | Exception


class FakeClient:
    """In-memory :class:`~kindling.client.ChatAPI` that records every call.

    Poll results are scripted per room; each poll pops the next entry.
    When a room's script runs out, polls return no events and keep the
    cursor where it was.
    """

    def __init__(self, account: AccountConfig) -> None:
        self.account = account
        self.posts: list[tuple[str, str, str]] = []
        self.joined: list[str] = []
        self.polls: list[tuple[str, int | None]] = []
        self.scripts: dict[str, list[PollResult]] = {}
        self.room_infos: list[RoomInfo] = [
            RoomInfo(id=i, name=name) for i, name in enumerate(account.rooms, start=1)
        ]
        self.closed = False

    def script(self, room: str, results: Sequence[PollResult]) -> None:
        self.scripts[room] = list(results)

    async def list_rooms(self) -> list[RoomInfo]:
        return list(self.room_infos)

    async def join_room(self, room: str) -> None:
        self.joined.append(room)

    async def post_message(self, room: str, text: str) -> None:
        self.posts.append(("message", room, text))

    async def post_paste(self, room: str, text: str) -> None:
        self.posts.append(("paste", room, text))

    async def poll_events(
        self, room: str, since: int | None = None
    ) -> tuple[list[ChatEvent], int | None]:
        self.polls.append((room, since))
        script = self.scripts.get(room, [])
        if not script:
            return [], since
        result = script.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self) -> None:
        self.closed = True


def make_event(
    msg_id: int,
    body: str | None = "hello",
    *,
    event_type: EventType = EventType.TEXT,
    room: str = "watercooler",
    account: str = "acme",
    user_name: str = "kai",
) -> ChatEvent:
    return ChatEvent(
        id=msg_id,
        type=event_type,
        room=room,
        account=account,
        body=body,
        user_id=7,
        user_name=user_name,
    )


@pytest.fixture
def config() -> KindlingConfig:
    return KindlingConfig(
        accounts=(
            AccountConfig(
                subdomain="acme", token="acme-token", rooms=("watercooler", "ops")
            ),
            AccountConfig(subdomain="globex", token="globex-token", rooms=("lobby",)),
        ),
        default_account="acme",
        default_room="watercooler",
        interval=1.0,
        max_backoff=8.0,
    )


@pytest.fixture
def session(config: KindlingConfig) -> Session:
    return build_session(config, client_factory=FakeClient)


@pytest.fixture
def kindling_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point ``$KINDLING_HOME`` at a temporary directory."""
    home = tmp_path / "kindling-home"
    monkeypatch.setenv("KINDLING_HOME", str(home))
    return home


@pytest.fixture(autouse=True)
def _reset_kindling_logger() -> Iterator[None]:
    """Undo ``configure_logging`` so caplog sees ``kindling.*`` records."""
    yield
    root = logging.getLogger("kindling")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.NOTSET)
    root.propagate = True
