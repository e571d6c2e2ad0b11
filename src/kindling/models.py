"""Data models for kindling.

All models are immutable (frozen) pydantic models with full type annotations.
Configuration models validate the parsed ``config.toml``; :class:`ChatEvent`
is built from the chat service's JSON responses.

Config string fields are stripped of leading/trailing whitespace at parse time.
All datetime fields are normalized to UTC; naive datetimes are rejected.
"""

from __future__ import annotations

import re
import shlex
import string
from datetime import UTC, datetime, tzinfo
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Campfire renders timestamps as ``2009/11/20 18:48:38 +0000``.
_CAMPFIRE_TIME_FORMAT = "%Y/%m/%d %H:%M:%S %z"

# Fields a ``[[handlers]]`` command template may reference.
HOOK_PLACEHOLDERS = ("type", "room", "account", "user", "body", "id")


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _ensure_utc(v: datetime) -> datetime:
    """Normalize a tz-aware datetime to UTC. Reject naive datetimes."""
    if v.tzinfo is None:
        msg = "Naive datetimes are not allowed; provide a timezone"
        raise ValueError(msg)
    if v.tzinfo is not UTC and not _is_utc(v.tzinfo):
        return v.astimezone(UTC)
    return v


def _is_utc(tz: tzinfo) -> bool:
    """Check if a tzinfo is effectively UTC."""
    return tz.utcoffset(None) == UTC.utcoffset(None)


class EventType(StrEnum):
    """Message types reported by the chat service."""

    TEXT = "TextMessage"
    PASTE = "PasteMessage"
    SOUND = "SoundMessage"
    TWEET = "TweetMessage"
    ENTER = "EnterMessage"
    LEAVE = "LeaveMessage"
    KICK = "KickMessage"
    TOPIC_CHANGE = "TopicChangeMessage"
    TIMESTAMP = "TimestampMessage"
    UPLOAD = "UploadMessage"
    LOCK = "LockMessage"
    UNLOCK = "UnlockMessage"
    ALLOW_GUESTS = "AllowGuestsMessage"
    DISALLOW_GUESTS = "DisallowGuestsMessage"
    IDLE = "IdleMessage"
    UNIDLE = "UnidleMessage"
    CONFERENCE_CREATED = "ConferenceCreatedMessage"
    CONFERENCE_FINISHED = "ConferenceFinishedMessage"
    ADVERTISEMENT = "AdvertisementMessage"
    SYSTEM = "SystemMessage"


class ChatEvent(BaseModel):
    """A single message observed in a room.

    ``id`` is the service's message id and doubles as the poll cursor:
    the next poll asks for messages after the largest id seen.
    """

    # Bodies are kept verbatim; pastes depend on their leading whitespace.
    model_config = ConfigDict(frozen=True)

    id: int
    type: EventType
    room: str = Field(min_length=1)
    account: str = Field(min_length=1)
    body: str | None = None
    user_id: int | None = None
    user_name: str = ""
    created_at: datetime = Field(default_factory=_utc_now)

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_campfire_time(cls, v: object) -> object:
        if isinstance(v, str):
            try:
                return datetime.strptime(v, _CAMPFIRE_TIME_FORMAT)
            except ValueError:
                return v
        return v

    @field_validator("created_at", mode="after")
    @classmethod
    def _normalize_created_at(cls, v: datetime) -> datetime:
        return _ensure_utc(v)


class RoomInfo(BaseModel):
    """A room as listed by the chat service."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: int
    name: str = Field(min_length=1)
    topic: str | None = None


class AccountConfig(BaseModel):
    """One ``[[accounts]]`` entry: a chat-service identity and its rooms."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    subdomain: str = Field(min_length=1)
    token: str = Field(min_length=1)
    ssl: bool = True
    rooms: tuple[str, ...] = ()
    base_url: str | None = None

    @field_validator("subdomain")
    @classmethod
    def _validate_subdomain(cls, v: str) -> str:
        if not re.fullmatch(r"[A-Za-z0-9][A-Za-z0-9-]*", v):
            msg = f"Invalid subdomain: {v!r}"
            raise ValueError(msg)
        return v

    @property
    def url(self) -> str:
        """Base URL of the account's API endpoint."""
        if self.base_url:
            return self.base_url.rstrip("/")
        scheme = "https" if self.ssl else "http"
        return f"{scheme}://{self.subdomain}.campfirenow.com"


class HookConfig(BaseModel):
    """One ``[[handlers]]`` entry: run a command when an event matches.

    ``event`` is an :class:`EventType` value or ``"*"`` for every event.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    event: str = "*"
    match: str = ""
    run: str = Field(min_length=1)

    @field_validator("event")
    @classmethod
    def _validate_event(cls, v: str) -> str:
        if v != "*":
            EventType(v)
        return v

    @field_validator("match")
    @classmethod
    def _validate_match(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as exc:
            msg = f"Invalid match pattern {v!r}: {exc}"
            raise ValueError(msg) from exc
        return v

    @field_validator("run")
    @classmethod
    def _validate_run(cls, v: str) -> str:
        """Placeholders must name event fields; ``{{``/``}}`` are literal braces."""
        try:
            args = shlex.split(v)
        except ValueError as exc:
            msg = f"Cannot split command {v!r}: {exc}"
            raise ValueError(msg) from exc
        escape = "write '{{' and '}}' for literal braces"
        allowed = ", ".join("{" + name + "}" for name in HOOK_PLACEHOLDERS)
        for arg in args:
            try:
                parsed = list(string.Formatter().parse(arg))
            except ValueError as exc:
                msg = f"Bad placeholder in {arg!r}: {exc}; {escape}"
                raise ValueError(msg) from exc
            for _, field, _, _ in parsed:
                if field is not None and field not in HOOK_PLACEHOLDERS:
                    msg = (
                        f"Unknown placeholder {{{field}}} in {v!r}; "
                        f"allowed: {allowed}; {escape}"
                    )
                    raise ValueError(msg)
        return v


class KindlingConfig(BaseModel):
    """Validated configuration from ``config.toml``.

    Parsing is handled by ``config.py``; this model holds the validated
    result.  Default account/room fall back to the first configured
    room when unset.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    accounts: tuple[AccountConfig, ...] = ()
    default_account: str | None = None
    default_room: str | None = None
    interval: float = Field(default=5.0, gt=0)
    max_backoff: float = Field(default=300.0, gt=0)
    plugins: tuple[str, ...] = ()
    plugin_settings: dict[str, dict[str, object]] = Field(default_factory=dict)
    hooks: tuple[HookConfig, ...] = ()

    @model_validator(mode="after")
    def _check_accounts(self) -> KindlingConfig:
        seen: set[str] = set()
        for account in self.accounts:
            if account.subdomain in seen:
                msg = f"Duplicate account: {account.subdomain!r}"
                raise ValueError(msg)
            seen.add(account.subdomain)
        if self.default_account is not None and self.default_account not in seen:
            msg = f"Default account {self.default_account!r} is not configured"
            raise ValueError(msg)
        if self.default_room is not None:
            candidates = (
                [self.account(self.default_account)]
                if self.default_account is not None
                else list(self.accounts)
            )
            if not any(a and self.default_room in a.rooms for a in candidates):
                msg = f"Default room {self.default_room!r} is not configured"
                raise ValueError(msg)
        return self

    def account(self, subdomain: str) -> AccountConfig | None:
        """Look up an account by subdomain."""
        for account in self.accounts:
            if account.subdomain == subdomain:
                return account
        return None
