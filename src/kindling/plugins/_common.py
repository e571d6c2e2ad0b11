"""Settings helpers shared by the built-in plugins."""

from __future__ import annotations

import re
from collections.abc import Mapping

from kindling.errors import ConfigError
from kindling.models import EventType


def event_types(
    name: str,
    settings: Mapping[str, object],
    default: tuple[EventType, ...] = (EventType.TEXT,),
) -> tuple[EventType, ...]:
    """Read the ``events`` list from plugin *settings*."""
    raw = settings.get("events")
    if raw is None:
        return default
    if not isinstance(raw, list):
        msg = f"[plugins.{name}] events must be a list of message types"
        raise ConfigError(msg)
    try:
        return tuple(EventType(str(v)) for v in raw)
    except ValueError as exc:
        msg = f"[plugins.{name}] {exc}"
        raise ConfigError(msg) from exc


def match_pattern(name: str, settings: Mapping[str, object]) -> re.Pattern[str] | None:
    """Compile the optional ``match`` regex from plugin *settings*."""
    raw = settings.get("match")
    if not raw:
        return None
    try:
        return re.compile(str(raw))
    except re.error as exc:
        msg = f"[plugins.{name}] invalid match pattern {raw!r}: {exc}"
        raise ConfigError(msg) from exc
