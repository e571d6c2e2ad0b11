"""Transcript plugin: log every event as a single line.

Lines go to the ``kindling.transcript`` logger, which the daemon writes
to its log file, so ``kindling log tail`` shows live room activity::

    [acme/watercooler] TextMessage kai: lunch?
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from kindling.models import ChatEvent

if TYPE_CHECKING:
    from kindling.session import Session

logger = logging.getLogger("kindling.transcript")

_MAX_BODY = 200


def format_event(event: ChatEvent) -> str:
    """Render *event* as one transcript line."""
    who = event.user_name or (f"#{event.user_id}" if event.user_id else "-")
    body = (event.body or "").replace("\n", " ↵ ")
    if len(body) > _MAX_BODY:
        body = body[: _MAX_BODY - 3] + "..."
    line = f"[{event.account}/{event.room}] {event.type.value} {who}"
    return f"{line}: {body}" if body else line


def activate(session: Session, settings: Mapping[str, object]) -> None:  # noqa: ARG001
    """Register a catch-all listener that logs each event."""

    def _log_event(event: ChatEvent) -> None:
        logger.info("%s", format_event(event))

    session.dispatcher.listen(_log_event)
