"""Desktop notification plugin.

Uses ``notify-send`` on Linux and ``osascript`` on macOS.  Settings
(``[plugins.notify]``): ``events`` and ``match``, as for the sound
plugin.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Mapping
from typing import TYPE_CHECKING

from kindling.hooks import matches
from kindling.models import ChatEvent
from kindling.plugins._common import event_types, match_pattern

if TYPE_CHECKING:
    from kindling.session import Session

logger = logging.getLogger(__name__)

_MAX_BODY = 240


def _applescript_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def notification_command(title: str, body: str) -> list[str] | None:
    """Build the platform's notification command, or ``None``."""
    notify_send = shutil.which("notify-send")
    if notify_send:
        return [notify_send, "--app-name=kindling", title, body]
    osascript = shutil.which("osascript")
    if osascript:
        script = (
            f"display notification {_applescript_quote(body)} "
            f"with title {_applescript_quote(title)}"
        )
        return [osascript, "-e", script]
    return None


def activate(session: Session, settings: Mapping[str, object]) -> None:
    """Register desktop notifications for the configured event types."""
    pattern = match_pattern("notify", settings)

    def _notify(event: ChatEvent) -> None:
        if not matches(pattern, event):
            return
        who = event.user_name or "someone"
        title = f"{who} in {event.room}"
        body = (event.body or event.type.value)[:_MAX_BODY]
        command = notification_command(title, body)
        if command is None:
            logger.debug("No notification command available")
            return
        subprocess.run(command, capture_output=True, check=False)  # noqa: S603

    for event_type in event_types("notify", settings):
        session.dispatcher.on(event_type, _notify)
