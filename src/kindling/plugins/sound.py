"""Sound plugin: play a sound file when matching messages arrive.

Settings (``[plugins.sound]``):

- ``file``: path to the sound file (required).
- ``events``: message types to react to (default ``["TextMessage"]``).
- ``match``: optional regex the message body must contain.
- ``player``: explicit player command; otherwise the first of
  ``afplay``, ``paplay``, ``aplay`` found on ``PATH``.

Playback is started in the background so the poll loop never waits on
audio.  Finished players are reaped on the next playback.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from kindling.errors import ConfigError
from kindling.hooks import matches
from kindling.models import ChatEvent
from kindling.plugins._common import event_types, match_pattern

if TYPE_CHECKING:
    from kindling.session import Session

logger = logging.getLogger(__name__)

PLAYERS = ("afplay", "paplay", "aplay")


def find_player(preferred: str | None = None) -> str | None:
    """Resolve the audio player executable, or ``None``."""
    candidates = (preferred,) if preferred else PLAYERS
    for name in candidates:
        path = shutil.which(name)
        if path:
            return path
    return None


def play(player: str, sound_file: Path) -> subprocess.Popen[bytes]:
    """Start playback without waiting for it to finish."""
    return subprocess.Popen(  # noqa: S603
        [player, str(sound_file)],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )


def reap(players: list[subprocess.Popen[bytes]]) -> list[subprocess.Popen[bytes]]:
    """Collect finished players; returns the ones still running."""
    return [p for p in players if p.poll() is None]


def activate(session: Session, settings: Mapping[str, object]) -> None:
    """Register sound playback for the configured event types."""
    raw_file = settings.get("file")
    if not raw_file:
        raise ConfigError("[plugins.sound] requires 'file'")
    sound_file = Path(str(raw_file)).expanduser()
    pattern = match_pattern("sound", settings)
    preferred = settings.get("player")
    player = find_player(str(preferred) if preferred else None)
    if player is None:
        logger.warning("No audio player found; sound plugin disabled")
        return
    running: list[subprocess.Popen[bytes]] = []

    def _play_sound(event: ChatEvent) -> None:
        if matches(pattern, event):
            running[:] = reap(running)
            running.append(play(player, sound_file))

    for event_type in event_types("sound", settings):
        session.dispatcher.on(event_type, _play_sound)
