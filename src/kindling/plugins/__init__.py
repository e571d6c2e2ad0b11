"""Built-in plugin registry.

Plugins are selected by name in ``config.toml``::

    [plugins]
    enabled = ["transcript", "sound"]

    [plugins.sound]
    file = "/usr/share/sounds/freedesktop/stereo/message.oga"

Each entry in :data:`PLUGINS` maps a name to an activator
``activate(session, settings)`` that registers handlers on
``session.dispatcher``.  There is no discovery: a plugin exists only
if it is listed here.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from kindling.errors import ConfigError
from kindling.plugins import notify, sound, transcript

if TYPE_CHECKING:
    from kindling.session import Session

logger = logging.getLogger(__name__)

Activator = Callable[["Session", Mapping[str, object]], None]

PLUGINS: dict[str, Activator] = {
    "transcript": transcript.activate,
    "sound": sound.activate,
    "notify": notify.activate,
}


def activate_plugins(
    session: Session,
    names: tuple[str, ...],
    settings: Mapping[str, Mapping[str, object]],
) -> None:
    """Activate each named plugin against *session*, in order.

    Raises :class:`~kindling.errors.ConfigError` for unknown names or
    invalid plugin settings.
    """
    unknown = [name for name in names if name not in PLUGINS]
    if unknown:
        available = ", ".join(sorted(PLUGINS))
        msg = f"Unknown plugin(s): {', '.join(unknown)} (available: {available})"
        raise ConfigError(msg)
    for name in names:
        PLUGINS[name](session, settings.get(name, {}))
        logger.debug("Activated plugin %s", name)
