"""Command hooks declared in ``[[handlers]]`` config entries.

Each hook runs an external command when a matching event arrives::

    [[handlers]]
    event = "TextMessage"
    match = "(?i)build failed"
    run = "notify-send 'Build broke' '{user}: {body}'"

The command template is split with :mod:`shlex` *before* placeholders
are substituted, so message bodies never reach a shell and cannot
inject arguments.  Available placeholders: ``{type}``, ``{room}``,
``{account}``, ``{user}``, ``{body}``, ``{id}``.  Write ``{{`` and ``}}`` for
literal braces; unknown placeholders are rejected when the config loads.
"""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
from typing import TYPE_CHECKING

from kindling.models import ChatEvent, EventType, HookConfig

if TYPE_CHECKING:
    from kindling.events import Dispatcher

logger = logging.getLogger(__name__)

_HOOK_TIMEOUT = 30.0


def event_fields(event: ChatEvent) -> dict[str, str]:
    """Placeholder values for a command template."""
    return {
        "type": event.type.value,
        "room": event.room,
        "account": event.account,
        "user": event.user_name or (str(event.user_id) if event.user_id else ""),
        "body": event.body or "",
        "id": str(event.id),
    }


def matches(pattern: re.Pattern[str] | None, event: ChatEvent) -> bool:
    """True when *pattern* is unset or found in the event body."""
    if pattern is None:
        return True
    return pattern.search(event.body or "") is not None


class CommandHook:
    """Runs one configured command for matching events."""

    def __init__(self, config: HookConfig, *, timeout: float = _HOOK_TIMEOUT) -> None:
        self.config = config
        self._argv = shlex.split(config.run)
        self._pattern = re.compile(config.match) if config.match else None
        self._timeout = timeout

    @property
    def event_type(self) -> EventType | None:
        if self.config.event == "*":
            return None
        return EventType(self.config.event)

    def build_command(self, event: ChatEvent) -> list[str]:
        """Substitute event fields into each argument of the template."""
        fields = event_fields(event)
        return [arg.format_map(fields) for arg in self._argv]

    def __call__(self, event: ChatEvent) -> None:
        if not matches(self._pattern, event):
            return
        argv = self.build_command(event)
        logger.debug("Running hook %s", argv)
        result = subprocess.run(  # noqa: S603
            argv,
            capture_output=True,
            text=True,
            check=False,
            timeout=self._timeout,
        )
        if result.returncode != 0:
            logger.warning(
                "Hook %r exited %d: %s",
                self.config.run,
                result.returncode,
                result.stderr.strip()[:200],
            )

    def __repr__(self) -> str:
        return f"CommandHook({self.config.run!r})"


def register_hooks(dispatcher: Dispatcher, hooks: tuple[HookConfig, ...]) -> None:
    """Register a :class:`CommandHook` per config entry, in file order."""
    for config in hooks:
        hook = CommandHook(config)
        if hook.event_type is None:
            dispatcher.listen(hook)
        else:
            dispatcher.on(hook.event_type, hook)
