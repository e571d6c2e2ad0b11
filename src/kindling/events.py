"""Event dispatch.

The :class:`Dispatcher` keeps one ordered list of subscriptions.  A
subscription is either typed (``on(EventType.TEXT, fn)``) or a
catch-all listener (``listen(fn)``).  :meth:`Dispatcher.dispatch`
walks the list once, in registration order, on the calling thread.

A handler that raises does not stop dispatch: the exception is logged
with its traceback and returned to the caller alongside any others.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from kindling.models import ChatEvent, EventType

logger = logging.getLogger(__name__)

Handler = Callable[[ChatEvent], object]


@dataclass(frozen=True)
class _Subscription:
    handler: Handler
    event_type: EventType | None = None

    def matches(self, event: ChatEvent) -> bool:
        return self.event_type is None or self.event_type is event.type


class Dispatcher:
    """Publish/subscribe hub for :class:`~kindling.models.ChatEvent`."""

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []

    def on(
        self, event_type: EventType | str, handler: Handler | None = None
    ) -> Callable[[Handler], Handler] | Handler:
        """Register *handler* for one event type.

        Usable directly (``dispatcher.on(EventType.TEXT, fn)``) or as a
        decorator (``@dispatcher.on("TextMessage")``).
        """
        resolved = EventType(event_type)

        def register(fn: Handler) -> Handler:
            self._subscriptions.append(_Subscription(fn, resolved))
            return fn

        if handler is None:
            return register
        return register(handler)

    def listen(self, listener: Handler) -> Handler:
        """Register a catch-all *listener* that receives every event."""
        self._subscriptions.append(_Subscription(listener))
        return listener

    def handlers_for(self, event_type: EventType) -> list[Handler]:
        """Handlers that would run for *event_type*, in dispatch order."""
        return [
            s.handler
            for s in self._subscriptions
            if s.event_type is None or s.event_type is event_type
        ]

    def dispatch(self, event: ChatEvent) -> tuple[Exception, ...]:
        """Deliver *event* to every matching subscription.

        Returns the exceptions raised by handlers, in the order they
        occurred.  An empty tuple means every handler succeeded.
        """
        errors: list[Exception] = []
        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            try:
                subscription.handler(event)
            except Exception as exc:  # noqa: BLE001
                logger.exception(
                    "Handler %s failed on %s in %s/%s",
                    _handler_name(subscription.handler),
                    event.type.value,
                    event.account,
                    event.room,
                )
                errors.append(exc)
        return tuple(errors)

    def __len__(self) -> int:
        return len(self._subscriptions)


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)
