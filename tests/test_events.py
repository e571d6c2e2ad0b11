"""Tests for the event dispatcher."""

from __future__ import annotations

import logging

import pytest
from conftest import make_event

from kindling.events import Dispatcher
from kindling.models import ChatEvent, EventType


class TestRegistration:
    def test_on_accepts_type_name(self) -> None:
        dispatcher = Dispatcher()
        seen: list[int] = []
        dispatcher.on("TextMessage", lambda e: seen.append(e.id))
        dispatcher.dispatch(make_event(1))
        assert seen == [1]

    def test_on_rejects_unknown_type(self) -> None:
        dispatcher = Dispatcher()
        with pytest.raises(ValueError):
            dispatcher.on("ShoutMessage", lambda e: None)

    def test_decorator_form(self) -> None:
        dispatcher = Dispatcher()

        @dispatcher.on(EventType.PASTE)
        def on_paste(event: ChatEvent) -> None:
            pass

        assert dispatcher.handlers_for(EventType.PASTE) == [on_paste]
        assert dispatcher.handlers_for(EventType.TEXT) == []

    def test_listen_returns_listener(self) -> None:
        dispatcher = Dispatcher()

        def listener(event: ChatEvent) -> None:
            pass

        assert dispatcher.listen(listener) is listener
        assert len(dispatcher) == 1

    def test_handlers_for_includes_listeners_in_order(self) -> None:
        dispatcher = Dispatcher()

        def first(event: ChatEvent) -> None:
            pass

        def second(event: ChatEvent) -> None:
            pass

        def third(event: ChatEvent) -> None:
            pass

        dispatcher.on(EventType.TEXT, first)
        dispatcher.listen(second)
        dispatcher.on(EventType.ENTER, third)
        assert dispatcher.handlers_for(EventType.TEXT) == [first, second]
        assert dispatcher.handlers_for(EventType.ENTER) == [second, third]


class TestDispatch:
    def test_registration_order_across_kinds(self) -> None:
        dispatcher = Dispatcher()
        calls: list[str] = []
        dispatcher.listen(lambda e: calls.append("listener-1"))
        dispatcher.on(EventType.TEXT, lambda e: calls.append("text"))
        dispatcher.listen(lambda e: calls.append("listener-2"))
        dispatcher.dispatch(make_event(1))
        assert calls == ["listener-1", "text", "listener-2"]

    def test_typed_handler_only_sees_its_type(self) -> None:
        dispatcher = Dispatcher()
        seen: list[EventType] = []
        dispatcher.on(EventType.ENTER, lambda e: seen.append(e.type))
        dispatcher.dispatch(make_event(1))
        dispatcher.dispatch(make_event(2, None, event_type=EventType.ENTER))
        assert seen == [EventType.ENTER]

    def test_each_handler_called_once_per_event(self) -> None:
        dispatcher = Dispatcher()
        counts = {"text": 0, "all": 0}

        def count_text(event: ChatEvent) -> None:
            counts["text"] += 1

        def count_all(event: ChatEvent) -> None:
            counts["all"] += 1

        dispatcher.on(EventType.TEXT, count_text)
        dispatcher.listen(count_all)
        dispatcher.dispatch(make_event(1))
        assert counts == {"text": 1, "all": 1}

    def test_no_handlers(self) -> None:
        assert Dispatcher().dispatch(make_event(1)) == ()

    def test_failing_handler_does_not_stop_dispatch(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        dispatcher = Dispatcher()
        after: list[int] = []
        boom = RuntimeError("boom")

        def explode(event: ChatEvent) -> None:
            raise boom

        dispatcher.on(EventType.TEXT, explode)
        dispatcher.listen(lambda e: after.append(e.id))
        with caplog.at_level(logging.ERROR, logger="kindling.events"):
            errors = dispatcher.dispatch(make_event(42))
        assert errors == (boom,)
        assert after == [42]
        assert "explode" in caplog.text
        assert "acme/watercooler" in caplog.text

    def test_handler_registered_during_dispatch_waits(self) -> None:
        dispatcher = Dispatcher()
        late: list[int] = []

        def register_late(event: ChatEvent) -> None:
            dispatcher.listen(lambda e: late.append(e.id))

        dispatcher.on(EventType.TEXT, register_late)
        dispatcher.dispatch(make_event(1))
        assert late == []
        dispatcher.dispatch(make_event(2))
        assert late == [2]
