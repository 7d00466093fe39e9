"""Tests for the ordered, session-scoped EventBus."""

import asyncio

import pytest

from textstream.events.bus import ALL_EVENTS, EventBus
from textstream.types import EventType, StreamEvent


@pytest.fixture
def bus():
    return EventBus()


def token_event(session_id: str, token: str) -> StreamEvent:
    return StreamEvent(
        type=EventType.SESSION_TOKEN, data={"session_id": session_id, "token": token},
    )


class TestSubscribeAndEmit:
    async def test_async_and_sync_handlers(self, bus: EventBus):
        received = []

        async def handler(event: StreamEvent):
            received.append(("async", event.data["token"]))

        bus.subscribe(EventType.SESSION_TOKEN, handler)
        bus.subscribe(EventType.SESSION_TOKEN, lambda e: received.append(("sync", e.data["token"])))
        await bus.emit(token_event("s1", "a"))

        assert received == [("async", "a"), ("sync", "a")]

    async def test_string_event_type(self, bus: EventBus):
        received = []
        bus.subscribe("session.retry", received.append)
        await bus.emit(StreamEvent(type=EventType.SESSION_RETRY))
        assert len(received) == 1

    async def test_no_cross_delivery(self, bus: EventBus):
        received = []
        bus.subscribe(EventType.SESSION_STARTED, received.append)
        await bus.emit(StreamEvent(type=EventType.SESSION_COMPLETED))
        assert received == []

    async def test_all_events(self, bus: EventBus):
        types = []
        bus.subscribe(ALL_EVENTS, lambda e: types.append(e.type))
        await bus.emit(StreamEvent(type=EventType.SESSION_ERROR))
        await bus.emit(StreamEvent(type=EventType.SESSION_STATE))
        assert types == [EventType.SESSION_ERROR, EventType.SESSION_STATE]


class TestOrdering:
    async def test_slow_handler_finishes_before_next_event(self, bus: EventBus):
        log = []

        async def slow(event: StreamEvent):
            log.append(f"begin {event.data['token']}")
            await asyncio.sleep(0.01)
            log.append(f"end {event.data['token']}")

        bus.subscribe(EventType.SESSION_TOKEN, slow)
        bus.subscribe(EventType.SESSION_TOKEN, lambda e: log.append(f"next {e.data['token']}"))
        await bus.emit(token_event("s1", "a"))
        await bus.emit(token_event("s1", "b"))

        assert log == ["begin a", "end a", "next a", "begin b", "end b", "next b"]

    async def test_tokens_arrive_in_emit_order(self, bus: EventBus):
        seen = []
        bus.subscribe(EventType.SESSION_TOKEN, lambda e: seen.append(e.data["token"]))
        for token in "abcde":
            await bus.emit(token_event("s1", token))
        assert seen == list("abcde")


class TestSessionScope:
    async def test_scoped_handler_only_sees_its_session(self, bus: EventBus):
        scoped, unscoped = [], []
        bus.subscribe(EventType.SESSION_TOKEN, lambda e: scoped.append(e.data["token"]), session_id="s1")
        bus.subscribe(EventType.SESSION_TOKEN, lambda e: unscoped.append(e.data["token"]))

        await bus.emit(token_event("s1", "mine"))
        await bus.emit(token_event("s2", "other"))

        assert scoped == ["mine"]
        assert unscoped == ["mine", "other"]

    async def test_drop_session(self, bus: EventBus):
        received = []
        bus.subscribe(ALL_EVENTS, received.append, session_id="old")
        bus.subscribe(ALL_EVENTS, received.append, session_id="new")
        bus.drop_session("old")

        await bus.emit(token_event("old", "x"))
        await bus.emit(token_event("new", "y"))

        assert [e.data["token"] for e in received] == ["y"]

    async def test_history_for_session(self, bus: EventBus):
        await bus.emit(token_event("s1", "a"))
        await bus.emit(token_event("s2", "b"))
        await bus.emit(token_event("s1", "c"))
        assert [e.data["token"] for e in bus.history_for("s1")] == ["a", "c"]


class TestUnsubscribe:
    async def test_unsubscribe(self, bus: EventBus):
        received = []
        subscription = bus.subscribe(EventType.SESSION_COMPLETED, received.append)
        await bus.emit(StreamEvent(type=EventType.SESSION_COMPLETED))
        bus.unsubscribe(subscription)
        await bus.emit(StreamEvent(type=EventType.SESSION_COMPLETED))
        assert len(received) == 1

    async def test_unsubscribe_twice(self, bus: EventBus):
        subscription = bus.subscribe(EventType.SESSION_COMPLETED, print)
        bus.unsubscribe(subscription)
        bus.unsubscribe(subscription)


class TestHistory:
    async def test_history_limit(self):
        bus = EventBus(max_history=5)
        for i in range(10):
            await bus.emit(StreamEvent(type=EventType.SESSION_TOKEN, data={"i": i}))

        assert [e.data["i"] for e in bus.history] == [5, 6, 7, 8, 9]

    async def test_clear(self, bus: EventBus):
        received = []
        bus.subscribe(EventType.SESSION_STARTED, received.append)
        await bus.emit(StreamEvent(type=EventType.SESSION_STARTED))

        bus.clear()
        await bus.emit(StreamEvent(type=EventType.SESSION_STARTED))
        assert len(received) == 1
        assert len(bus.history) == 1


class TestErrorHandling:
    async def test_failing_handler_does_not_stop_the_rest(self, bus: EventBus):
        async def bad_handler(event: StreamEvent):
            raise ValueError("boom")

        received = []
        bus.subscribe(EventType.SESSION_STARTED, bad_handler)
        bus.subscribe(EventType.SESSION_STARTED, received.append)

        await bus.emit(StreamEvent(type=EventType.SESSION_STARTED))
        assert len(received) == 1
