"""Ordered event bus for streaming session lifecycle events.

Every event a session publishes carries its ``session_id``.  Observers
either listen to all sessions or scope a subscription to one session, so a
streamer that replaces its session never hears from the old one.

Delivery is sequential: handlers run one after another in subscription
order, and ``emit()`` returns only once all of them have finished.  Token
events therefore reach each observer in rendering order, and nothing a
session emits overtakes its terminal event.
"""

from __future__ import annotations

import inspect
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

from textstream.types import EventType, StreamEvent

_logger = logging.getLogger(__name__)

ALL_EVENTS = "*"

Handler = Callable[[StreamEvent], Any]


@dataclass(frozen=True)
class Subscription:
    """One registered handler, optionally limited to a single session."""

    event_type: str
    handler: Handler
    session_id: str | None = None

    def matches(self, event: StreamEvent) -> bool:
        if self.event_type not in (ALL_EVENTS, event.type.value):
            return False
        return self.session_id is None or self.session_id == event.data.get("session_id")


class EventBus:
    """Publishes ``StreamEvent``s to subscribed handlers, in order.

    Parameters
    ----------
    max_history:
        Number of most recent events kept for inspection.
    """

    def __init__(self, max_history: int = 200) -> None:
        self._subscriptions: list[Subscription] = []
        self._history: deque[StreamEvent] = deque(maxlen=max_history)

    def subscribe(
        self,
        event_type: EventType | str,
        handler: Handler,
        session_id: str | None = None,
    ) -> Subscription:
        """Register *handler* for *event_type* (``"*"`` for every type).

        With *session_id* the handler only sees that session's events.
        """
        key = event_type.value if isinstance(event_type, EventType) else str(event_type)
        subscription = Subscription(key, handler, session_id)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def drop_session(self, session_id: str) -> None:
        """Remove every subscription scoped to *session_id*."""
        self._subscriptions = [
            s for s in self._subscriptions if s.session_id != session_id
        ]

    async def emit(self, event: StreamEvent) -> None:
        self._history.append(event)
        for subscription in [s for s in self._subscriptions if s.matches(event)]:
            await self._deliver(subscription, event)

    @property
    def history(self) -> list[StreamEvent]:
        return list(self._history)

    def history_for(self, session_id: str) -> list[StreamEvent]:
        return [e for e in self._history if e.data.get("session_id") == session_id]

    def clear(self) -> None:
        self._subscriptions.clear()
        self._history.clear()

    @staticmethod
    async def _deliver(subscription: Subscription, event: StreamEvent) -> None:
        # An observer bug must never break the stream.
        try:
            result = subscription.handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _logger.exception(
                "Handler %s failed on %s",
                getattr(subscription.handler, "__name__", subscription.handler),
                event.type.value,
            )
