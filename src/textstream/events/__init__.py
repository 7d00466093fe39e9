"""Event bus for decoupling streaming sessions from their observers."""

from textstream.events.bus import ALL_EVENTS, EventBus, Subscription

__all__ = ["ALL_EVENTS", "EventBus", "Subscription"]
