"""Cooperative cancellation token shared between a session and its transport."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, TypeVar

from textstream.errors import StreamCancelled

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """Signal-once token observed at every suspension point.

    ``signal()`` is synchronous so that ``cancel()`` on a session can abort
    the transport without awaiting anything.  Async code waits through
    ``guard()``, which races the awaited operation against the signal and
    raises ``StreamCancelled`` if the signal wins.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._callbacks: list[Callable[[], Any]] = []

    # ------------------------------------------------------------------
    # Signalling
    # ------------------------------------------------------------------

    def signal(self, reason: str | None = None) -> None:
        """Mark the token cancelled.  Repeated calls are no-ops."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                _logger.exception("Cancel callback %r raised", callback)

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def add_callback(self, callback: Callable[[], Any]) -> None:
        """Run *callback* on signal, or right away if already signalled."""
        if self._event.is_set():
            callback()
            return
        self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise StreamCancelled(self._reason)

    # ------------------------------------------------------------------
    # Suspension points
    # ------------------------------------------------------------------

    async def wait(self) -> None:
        """Suspend until the token is signalled."""
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the token fires first.

        On cancellation the inner task is cancelled and awaited so that
        its cleanup runs before ``StreamCancelled`` propagates.
        """
        if self._event.is_set():
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise StreamCancelled(self._reason)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise StreamCancelled(self._reason)

    async def sleep(self, seconds: float) -> None:
        """Cancellable ``asyncio.sleep``."""
        await self.guard(asyncio.sleep(seconds))
