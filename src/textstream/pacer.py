"""Tokenization and paced delivery of streamed text.

In ``animated`` mode tokens are drained one per tick by a single timer
task; in ``stream`` mode each chunk is reported as soon as it arrives.
Completion is only reached once input has ended *and* the queue is empty.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from collections import deque
from typing import Any, Callable, Iterable

from textstream.cancellation import CancelToken
from textstream.types import DeliveryMode, TypingMode

_logger = logging.getLogger(__name__)

# Leading whitespace is its own token so nothing is ever dropped.
_WORD_RE = re.compile(r"^\s+|\S+\s*")
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]|\s+|.+$", re.DOTALL)

TokenObserver = Callable[[str], Any]


def tokenize(text: str, mode: TypingMode | str = TypingMode.WORD) -> list[str]:
    """Split *text* into tokens whose concatenation is exactly *text*."""
    mode = TypingMode(mode)
    if not text:
        return []
    if mode is TypingMode.CHAR:
        return list(text)
    if mode is TypingMode.WORD:
        return _WORD_RE.findall(text)
    return _SENTENCE_RE.findall(text)


class TokenPacer:
    """Accumulates the rendered response and reports each token.

    Parameters
    ----------
    delivery:
        ``DeliveryMode.ANIMATED`` or ``DeliveryMode.STREAM``.
    typing:
        Token granularity for animated delivery.
    speed_ms:
        Interval between animated ticks.
    on_token:
        Sync or async observer called with every delivered token.
    """

    def __init__(
        self,
        delivery: DeliveryMode | str = DeliveryMode.ANIMATED,
        typing: TypingMode | str = TypingMode.WORD,
        speed_ms: float = 80,
        on_token: TokenObserver | None = None,
    ) -> None:
        self.delivery = DeliveryMode(delivery)
        self.typing = TypingMode(typing)
        self.speed_ms = speed_ms
        self._on_token = on_token
        self.response = ""
        self._queue: deque[str] = deque()
        self._timer: asyncio.Task | None = None
        self._input_done = False
        self._drained = asyncio.Event()

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def push(self, text: str) -> None:
        """Deliver one chunk's text according to the delivery mode."""
        if not text:
            return
        if self.delivery is DeliveryMode.STREAM:
            await self._deliver(text)
            return
        self.enqueue(tokenize(text, self.typing))

    def enqueue(self, tokens: Iterable[str]) -> None:
        """Queue tokens and make sure the drain timer is running."""
        self._queue.extend(tokens)
        if self._queue and not self.running:
            self._drained.clear()
            self._timer = asyncio.ensure_future(self._drain())

    async def finish(self, token: CancelToken | None = None) -> None:
        """Declare the end of input and wait until every token is rendered."""
        self._input_done = True
        if not self._queue and not self.running:
            self._drained.set()
        if token is None:
            await self._drained.wait()
        else:
            await token.guard(self._drained.wait())

    def clear(self) -> None:
        """Stop the timer and drop anything not yet rendered."""
        self._queue.clear()
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        while self._queue:
            token = self._queue.popleft()
            await self._deliver(token)
            await asyncio.sleep(self.speed_ms / 1000)
        self._timer = None
        if self._input_done:
            self._drained.set()

    async def _deliver(self, token: str) -> None:
        self.response += token
        if self._on_token is None:
            return
        try:
            result = self._on_token(token)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _logger.exception("Token observer raised")
