"""Streaming session state machine and the caller-facing ``TextStreamer``.

    Idle -> Connecting -> Streaming -> (Retrying -> Connecting)*
         -> Completed | Cancelled | Errored

A ``StreamSession`` is one exchange.  It owns its cancel token, its pacer
(queue + timer) and, through the engine, the reader of the current
attempt.  ``TextStreamer`` keeps at most one active session and exposes
its state as plain attributes plus callbacks and EventBus events.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

import httpx

from textstream.cancellation import CancelToken
from textstream.config import StreamerConfig
from textstream.engine import iter_chunks, stream_text_chunks
from textstream.errors import StreamCancelled, StreamError, ValidationError
from textstream.events.bus import EventBus
from textstream.models import StreamRequest, build_request
from textstream.pacer import TokenPacer
from textstream.retry import RetryController, RetryPolicy
from textstream.transport import StreamTransport
from textstream.types import (
    DeliveryMode,
    EventType,
    SessionState,
    StreamEvent,
    TypingMode,
)

_logger = logging.getLogger(__name__)

_GENERIC_FAILURE = "Streaming failed"


@dataclass
class StreamStatus:
    """Point-in-time view of a session for UI binding."""

    state: SessionState = SessionState.IDLE
    response: str = ""
    loading: bool = False
    error: str | None = None
    error_code: str | None = None
    retry_info: str | None = None
    is_retrying: bool = False
    last_abort_reason: str | None = None
    attempt: int = 0


class StreamSession:
    """One streaming exchange from ``run()`` to a terminal state."""

    def __init__(
        self,
        query: str,
        transport: StreamTransport,
        event_bus: EventBus,
        policy: RetryPolicy | None = None,
        typing_mode: TypingMode | str = TypingMode.WORD,
        mode: DeliveryMode | str = DeliveryMode.ANIMATED,
        speed_ms: float = 80,
        rng: Callable[[], float] | None = None,
    ) -> None:
        self.id = uuid.uuid4().hex[:12]
        self.query = query
        self.state = SessionState.IDLE
        self.token = CancelToken()

        self.error: str | None = None
        self.error_code: str | None = None
        self.retry_info: str | None = None
        self.is_retrying = False
        self.last_abort_reason: str | None = None

        self._transport = transport
        self._bus = event_bus
        self._request: StreamRequest | None = None
        self._started_at = 0.0
        self._pacer = TokenPacer(mode, typing_mode, speed_ms, on_token=self._on_token)
        self._retry = RetryController(
            policy, token=self.token, on_retry=self._on_retry, rng=rng,
        )

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def response(self) -> str:
        return self._pacer.response

    @property
    def loading(self) -> bool:
        return self.state is not SessionState.IDLE and not self.state.is_terminal

    @property
    def attempt(self) -> int:
        return self._retry.attempt

    @property
    def pending_tokens(self) -> int:
        return self._pacer.pending

    def snapshot(self) -> StreamStatus:
        return StreamStatus(
            state=self.state,
            response=self.response,
            loading=self.loading,
            error=self.error,
            error_code=self.error_code,
            retry_info=self.retry_info,
            is_retrying=self.is_retrying,
            last_abort_reason=self.last_abort_reason,
            attempt=self.attempt,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> SessionState:
        """Stream to completion and return the terminal state."""
        if self.state.is_terminal:
            return self.state
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"Session {self.id} is already running")

        self._started_at = time.monotonic()
        try:
            self._request = build_request(self.query)
        except ValidationError as e:
            await self._fail(e)
            return self.state

        await self._emit(EventType.SESSION_STARTED, {"query": self.query})

        try:
            await self._retry.run(self._attempt)
            await self._pacer.finish(self.token)
        except StreamCancelled:
            _logger.debug("Session %s unwound after cancellation", self.id)
        except StreamError as e:
            self._pacer.clear()
            await self._fail(e)
        except asyncio.CancelledError:
            self.cancel("Task cancelled")
            raise
        except Exception:
            _logger.exception("Session %s failed", self.id)
            self._pacer.clear()
            await self._fail(StreamError(_GENERIC_FAILURE, "STREAM_ERROR"))
        else:
            self._retry.reset()
            if await self._transition(SessionState.COMPLETED):
                await self._emit(EventType.SESSION_COMPLETED, {
                    "response": self.response,
                    "elapsed_ms": self._elapsed_ms(),
                }, final=True)
        finally:
            self._pacer.clear()

        return self.state

    def cancel(self, reason: str = "Manually aborted") -> None:
        """Abort the session.  No-op once a terminal state is reached.

        Synchronous: the token is signalled (aborting the transport), the
        pacing timer is stopped and the queue dropped before returning.
        """
        if self.state.is_terminal:
            return
        self.token.signal(reason)
        self._pacer.clear()
        self.state = SessionState.CANCELLED
        self.last_abort_reason = reason
        self.is_retrying = False
        self.retry_info = None
        _logger.info("Session %s cancelled: %s", self.id, reason)

    # ------------------------------------------------------------------
    # Attempt
    # ------------------------------------------------------------------

    async def _attempt(self, attempt: int) -> None:
        await self._transition(SessionState.CONNECTING)
        self.is_retrying = False
        self.retry_info = None
        chunks = iter_chunks(
            self._transport, self._request, self.token, on_open=self._on_open,
        )
        async with contextlib.aclosing(chunks):
            async for chunk in chunks:
                if chunk.text:
                    await self._pacer.push(chunk.text)
                if chunk.done:
                    break

    async def _on_open(self) -> None:
        await self._transition(SessionState.STREAMING)

    async def _on_retry(self, attempt: int, delay_ms: float) -> None:
        await self._transition(SessionState.RETRYING)
        self.is_retrying = True
        self.retry_info = f"Retry {attempt} in {delay_ms:.0f} ms..."
        await self._emit(EventType.SESSION_RETRY, {
            "attempt": attempt,
            "delay_ms": delay_ms,
            "message": self.retry_info,
        })

    async def _on_token(self, token: str) -> None:
        await self._emit(EventType.SESSION_TOKEN, {
            "token": token,
            "elapsed_ms": self._elapsed_ms(),
        })

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fail(self, error: StreamError) -> None:
        if not await self._transition(SessionState.ERRORED):
            return
        self.error = error.message
        self.error_code = error.code
        self.is_retrying = False
        self.retry_info = None
        _logger.info("Session %s errored: %s", self.id, error.message)
        await self._emit(EventType.SESSION_ERROR, error.to_dict(), final=True)

    async def _transition(self, new_state: SessionState) -> bool:
        if self.state.is_terminal:
            return False
        old_state, self.state = self.state, new_state
        _logger.debug("Session %s: %s -> %s", self.id, old_state.value, new_state.value)
        await self._emit(EventType.SESSION_STATE, {
            "from": old_state.value,
            "to": new_state.value,
        }, final=new_state.is_terminal)
        return True

    async def _emit(
        self, event_type: EventType, data: dict[str, Any], final: bool = False,
    ) -> None:
        # Nothing is reported once the caller has cancelled, and only the
        # closing events are reported once a terminal state is reached.
        if self.token.cancelled:
            return
        if self.state.is_terminal and not final:
            return
        await self._bus.emit(StreamEvent(
            type=event_type, data={"session_id": self.id, **data},
        ))

    def _elapsed_ms(self) -> float:
        return (time.monotonic() - self._started_at) * 1000


class TextStreamer:
    """Caller-facing streaming client with at most one active session.

    Parameters
    ----------
    endpoint:
        Streaming endpoint that accepts ``POST {"query": ...}``.
    typing_mode:
        ``"char"``, ``"word"`` or ``"sentence"`` token granularity.
    mode:
        ``"animated"`` paces tokens every *speed* ms; ``"stream"`` reports
        chunks as they arrive.
    speed:
        Animated tick interval in milliseconds.
    retry_policy:
        Backoff parameters; defaults to ``RetryPolicy()``.
    on_start, on_token, on_retry, on_error, on_complete:
        Optional lifecycle callbacks (sync or async).
    event_bus:
        Shared bus; a private one is created when omitted.
    client:
        Optional ``httpx.AsyncClient`` to borrow.
    """

    def __init__(
        self,
        endpoint: str,
        typing_mode: TypingMode | str = TypingMode.WORD,
        mode: DeliveryMode | str = DeliveryMode.ANIMATED,
        speed: float = 80,
        retry_policy: RetryPolicy | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 120.0,
        on_start: Callable[[], Any] | None = None,
        on_token: Callable[[str], Any] | None = None,
        on_retry: Callable[[int, float], Any] | None = None,
        on_error: Callable[[str], Any] | None = None,
        on_complete: Callable[[], Any] | None = None,
        event_bus: EventBus | None = None,
        client: httpx.AsyncClient | None = None,
        rng: Callable[[], float] | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.typing_mode = TypingMode(typing_mode)
        self.mode = DeliveryMode(mode)
        self.speed = speed
        self.retry_policy = retry_policy or RetryPolicy()
        self.event_bus = event_bus or EventBus()
        self.session: StreamSession | None = None

        self._headers = headers
        self._timeout = timeout
        self._client = client
        self._rng = rng
        self._transport = StreamTransport(
            endpoint, client=client, headers=headers, timeout=timeout,
        )
        self._callbacks = {
            EventType.SESSION_STARTED: (on_start, lambda d: ()),
            EventType.SESSION_TOKEN: (on_token, lambda d: (d["token"],)),
            EventType.SESSION_RETRY: (on_retry, lambda d: (d["attempt"], d["delay_ms"])),
            EventType.SESSION_ERROR: (on_error, lambda d: (d["message"],)),
            EventType.SESSION_COMPLETED: (on_complete, lambda d: ()),
        }

    @classmethod
    def from_config(cls, config: StreamerConfig, **kwargs: Any) -> TextStreamer:
        return cls(
            config.endpoint,
            typing_mode=config.typing_mode,
            mode=config.mode,
            speed=config.speed_ms,
            retry_policy=config.retry,
            headers=config.headers,
            timeout=config.timeout,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def start(self, query: str) -> SessionState:
        """Cancel any active session, then stream *query* to a terminal state."""
        if self.session is not None:
            self.session.cancel("Superseded by a new request")
            self.event_bus.drop_session(self.session.id)

        self.session = StreamSession(
            query,
            self._transport,
            self.event_bus,
            policy=self.retry_policy,
            typing_mode=self.typing_mode,
            mode=self.mode,
            speed_ms=self.speed,
            rng=self._rng,
        )
        self._bind(self.session)
        return await self.session.run()

    def cancel(self) -> None:
        if self.session is not None:
            self.session.cancel()

    async def destroy(self) -> None:
        """Cancel, forget error and retry info, and close the owned client."""
        self.cancel()
        if self.session is not None:
            self.event_bus.drop_session(self.session.id)
            self.session.error = None
            self.session.error_code = None
            self.session.retry_info = None
        await self._transport.aclose()

    aclose = destroy

    def iter_text(self, query: str, token: CancelToken | None = None) -> AsyncIterator[str]:
        """Lazy, single-pass sequence of text increments (no pacing or retry)."""
        return stream_text_chunks(
            self.endpoint,
            query,
            token=token,
            client=self._client,
            headers=self._headers,
            timeout=self._timeout,
        )

    # ------------------------------------------------------------------
    # Observable fields
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.session.state if self.session else SessionState.IDLE

    @property
    def response(self) -> str:
        return self.session.response if self.session else ""

    @property
    def loading(self) -> bool:
        return self.session.loading if self.session else False

    @property
    def error(self) -> str | None:
        return self.session.error if self.session else None

    @property
    def error_code(self) -> str | None:
        return self.session.error_code if self.session else None

    @property
    def retry_info(self) -> str | None:
        return self.session.retry_info if self.session else None

    @property
    def is_retrying(self) -> bool:
        return self.session.is_retrying if self.session else False

    @property
    def last_abort_reason(self) -> str | None:
        return self.session.last_abort_reason if self.session else None

    @property
    def attempt(self) -> int:
        return self.session.attempt if self.session else 0

    def snapshot(self) -> StreamStatus:
        return self.session.snapshot() if self.session else StreamStatus()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _bind(self, session: StreamSession) -> None:
        for event_type, (callback, make_args) in self._callbacks.items():
            if callback is not None:
                self.event_bus.subscribe(
                    event_type, _callback_handler(callback, make_args), session_id=session.id,
                )


def _callback_handler(
    callback: Callable[..., Any], make_args: Callable[[dict[str, Any]], tuple],
) -> Callable[[StreamEvent], Any]:
    """Adapt a positional lifecycle callback to an EventBus handler."""
    def handler(event: StreamEvent) -> Any:
        return callback(*make_args(event.data))
    return handler
