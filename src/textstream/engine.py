"""Single-attempt streaming core shared by the session and the lazy API.

``iter_chunks`` wires transport -> parser -> chunks once; ``TextStreamer``
drives it through the retry controller and pacer, while
``stream_text_chunks`` exposes it directly as a lazy text sequence.
"""

from __future__ import annotations

import contextlib
import inspect
import logging
from typing import Any, AsyncIterator, Callable

import httpx

from textstream.cancellation import CancelToken
from textstream.errors import ProtocolError, UpstreamError
from textstream.models import StreamRequest, build_request
from textstream.parser import MALFORMED_ERROR_MESSAGE, FrameParser
from textstream.transport import StreamTransport
from textstream.types import Chunk, ChunkError, Frame, FrameKind

_logger = logging.getLogger(__name__)


def chunk_error(frame: Frame) -> ChunkError:
    """Decode an error frame payload into a message and optional code."""
    payload = frame.payload if isinstance(frame.payload, dict) else {}
    message = payload.get("message")
    if not isinstance(message, str) or not message:
        message = MALFORMED_ERROR_MESSAGE
    code = payload.get("code")
    return ChunkError(message=message, code=str(code) if code is not None else None)


async def iter_chunks(
    transport: StreamTransport,
    request: StreamRequest,
    token: CancelToken,
    on_open: Callable[[], Any] | None = None,
) -> AsyncIterator[Chunk]:
    """Yield decoded chunks from one streaming attempt.

    Raises ``UpstreamError`` on an error frame, ``TransportError`` on
    HTTP or network failure and ``StreamCancelled`` when *token* fires.
    Stops after a ``done`` chunk.  The reader is closed on every exit.
    """
    reader = await transport.open(request, token)
    parser = FrameParser()
    try:
        if on_open is not None:
            opened = on_open()
            if inspect.isawaitable(opened):
                await opened
        while True:
            result = await reader.read()
            frames = parser.append(result.text)
            if result.done:
                frames.extend(parser.flush())
            for frame in frames:
                chunk = _decode(frame)
                if chunk is None:
                    continue
                yield chunk
                if chunk.done:
                    return
            if result.done:
                _logger.debug("Stream ended without a done chunk")
                return
    finally:
        await reader.aclose()


def _decode(frame: Frame) -> Chunk | None:
    if frame.kind is FrameKind.ERROR:
        err = chunk_error(frame)
        raise UpstreamError(err.message, err.code)
    if frame.kind is not FrameKind.DATA:
        return None
    try:
        return Chunk.from_payload(frame.payload)
    except ProtocolError as e:
        _logger.warning("Dropping malformed chunk: %s", e.message)
        return None


async def stream_text_chunks(
    url: str,
    query: str,
    *,
    token: CancelToken | None = None,
    client: httpx.AsyncClient | None = None,
    headers: dict[str, str] | None = None,
    timeout: float = 120.0,
) -> AsyncIterator[str]:
    """Lazily yield the text of each chunk streamed from *url*.

    Single pass, no retries and no pacing.  Ends when the stream ends or a
    ``done`` chunk arrives; an error frame raises ``UpstreamError``.
    """
    request = build_request(query)
    token = token or CancelToken()
    transport = StreamTransport(url, client=client, headers=headers, timeout=timeout)
    try:
        async with contextlib.aclosing(iter_chunks(transport, request, token)) as chunks:
            async for chunk in chunks:
                if chunk.text:
                    yield chunk.text
    finally:
        await transport.aclose()
