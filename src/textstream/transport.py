"""HTTP transport: one streaming POST per attempt, pulled chunk by chunk.

Uses ``httpx.AsyncClient.send(..., stream=True)`` so the body is consumed
incrementally.  Every await goes through the session's ``CancelToken`` so
a cancel resolves an in-flight connect or read immediately and the
response is closed, letting the upstream stop generating.
"""

from __future__ import annotations

import codecs
import logging
from typing import AsyncIterator

import httpx

from textstream.cancellation import CancelToken
from textstream.errors import TransportError
from textstream.models import StreamRequest, parse_error_envelope
from textstream.types import ReadResult

_logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 120.0
_EMPTY_BODY_STATUSES = (204, 205)


class StreamReader:
    """Pull-based reader over one open streaming response.

    Owns the response and a per-reader incremental UTF-8 decoder, so a
    multi-byte character split across two network reads is decoded once
    both halves have arrived.
    """

    def __init__(self, response: httpx.Response, token: CancelToken) -> None:
        self._response = response
        self._token = token
        self._chunks: AsyncIterator[bytes] = response.aiter_bytes()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._done = False
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self) -> ReadResult:
        """Return the next decoded text increment.

        Raises ``StreamCancelled`` if the token fires while waiting and
        ``TransportError`` if the connection fails mid-stream.
        """
        if self._done:
            return ReadResult(done=True)

        while True:
            try:
                data = await self._token.guard(self._next_bytes())
            except httpx.HTTPError as e:
                self._done = True
                await self.aclose()
                raise TransportError(f"Stream interrupted: {e}") from e

            if data is None:
                self._done = True
                tail = self._decoder.decode(b"", final=True)
                return ReadResult(text=tail, done=True)

            text = self._decoder.decode(data)
            if text:
                return ReadResult(text=text)

    async def _next_bytes(self) -> bytes | None:
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            return None

    async def aclose(self) -> None:
        """Release the connection.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()


class StreamTransport:
    """Opens streaming POST requests against one endpoint.

    Parameters
    ----------
    url:
        Streaming endpoint (absolute, or relative to *client*'s base URL).
    client:
        Optional shared ``httpx.AsyncClient``.  A client created here is
        owned and closed by ``aclose()``; a supplied one is left open.
    headers:
        Extra request headers.
    timeout:
        Overall timeout in seconds for an owned client.
    """

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self.url = url
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=30, read=60),
        )

    async def open(self, request: StreamRequest, token: CancelToken) -> StreamReader:
        """Send *request* and return a reader over the streaming body."""
        http_request = self._client.build_request(
            "POST", self.url, json=request.model_dump(), headers=self._headers,
        )
        _logger.debug("POST %s", self.url)
        try:
            response = await token.guard(self._client.send(http_request, stream=True))
        except httpx.HTTPError as e:
            raise TransportError(f"Request failed: {e}") from e

        try:
            await self._check_response(response, token)
        except BaseException:
            await response.aclose()
            raise
        return StreamReader(response, token)

    async def _check_response(self, response: httpx.Response, token: CancelToken) -> None:
        if not response.is_success:
            body = await self._read_body(response, token)
            raise _error_from_body(body, response.status_code)

        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            body = await self._read_body(response, token)
            envelope = parse_error_envelope(body)
            if envelope is not None:
                raise _error_from_body(body, response.status_code)
            raise TransportError(
                "Expected a streaming response, got JSON",
                status=response.status_code,
            )

        if (
            response.status_code in _EMPTY_BODY_STATUSES
            or response.headers.get("content-length") == "0"
        ):
            raise TransportError("No response body", missing_body=True)

    @staticmethod
    async def _read_body(response: httpx.Response, token: CancelToken) -> bytes:
        try:
            return await token.guard(response.aread())
        except httpx.HTTPError as e:
            _logger.debug("Could not read error body: %s", e)
            return b""

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _error_from_body(body: bytes, status: int) -> TransportError:
    """Map a non-streaming response to a ``TransportError``."""
    envelope = parse_error_envelope(body) if body else None
    if envelope is None:
        return TransportError(f"HTTP {status}", status=status)
    detail = envelope.error
    return TransportError(
        detail.message, status=status, code=detail.code, details=detail.details,
    )
