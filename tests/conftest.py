"""Shared fixtures: a scripted streaming endpoint behind httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest


class FakeStreamServer:
    """Serves one scripted response per POST, in order.

    Streaming bodies are async generators so reads really suspend; the
    number of bodies that were closed (fully read, aborted or cancelled)
    is tracked in ``closed``.
    """

    def __init__(self) -> None:
        self._script: list[Any] = []
        self.requests: list[httpx.Request] = []
        self.closed = 0
        self.hanging = asyncio.Event()

    # ------------------------------------------------------------------
    # Scripting
    # ------------------------------------------------------------------

    def stream(
        self,
        body: str | bytes,
        chunks: list[bytes] | None = None,
        chunk_size: int | None = None,
        hang: bool = False,
    ) -> FakeStreamServer:
        raw = body.encode("utf-8") if isinstance(body, str) else body
        if chunks is None:
            size = chunk_size or len(raw) or 1
            chunks = [raw[i:i + size] for i in range(0, len(raw), size)]
        self._script.append(("stream", chunks, hang))
        return self

    def respond(self, status: int, **kwargs: Any) -> FakeStreamServer:
        self._script.append(("response", status, kwargs))
        return self

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _body(self, chunks: list[bytes], hang: bool):
        try:
            for chunk in chunks:
                await asyncio.sleep(0)
                yield chunk
            if hang:
                self.hanging.set()
                await asyncio.Event().wait()
        finally:
            self.closed += 1

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._script:
            raise AssertionError("unexpected request")
        kind, *rest = self._script.pop(0)
        if kind == "stream":
            chunks, hang = rest
            return httpx.Response(
                200,
                content=self._body(chunks, hang),
                headers={"content-type": "text/event-stream"},
            )
        status, kwargs = rest
        return httpx.Response(status, **kwargs)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def queries(self) -> list[str]:
        return [json.loads(r.content)["query"] for r in self.requests]


@pytest.fixture
def server() -> FakeStreamServer:
    return FakeStreamServer()


@pytest.fixture
async def client(server: FakeStreamServer):
    async with server.client() as c:
        yield c
