"""Error taxonomy for the streaming client.

Callers only ever see ``message`` and the optional ``code``:

  ValidationError  - request rejected before any network call
  TransportError   - non-success status, missing body or network failure
  ProtocolError    - one malformed data frame (dropped, never surfaced)
  UpstreamError    - explicit ``event: error`` frame from the service

``StreamCancelled`` is the cancellation outcome.  It is not a
``StreamError`` so that generic failure handling never reports it.
"""

from __future__ import annotations

from typing import Any


class StreamError(Exception):
    """Base streaming error carrying a human-readable message and code."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"message": self.message}
        if self.code:
            data["code"] = self.code
        return data


class ValidationError(StreamError):
    """Request input rejected before it reached the network."""

    def __init__(self, message: str, code: str | None = "INVALID_INPUT") -> None:
        super().__init__(message, code)


class TransportError(StreamError):
    """HTTP-level or network-level failure of one attempt."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        code: str | None = None,
        details: Any = None,
        missing_body: bool = False,
    ) -> None:
        super().__init__(message, code)
        self.status = status
        self.details = details
        self.missing_body = missing_body

    @property
    def retryable(self) -> bool:
        if self.missing_body:
            return True
        return self.status is not None and 500 <= self.status < 600


class ProtocolError(StreamError):
    """A single data frame could not be decoded."""


class UpstreamError(StreamError):
    """The service reported an error inside the stream."""


class StreamCancelled(Exception):
    """Raised at a suspension point once the cancel token has been signalled."""

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or "cancelled")
        self.reason = reason
