"""Incremental frame parser for blank-line delimited event streams.

The parser only ever sees decoded text; splitting multi-byte characters
across reads is handled by the transport's incremental decoder.

Frame grammar (one frame per blank-line separated segment)::

    data: {"text": "Hello"}

    event: error
    data: {"message": "rate limited"}

    : comment lines and unknown fields are ignored
"""

from __future__ import annotations

import json
import logging

from textstream.types import Frame, FrameKind

_logger = logging.getLogger(__name__)

FRAME_DELIMITER = "\n\n"
DATA_MARKER = "data:"
ERROR_MARKER = "event: error"
MALFORMED_ERROR_MESSAGE = "Malformed stream error"


class FrameParser:
    """Buffer arbitrarily chunked text and cut it into frames.

    One instance per stream attempt; it holds no state beyond its buffer.
    """

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def buffered(self) -> str:
        return self._buffer

    def append(self, text: str) -> list[Frame]:
        """Add *text* and return every frame completed by it."""
        if not text:
            return []
        self._buffer += text
        if "\r" in self._buffer:
            # A lone trailing \r may be the first half of a \r\n pair
            # split across reads; keep it until the next append or flush.
            head, tail = self._buffer, ""
            if head.endswith("\r"):
                head, tail = head[:-1], "\r"
            self._buffer = head.replace("\r\n", "\n") + tail

        frames: list[Frame] = []
        while True:
            idx = self._buffer.find(FRAME_DELIMITER)
            if idx == -1:
                break
            segment = self._buffer[:idx]
            self._buffer = self._buffer[idx + len(FRAME_DELIMITER):]
            frame = parse_frame(segment)
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> list[Frame]:
        """Parse whatever is left once the stream has ended."""
        remainder = self._buffer.replace("\r\n", "\n").rstrip("\r")
        self._buffer = ""
        frames: list[Frame] = []
        for segment in remainder.split(FRAME_DELIMITER):
            frame = parse_frame(segment)
            if frame is not None:
                frames.append(frame)
        return frames


def parse_frame(segment: str) -> Frame | None:
    """Classify one delimited segment.

    Returns ``None`` for comments, unknown fields and data frames whose
    JSON cannot be decoded.
    """
    raw = segment.strip()
    if not raw or raw.startswith(":"):
        return None

    if raw.startswith(ERROR_MARKER):
        payload = _decode_error_payload(raw)
        return Frame(kind=FrameKind.ERROR, raw=raw, payload=payload)

    if raw.startswith(DATA_MARKER):
        body = raw[len(DATA_MARKER):].strip()
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            _logger.warning("Malformed stream chunk ignored: %s (%r)", e, body[:200])
            return None
        return Frame(kind=FrameKind.DATA, raw=raw, payload=payload)

    _logger.debug("Ignoring unrecognised frame: %r", raw[:200])
    return None


def _decode_error_payload(raw: str) -> dict:
    idx = raw.find(DATA_MARKER)
    if idx == -1:
        return {"message": MALFORMED_ERROR_MESSAGE}
    body = raw[idx + len(DATA_MARKER):].strip()
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        _logger.warning("Malformed stream error frame: %r", body[:200])
        return {"message": MALFORMED_ERROR_MESSAGE}
    if not isinstance(payload, dict):
        return {"message": MALFORMED_ERROR_MESSAGE}
    return payload
