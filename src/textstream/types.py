"""Shared data types for textstream."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any

from textstream.errors import ProtocolError


# ---------------------------------------------------------------------------
# Wire types
# ---------------------------------------------------------------------------

class FrameKind(enum.Enum):
    """Classification of one blank-line delimited protocol unit."""

    DATA = "data"
    ERROR = "error"
    COMMENT = "comment"


@dataclass
class Frame:
    """One parsed frame of the streaming body."""

    kind: FrameKind
    raw: str
    payload: Any = None


@dataclass
class Chunk:
    """Decoded payload of a ``data`` frame."""

    text: str | None = None
    done: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> Chunk:
        """Build a chunk from decoded JSON, raising ``ProtocolError`` on bad shape."""
        if not isinstance(payload, dict):
            raise ProtocolError(
                f"data frame payload must be an object, got {type(payload).__name__}",
            )
        text = payload.get("text")
        if text is not None and not isinstance(text, str):
            raise ProtocolError("data frame 'text' must be a string")
        metadata = payload.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}
        return cls(text=text, done=bool(payload.get("done")), metadata=metadata)


@dataclass
class ChunkError:
    """Decoded payload of an ``error`` frame."""

    message: str
    code: str | None = None


@dataclass
class ReadResult:
    """One pull from a ``StreamReader``."""

    text: str = ""
    done: bool = False


# ---------------------------------------------------------------------------
# Rendering modes
# ---------------------------------------------------------------------------

class TypingMode(enum.Enum):
    """Token granularity used by the pacer."""

    CHAR = "char"
    WORD = "word"
    SENTENCE = "sentence"


class DeliveryMode(enum.Enum):
    """``animated`` drains tokens on a timer; ``stream`` reports chunks as-is."""

    ANIMATED = "animated"
    STREAM = "stream"


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------

class SessionState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RETRYING = "retrying"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({
    SessionState.COMPLETED,
    SessionState.CANCELLED,
    SessionState.ERRORED,
})


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Events published by a streaming session."""

    SESSION_STARTED = "session.started"
    SESSION_TOKEN = "session.token"
    SESSION_RETRY = "session.retry"
    SESSION_ERROR = "session.error"
    SESSION_COMPLETED = "session.completed"
    SESSION_STATE = "session.state"


@dataclass
class StreamEvent:
    """Event emitted by a session via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
