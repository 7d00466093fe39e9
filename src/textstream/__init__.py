"""textstream: paced, cancellable client for server-pushed text streams."""

from textstream.cancellation import CancelToken
from textstream.config import StreamerConfig, load_config
from textstream.engine import iter_chunks, stream_text_chunks
from textstream.errors import (
    ProtocolError,
    StreamCancelled,
    StreamError,
    TransportError,
    UpstreamError,
    ValidationError,
)
from textstream.events import EventBus
from textstream.pacer import TokenPacer, tokenize
from textstream.parser import FrameParser
from textstream.retry import RetryController, RetryPolicy, is_retryable
from textstream.session import StreamSession, StreamStatus, TextStreamer
from textstream.transport import StreamReader, StreamTransport
from textstream.types import (
    Chunk,
    DeliveryMode,
    EventType,
    Frame,
    FrameKind,
    SessionState,
    StreamEvent,
    TypingMode,
)

__version__ = "0.1.0"

__all__ = [
    "CancelToken",
    "Chunk",
    "DeliveryMode",
    "EventBus",
    "EventType",
    "Frame",
    "FrameKind",
    "FrameParser",
    "ProtocolError",
    "RetryController",
    "RetryPolicy",
    "SessionState",
    "StreamCancelled",
    "StreamError",
    "StreamEvent",
    "StreamReader",
    "StreamSession",
    "StreamStatus",
    "StreamTransport",
    "StreamerConfig",
    "TextStreamer",
    "TokenPacer",
    "TransportError",
    "TypingMode",
    "UpstreamError",
    "ValidationError",
    "is_retryable",
    "iter_chunks",
    "load_config",
    "stream_text_chunks",
    "tokenize",
]
