"""Streaming chat-completion decoding."""

from qualiq.streaming.consumer import (
    StreamOutcome,
    StreamResult,
    consume_event_stream,
    deliver_chat_stream,
)
from qualiq.streaming.errors import (
    QuotaExceeded,
    RateLimited,
    StreamInterrupted,
    TransportError,
)
from qualiq.streaming.sse import SSEDecoder

__all__ = [
    "QuotaExceeded",
    "RateLimited",
    "SSEDecoder",
    "StreamInterrupted",
    "StreamOutcome",
    "StreamResult",
    "TransportError",
    "consume_event_stream",
    "deliver_chat_stream",
]
