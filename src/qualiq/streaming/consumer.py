"""Read loop that drives the SSE decoder over an HTTP response body."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import AsyncIterable, Callable, Mapping

import httpx

from qualiq.streaming.errors import StreamInterrupted, TransportError, error_for_status
from qualiq.streaming.sse import SSEDecoder

logger = logging.getLogger(__name__)

DeltaCallback = Callable[[str], None]
DoneCallback = Callable[[], None]
ErrorCallback = Callable[[str], None]


class StreamOutcome(enum.Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class StreamResult:
    outcome: StreamOutcome
    deltas_delivered: int = 0
    saw_sentinel: bool = False
    error: TransportError | None = None


async def consume_event_stream(
    chunks: AsyncIterable[bytes],
    on_delta: DeltaCallback,
    *,
    cancel: asyncio.Event | None = None,
    decoder: SSEDecoder | None = None,
) -> StreamResult:
    """Feed ``chunks`` through the decoder until the sentinel or exhaustion.

    Transport exceptions raised by the chunk source propagate to the caller.
    """
    decoder = decoder or SSEDecoder()
    delivered = 0

    async for chunk in chunks:
        if cancel is not None and cancel.is_set():
            return StreamResult(StreamOutcome.CANCELLED, delivered)
        for delta in decoder.feed(chunk):
            on_delta(delta)
            delivered += 1
        if decoder.finished:
            return StreamResult(StreamOutcome.COMPLETED, delivered, saw_sentinel=True)

    if cancel is not None and cancel.is_set():
        return StreamResult(StreamOutcome.CANCELLED, delivered)
    for delta in decoder.flush():
        on_delta(delta)
        delivered += 1
    return StreamResult(StreamOutcome.COMPLETED, delivered, saw_sentinel=decoder.finished)


async def deliver_chat_stream(
    response: httpx.Response,
    on_delta: DeltaCallback,
    on_done: DoneCallback,
    on_error: ErrorCallback,
    *,
    cancel: asyncio.Event | None = None,
    messages: Mapping[str, str] | None = None,
) -> StreamResult:
    """Deliver a streamed chat completion to the three callbacks.

    Exactly one of ``on_done`` or ``on_error`` is called, unless ``cancel`` is
    set, in which case neither is. ``messages`` overrides the user-facing copy
    keyed by ``rate_limited``, ``quota_exceeded``, ``generic`` and
    ``interrupted``.
    """
    copy = dict(messages or {})

    if not response.is_success:
        error = error_for_status(response.status_code, copy)
        logger.warning("Chat stream rejected with HTTP %s (%s)", response.status_code, error.kind)
        on_error(error.message)
        return StreamResult(StreamOutcome.FAILED, error=error)

    delivered = 0

    def _counting(delta: str) -> None:
        nonlocal delivered
        delivered += 1
        on_delta(delta)

    try:
        result = await consume_event_stream(response.aiter_bytes(), _counting, cancel=cancel)
    except (httpx.HTTPError, OSError) as exc:
        interrupted = StreamInterrupted(copy.get("interrupted"), deltas_delivered=delivered)
        logger.warning(
            "Chat stream interrupted after %d deltas: %s", delivered, exc.__class__.__name__
        )
        on_error(interrupted.message)
        return StreamResult(StreamOutcome.FAILED, delivered, error=interrupted)

    if result.outcome is StreamOutcome.CANCELLED:
        logger.info("Chat stream cancelled after %d deltas", result.deltas_delivered)
        return result

    on_done()
    return result
