from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator

import httpx
import pytest

from qualiq.streaming.consumer import StreamOutcome, consume_event_stream, deliver_chat_stream
from qualiq.streaming.errors import (
    CONNECTIVITY_MESSAGE,
    INTERRUPTED_MESSAGE,
    QUOTA_EXCEEDED_MESSAGE,
    RATE_LIMITED_MESSAGE,
    StreamInterrupted,
)


def _event(content: str) -> bytes:
    payload = json.dumps({"choices": [{"delta": {"content": content}}]}, ensure_ascii=False)
    return f"data: {payload}\n\n".encode("utf-8")


DONE = b"data: [DONE]\n\n"


async def _chunks(*parts: bytes, error: Exception | None = None) -> AsyncIterator[bytes]:
    for part in parts:
        yield part
    if error is not None:
        raise error


class Recorder:
    def __init__(self) -> None:
        self.deltas: list[str] = []
        self.done = 0
        self.errors: list[str] = []

    def on_delta(self, delta: str) -> None:
        self.deltas.append(delta)

    def on_done(self) -> None:
        self.done += 1

    def on_error(self, message: str) -> None:
        self.errors.append(message)


async def _deliver(response: httpx.Response, recorder: Recorder, **kwargs) -> object:
    return await deliver_chat_stream(
        response, recorder.on_delta, recorder.on_done, recorder.on_error, **kwargs
    )


@pytest.mark.asyncio
async def test_successful_stream_calls_done_once() -> None:
    recorder = Recorder()
    response = httpx.Response(200, content=_chunks(_event("Buenos "), _event("días"), DONE))

    result = await _deliver(response, recorder)

    assert recorder.deltas == ["Buenos ", "días"]
    assert recorder.done == 1
    assert recorder.errors == []
    assert result.outcome is StreamOutcome.COMPLETED
    assert result.saw_sentinel is True
    assert result.deltas_delivered == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "message"),
    [
        (429, RATE_LIMITED_MESSAGE),
        (402, QUOTA_EXCEEDED_MESSAGE),
        (500, CONNECTIVITY_MESSAGE),
        (404, CONNECTIVITY_MESSAGE),
    ],
)
async def test_error_status_reports_error_without_deltas(status: int, message: str) -> None:
    recorder = Recorder()
    response = httpx.Response(status, content=_event("never shown"))

    result = await _deliver(response, recorder)

    assert recorder.errors == [message]
    assert recorder.deltas == []
    assert recorder.done == 0
    assert result.outcome is StreamOutcome.FAILED
    assert result.error.status_code == status


@pytest.mark.asyncio
async def test_error_copy_can_be_overridden() -> None:
    recorder = Recorder()
    response = httpx.Response(429, json={"error": "busy"})

    await _deliver(response, recorder, messages={"rate_limited": "Demasiadas solicitudes."})

    assert recorder.errors == ["Demasiadas solicitudes."]


@pytest.mark.asyncio
async def test_transport_failure_mid_stream_reports_partial_reply() -> None:
    recorder = Recorder()
    response = httpx.Response(
        200,
        content=_chunks(_event("Primera parte"), error=httpx.ReadError("connection reset")),
    )

    result = await _deliver(response, recorder)

    assert recorder.deltas == ["Primera parte"]
    assert recorder.errors == [INTERRUPTED_MESSAGE]
    assert recorder.done == 0
    assert result.outcome is StreamOutcome.FAILED
    assert isinstance(result.error, StreamInterrupted)
    assert result.error.partial is True


@pytest.mark.asyncio
async def test_cancellation_fires_neither_callback() -> None:
    recorder = Recorder()
    cancel = asyncio.Event()

    def on_delta(delta: str) -> None:
        recorder.on_delta(delta)
        cancel.set()

    response = httpx.Response(200, content=_chunks(_event("uno"), _event("dos"), DONE))
    result = await deliver_chat_stream(
        response, on_delta, recorder.on_done, recorder.on_error, cancel=cancel
    )

    assert recorder.deltas == ["uno"]
    assert recorder.done == 0
    assert recorder.errors == []
    assert result.outcome is StreamOutcome.CANCELLED


@pytest.mark.asyncio
async def test_stream_without_sentinel_completes_after_flush() -> None:
    recorder = Recorder()
    last = b'data: {"choices":[{"delta":{"content":"cola"}}]}'
    response = httpx.Response(200, content=_chunks(_event("cabeza "), last))

    result = await _deliver(response, recorder)

    assert recorder.deltas == ["cabeza ", "cola"]
    assert recorder.done == 1
    assert result.saw_sentinel is False


@pytest.mark.asyncio
async def test_consume_event_stream_propagates_source_errors() -> None:
    deltas: list[str] = []
    with pytest.raises(httpx.ReadError):
        await consume_event_stream(
            _chunks(_event("a"), error=httpx.ReadError("boom")), deltas.append
        )
    assert deltas == ["a"]


@pytest.mark.asyncio
async def test_consume_event_stream_stops_at_sentinel() -> None:
    deltas: list[str] = []
    result = await consume_event_stream(
        _chunks(_event("a"), DONE, _event("ignored")), deltas.append
    )
    assert deltas == ["a"]
    assert result.saw_sentinel is True


@pytest.mark.asyncio
async def test_delta_split_across_chunks_is_delivered_whole() -> None:
    recorder = Recorder()
    response = httpx.Response(
        200,
        content=_chunks(
            b'data: {"choices":[{"delta":{"content":"Hel',
            b'lo"}}]}\n',
            b"data: [DONE]\n",
        ),
    )

    await _deliver(response, recorder)

    assert recorder.deltas == ["Hello"]
    assert recorder.done == 1
    assert recorder.errors == []


@pytest.mark.asyncio
async def test_rate_limited_body_is_never_decoded() -> None:
    recorder = Recorder()
    response = httpx.Response(429, content=_chunks(_event("hidden"), DONE))

    await _deliver(response, recorder)

    assert recorder.deltas == []
    assert recorder.done == 0
    assert recorder.errors == [RATE_LIMITED_MESSAGE]
