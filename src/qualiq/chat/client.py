"""HTTP client for the streaming chat endpoint."""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping, Sequence

import httpx

from qualiq.streaming.consumer import (
    DeltaCallback,
    DoneCallback,
    ErrorCallback,
    StreamOutcome,
    StreamResult,
    deliver_chat_stream,
)
from qualiq.streaming.errors import TransportError

logger = logging.getLogger(__name__)


class ChatStreamClient:
    """POSTs a conversation and streams the assistant reply to callbacks."""

    def __init__(
        self,
        endpoint_url: str,
        token: str | None = None,
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        messages: Mapping[str, str] | None = None,
    ) -> None:
        self._endpoint_url = endpoint_url
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._messages = dict(messages or {})

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def stream(
        self,
        turns: Sequence[Mapping[str, str]],
        on_delta: DeltaCallback,
        on_done: DoneCallback,
        on_error: ErrorCallback,
        *,
        cancel: asyncio.Event | None = None,
    ) -> StreamResult:
        body = {"messages": [dict(turn) for turn in turns]}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                async with client.stream(
                    "POST", self._endpoint_url, json=body, headers=self._headers()
                ) as response:
                    return await deliver_chat_stream(
                        response,
                        on_delta,
                        on_done,
                        on_error,
                        cancel=cancel,
                        messages=self._messages,
                    )
            except httpx.HTTPError as exc:
                # Only reachable before the body is read; mid-stream failures
                # are handled inside deliver_chat_stream.
                error = TransportError(self._messages.get("generic"))
                logger.warning("Chat endpoint unreachable: %s", exc)
                on_error(error.message)
                return StreamResult(StreamOutcome.FAILED, error=error)
