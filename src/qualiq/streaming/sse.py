"""Incremental decoder for chat-completion Server-Sent-Events streams.

The decoder is push based: callers ``feed`` raw bytes as they arrive and get
back the content deltas completed by that chunk, in stream order. Multi-byte
UTF-8 sequences split across chunks are held in an incremental codec until
their continuation bytes arrive.

A ``data:`` line whose payload is not valid JSON is kept in a held-back
register instead of being dropped. Following non-blank lines are appended to
it until the joined text parses, so an event broken by a stray newline still
yields its delta. A new ``data:`` line that does not complete the held text
supersedes it.
"""

from __future__ import annotations

import codecs
import enum
import json
import logging

from qualiq.streaming.errors import MalformedEventLine

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

_MAX_HELD_CHARS = 64 * 1024


class LineState(enum.Enum):
    ACCUMULATING_LINE = "accumulating_line"
    HAVE_COMPLETE_LINE = "have_complete_line"


def extract_delta(payload: str) -> str | None:
    """Return ``choices[0].delta.content`` of an event payload, if non-empty.

    Raises ``MalformedEventLine`` when the payload is not valid JSON.
    """
    try:
        event = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedEventLine(payload) from exc

    if not isinstance(event, dict):
        return None
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


class SSEDecoder:
    """Turns an SSE byte stream into ordered chat content deltas."""

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._held: str | None = None
        self._state = LineState.ACCUMULATING_LINE
        self.finished = False

    @property
    def state(self) -> LineState:
        return self._state

    @property
    def held_line(self) -> str | None:
        return self._held

    @property
    def pending_text(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes) -> list[str]:
        """Decode ``chunk`` and return the deltas of every line it completes."""
        if self.finished:
            return []
        self._buffer += self._utf8.decode(chunk)
        deltas: list[str] = []
        self._drain(deltas)
        return deltas

    def flush(self) -> list[str]:
        """Best-effort pass over whatever is left once the source is exhausted.

        Lines that still fail to parse are discarded silently.
        """
        if self.finished:
            return []
        self._buffer += self._utf8.decode(b"", final=True)
        deltas: list[str] = []
        self._drain(deltas)

        remainder, self._buffer = self._buffer, ""
        self._state = LineState.ACCUMULATING_LINE
        if remainder:
            for line in remainder.split("\n"):
                if self.finished:
                    break
                self._process_line(line, deltas, final=True)
        if self._held is not None:
            logger.debug("Discarding unterminated event line at end of stream")
            self._held = None
        return deltas

    def _drain(self, deltas: list[str]) -> None:
        while not self.finished:
            line, newline, rest = self._buffer.partition("\n")
            if not newline:
                self._state = LineState.ACCUMULATING_LINE
                return
            self._state = LineState.HAVE_COMPLETE_LINE
            self._buffer = rest
            self._process_line(line, deltas)
        self._buffer = ""

    def _process_line(self, line: str, deltas: list[str], *, final: bool = False) -> None:
        if line.endswith("\r"):
            line = line[:-1]
        if not line or line.startswith(":"):
            return

        held = self._held
        if held is not None and self._resume_held(held, line, deltas, final=final):
            return

        if not line.startswith(DATA_PREFIX):
            return
        payload = line[len(DATA_PREFIX) :].strip()
        if payload == DONE_SENTINEL:
            self.finished = True
            self._held = None
            return

        try:
            content = extract_delta(payload)
        except MalformedEventLine:
            if final:
                logger.debug("Discarding malformed event line at end of stream")
                return
            self._hold(line)
            return
        if content:
            deltas.append(content)

    def _resume_held(self, held: str, line: str, deltas: list[str], *, final: bool) -> bool:
        """Try to complete ``held`` with ``line``; return True if consumed."""
        joined = held + line
        try:
            content = extract_delta(joined[len(DATA_PREFIX) :].strip())
        except MalformedEventLine:
            if line.startswith(DATA_PREFIX):
                logger.debug("Dropping malformed event line superseded by a new event")
                self._held = None
                return False
            if final:
                self._held = None
            else:
                self._hold(joined)
            return True

        self._held = None
        if content:
            deltas.append(content)
        return True

    def _hold(self, line: str) -> None:
        if len(line) > _MAX_HELD_CHARS:
            logger.warning("Dropping malformed event line of %d characters", len(line))
            self._held = None
            return
        self._held = line
