"""Error types for the streaming chat transport."""

from __future__ import annotations

RATE_LIMITED_MESSAGE = "Rate limit exceeded. Please try again later."
QUOTA_EXCEEDED_MESSAGE = "Credits are required to keep using the AI assistant."
CONNECTIVITY_MESSAGE = "Could not connect to the AI assistant. Please try again."
INTERRUPTED_MESSAGE = "The AI assistant response was interrupted; the reply is incomplete."


class TransportError(Exception):
    """Terminal failure before (or while) reading the response stream."""

    kind = "TransportError"
    default_message = CONNECTIVITY_MESSAGE

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        self.status_code = status_code
        super().__init__(self.message)


class RateLimited(TransportError):
    kind = "RateLimited"
    default_message = RATE_LIMITED_MESSAGE


class QuotaExceeded(TransportError):
    kind = "QuotaExceeded"
    default_message = QUOTA_EXCEEDED_MESSAGE


class StreamInterrupted(TransportError):
    """The transport failed after the stream had started.

    ``deltas_delivered`` tells the caller how much of the reply it already holds.
    """

    kind = "StreamInterrupted"
    default_message = INTERRUPTED_MESSAGE

    def __init__(self, message: str | None = None, *, deltas_delivered: int = 0) -> None:
        super().__init__(message)
        self.deltas_delivered = deltas_delivered

    @property
    def partial(self) -> bool:
        return self.deltas_delivered > 0


class MalformedEventLine(ValueError):
    """A ``data:`` payload that is not (yet) valid JSON. Never leaves the decoder."""

    def __init__(self, line: str) -> None:
        super().__init__(f"Malformed event payload: {line[:80]!r}")
        self.line = line


def error_for_status(status_code: int, messages: dict[str, str] | None = None) -> TransportError:
    """Map a non-OK HTTP status to the transport error reported to the user."""
    messages = messages or {}
    if status_code == 429:
        return RateLimited(messages.get("rate_limited"), status_code=status_code)
    if status_code == 402:
        return QuotaExceeded(messages.get("quota_exceeded"), status_code=status_code)
    return TransportError(messages.get("generic"), status_code=status_code)
