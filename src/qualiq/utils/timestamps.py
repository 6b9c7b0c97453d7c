"""Timestamps stored on rows and chat sessions."""

from __future__ import annotations

from datetime import datetime, timezone


def iso_timestamp(moment: datetime | None = None) -> str:
    """Format ``moment`` (default: now) as UTC ISO-8601 with a ``Z`` suffix.

    This is the form the web client writes into stored sessions, so both
    sides sort the same way.
    """
    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    utc = moment.astimezone(timezone.utc)
    return utc.isoformat(timespec="microseconds").replace("+00:00", "Z")
