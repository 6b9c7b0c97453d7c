"""Chat session models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping
from uuid import uuid4

from qualiq.utils.timestamps import iso_timestamp

Role = Literal["user", "assistant"]

DEFAULT_SESSION_TITLE = "New conversation"
TITLE_MAX_CHARS = 40


def derive_title(text: str, max_chars: int = TITLE_MAX_CHARS) -> str:
    """Session title taken from the first user message."""
    title = " ".join(text.split())
    if not title:
        return DEFAULT_SESSION_TITLE
    if len(title) > max_chars:
        return title[:max_chars].rstrip() + "..."
    return title


@dataclass
class ChatMessage:
    role: Role
    content: str
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: str = field(default_factory=iso_timestamp)

    def as_turn(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChatMessage":
        role = data.get("role")
        if role not in ("user", "assistant"):
            raise ValueError(f"Invalid chat role: {role!r}")
        return cls(
            role=role,
            content=str(data.get("content", "")),
            id=str(data.get("id") or uuid4().hex),
            timestamp=str(data.get("timestamp") or iso_timestamp()),
        )


@dataclass
class ChatSession:
    id: str = field(default_factory=lambda: uuid4().hex)
    title: str = DEFAULT_SESSION_TITLE
    messages: list[ChatMessage] = field(default_factory=list)
    created_at: str = field(default_factory=iso_timestamp)
    updated_at: str = field(default_factory=iso_timestamp)

    @property
    def has_custom_title(self) -> bool:
        return self.title != DEFAULT_SESSION_TITLE

    def touch(self) -> None:
        self.updated_at = iso_timestamp()

    def append(self, message: ChatMessage) -> ChatMessage:
        self.messages.append(message)
        if (
            message.role == "user"
            and not self.has_custom_title
            and sum(1 for m in self.messages if m.role == "user") == 1
        ):
            self.title = derive_title(message.content)
        self.touch()
        return message

    def turns(self) -> list[dict[str, str]]:
        return [message.as_turn() for message in self.messages]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChatSession":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or DEFAULT_SESSION_TITLE),
            messages=[ChatMessage.from_dict(m) for m in data.get("messages") or []],
            created_at=str(data.get("created_at") or iso_timestamp()),
            updated_at=str(data.get("updated_at") or iso_timestamp()),
        )
