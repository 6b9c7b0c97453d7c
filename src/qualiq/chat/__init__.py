"""AI chat assistant sessions."""

from qualiq.chat.client import ChatStreamClient
from qualiq.chat.models import DEFAULT_SESSION_TITLE, ChatMessage, ChatSession, derive_title
from qualiq.chat.repository import (
    InMemorySessionRepository,
    JsonFileSessionRepository,
    SessionRepository,
)
from qualiq.chat.service import ChatBusyError, ChatExchange, ChatService, SessionNotFound

__all__ = [
    "DEFAULT_SESSION_TITLE",
    "ChatBusyError",
    "ChatExchange",
    "ChatMessage",
    "ChatService",
    "ChatSession",
    "ChatStreamClient",
    "InMemorySessionRepository",
    "JsonFileSessionRepository",
    "SessionNotFound",
    "SessionRepository",
    "derive_title",
]
