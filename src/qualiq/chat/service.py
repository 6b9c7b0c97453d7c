"""Chat sessions driven by the streaming chat client."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Protocol, Sequence

from qualiq.chat.models import ChatMessage, ChatSession
from qualiq.chat.repository import SessionRepository
from qualiq.streaming.consumer import (
    DeltaCallback,
    DoneCallback,
    ErrorCallback,
    StreamOutcome,
    StreamResult,
)

logger = logging.getLogger(__name__)


class ChatStreamer(Protocol):
    async def stream(
        self,
        turns: Sequence[Mapping[str, str]],
        on_delta: DeltaCallback,
        on_done: DoneCallback,
        on_error: ErrorCallback,
        *,
        cancel: asyncio.Event | None = None,
    ) -> StreamResult: ...


class ChatBusyError(RuntimeError):
    """A reply is already streaming into this session."""


class SessionNotFound(KeyError):
    pass


@dataclass
class ChatExchange:
    session: ChatSession
    user_message: ChatMessage
    assistant_message: ChatMessage | None
    outcome: StreamOutcome
    error: str | None = None


class ChatService:
    def __init__(
        self,
        repository: SessionRepository,
        client: ChatStreamer,
        *,
        on_update: Callable[[ChatSession, ChatMessage], None] | None = None,
    ) -> None:
        self._repository = repository
        self._client = client
        self._on_update = on_update
        self._sessions = repository.load()
        self._in_flight: set[str] = set()

    def list_sessions(self) -> list[ChatSession]:
        return sorted(self._sessions, key=lambda s: s.updated_at, reverse=True)

    def get_session(self, session_id: str) -> ChatSession:
        for session in self._sessions:
            if session.id == session_id:
                return session
        raise SessionNotFound(session_id)

    def create_session(self) -> ChatSession:
        session = ChatSession()
        self._sessions.append(session)
        self._persist()
        return session

    def rename_session(self, session_id: str, title: str) -> ChatSession:
        title = title.strip()
        if not title:
            raise ValueError("title must not be empty")
        session = self.get_session(session_id)
        session.title = title
        session.touch()
        self._persist()
        return session

    def delete_session(self, session_id: str) -> None:
        session = self.get_session(session_id)
        if session_id in self._in_flight:
            raise ChatBusyError(f"Session {session_id} is streaming a reply")
        self._sessions.remove(session)
        self._persist()

    def is_streaming(self, session_id: str) -> bool:
        return session_id in self._in_flight

    async def send_message(
        self,
        session_id: str,
        text: str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ChatExchange:
        """Append the user message and stream the assistant reply into the session.

        The assistant message is mutated in place as deltas arrive. It is
        removed again if the stream fails or is cancelled before producing any
        text.
        """
        if not text.strip():
            raise ValueError("message must not be empty")
        session = self.get_session(session_id)
        if session_id in self._in_flight:
            raise ChatBusyError(f"Session {session_id} is streaming a reply")

        self._in_flight.add(session_id)
        try:
            user_message = session.append(ChatMessage(role="user", content=text))
            turns = session.turns()
            self._persist()

            reply = session.append(ChatMessage(role="assistant", content=""))
            errors: list[str] = []

            def on_delta(delta: str) -> None:
                reply.content += delta
                session.touch()
                if self._on_update is not None:
                    self._on_update(session, reply)

            def on_done() -> None:
                logger.debug("Assistant reply complete for session %s", session_id)

            def on_error(message: str) -> None:
                errors.append(message)

            result: StreamResult | None = None
            try:
                result = await self._client.stream(
                    turns, on_delta, on_done, on_error, cancel=cancel
                )
            finally:
                completed = result is not None and result.outcome is StreamOutcome.COMPLETED
                kept: ChatMessage | None = reply
                if not completed and not reply.content:
                    session.messages.remove(reply)
                    kept = None
                session.touch()
                self._persist()
        finally:
            self._in_flight.discard(session_id)

        if errors:
            logger.info("Chat reply failed for session %s: %s", session_id, errors[0])
        return ChatExchange(
            session=session,
            user_message=user_message,
            assistant_message=kept,
            outcome=result.outcome,
            error=errors[0] if errors else None,
        )

    def _persist(self) -> None:
        self._repository.save(self._sessions)
