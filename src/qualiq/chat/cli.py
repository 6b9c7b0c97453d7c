"""Terminal chat against the QualiQ ``/chat`` endpoint."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence, TextIO

from qualiq.assistant.loader import load_profile
from qualiq.chat.client import ChatStreamClient
from qualiq.chat.models import ChatMessage, ChatSession
from qualiq.chat.repository import JsonFileSessionRepository
from qualiq.chat.service import ChatService, SessionNotFound
from qualiq.config import load_settings
from qualiq.logging_utils import configure_logging

_QUIT_COMMANDS = frozenset({"/quit", "/exit"})


class ReplyPrinter:
    """Writes only the text appended to the streaming reply since the last call."""

    def __init__(self, out: TextIO | None = None) -> None:
        self._out = out or sys.stdout
        self.written = 0

    def reset(self) -> None:
        self.written = 0

    def __call__(self, session: ChatSession, reply: ChatMessage) -> None:
        self._out.write(reply.content[self.written:])
        self._out.flush()
        self.written = len(reply.content)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qualiq-chat", description="Chat with the QualiQ compliance assistant."
    )
    parser.add_argument("--url", help="Chat endpoint; defaults to the local server's /chat")
    parser.add_argument("--token", help="Bearer token sent with every request")
    parser.add_argument("--session", help="Resume the session with this id")
    parser.add_argument("--list", action="store_true", help="List saved sessions and exit")
    return parser


def _print_sessions(sessions: Sequence[ChatSession]) -> None:
    if not sessions:
        print("No saved conversations.")
        return
    for session in sessions:
        print(f"{session.id}  {session.updated_at}  {session.title}")


async def _repl(service: ChatService, session_id: str, printer: ReplyPrinter) -> int:
    while True:
        try:
            text = await asyncio.to_thread(input, "> ")
        except EOFError:
            print()
            return 0
        text = text.strip()
        if not text:
            continue
        if text in _QUIT_COMMANDS:
            return 0

        printer.reset()
        exchange = await service.send_message(session_id, text)
        if printer.written:
            print()
        if exchange.error:
            print(exchange.error, file=sys.stderr)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    configure_logging(settings, console_level=logging.WARNING)

    repository = JsonFileSessionRepository(settings.storage.chat_sessions_path)
    url = args.url or f"http://{settings.server.host}:{settings.server.port}/chat"
    profile = load_profile(settings.assistant.profile_path)
    client = ChatStreamClient(
        url,
        args.token,
        timeout=settings.gateway.timeout_seconds,
        messages=profile.errors.as_mapping(),
    )
    printer = ReplyPrinter()
    service = ChatService(repository, client, on_update=printer)

    if args.list:
        _print_sessions(service.list_sessions())
        return 0

    if args.session:
        try:
            session = service.get_session(args.session)
        except SessionNotFound:
            print(f"Unknown session: {args.session}", file=sys.stderr)
            return 1
    else:
        session = service.create_session()
    print(f"Session {session.id}: {session.title}")
    if profile.welcome_message and not session.messages:
        print(profile.welcome_message)
    return asyncio.run(_repl(service, session.id, printer))


def run_entrypoint() -> None:
    raise SystemExit(main())
