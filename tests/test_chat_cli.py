from __future__ import annotations

import io
from pathlib import Path
from unittest.mock import patch

from qualiq.chat.cli import ReplyPrinter, build_parser, main
from qualiq.chat.models import ChatMessage, ChatSession
from qualiq.chat.repository import JsonFileSessionRepository
from qualiq.config import AssistantSettings, Settings, StorageSettings

PROFILE = Path(__file__).resolve().parents[1] / "assistant.yaml"


def _settings(tmp_path) -> Settings:
    return Settings(
        storage=StorageSettings(chat_sessions_path=str(tmp_path / "chat")),
        assistant=AssistantSettings(profile_path=str(PROFILE)),
    )


def test_reply_printer_writes_only_new_text() -> None:
    out = io.StringIO()
    printer = ReplyPrinter(out)
    session = ChatSession()
    reply = ChatMessage(role="assistant", content="Hola")

    printer(session, reply)
    reply.content += ", ¿en qué"
    printer(session, reply)
    printer.reset()
    printer(session, ChatMessage(role="assistant", content="Nuevo"))

    assert out.getvalue() == "Hola, ¿en quéNuevo"


def test_parser_defaults() -> None:
    args = build_parser().parse_args([])
    assert args.url is None
    assert args.list is False


@patch("qualiq.chat.cli.configure_logging")
def test_list_prints_saved_sessions(_mock_log, tmp_path, capsys) -> None:
    settings = _settings(tmp_path)
    session = ChatSession(title="Inspección AEMPS")
    JsonFileSessionRepository(settings.storage.chat_sessions_path).save([session])

    with patch("qualiq.chat.cli.load_settings", return_value=settings):
        assert main(["--list"]) == 0

    out = capsys.readouterr().out
    assert session.id in out
    assert "Inspección AEMPS" in out


@patch("qualiq.chat.cli.configure_logging")
def test_unknown_session_exits_with_error(_mock_log, tmp_path, capsys) -> None:
    with patch("qualiq.chat.cli.load_settings", return_value=_settings(tmp_path)):
        assert main(["--session", "missing"]) == 1
    assert "Unknown session" in capsys.readouterr().err
