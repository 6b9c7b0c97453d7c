"""Chat session repositories."""

from __future__ import annotations

import copy
import json
import logging
import os
import shutil
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Protocol

from qualiq.chat.models import ChatSession

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "qualiq-chat-sessions"


class SessionRepository(Protocol):
    def load(self) -> list[ChatSession]: ...

    def save(self, sessions: list[ChatSession]) -> None: ...


class InMemorySessionRepository:
    def __init__(self, sessions: list[ChatSession] | None = None) -> None:
        self._sessions = copy.deepcopy(sessions or [])
        self.saves = 0

    def load(self) -> list[ChatSession]:
        return copy.deepcopy(self._sessions)

    def save(self, sessions: list[ChatSession]) -> None:
        self._sessions = copy.deepcopy(sessions)
        self.saves += 1


class JsonFileSessionRepository:
    """Stores every session in one JSON document named after the storage key."""

    def __init__(self, directory: str, storage_key: str = DEFAULT_STORAGE_KEY) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._path = self._dir / f"{storage_key}.json"
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backup_path(self) -> Path:
        return self._path.with_suffix(".json.corrupt")

    def load(self) -> list[ChatSession]:
        with self._lock:
            if not self._path.exists():
                return []
            try:
                with self._path.open("r", encoding="utf-8") as handle:
                    data = json.load(handle)
            except (OSError, ValueError) as exc:
                logger.warning("Unreadable chat sessions file %s: %s", self._path, exc)
                self._back_up()
                return []
            if not isinstance(data, list):
                logger.warning("Chat sessions file %s does not hold a list", self._path)
                self._back_up()
                return []

            sessions: list[ChatSession] = []
            for index, item in enumerate(data):
                try:
                    if not isinstance(item, dict):
                        raise TypeError(f"expected an object, got {type(item).__name__}")
                    sessions.append(ChatSession.from_dict(item))
                except (AttributeError, KeyError, ValueError, TypeError) as exc:
                    logger.warning("Skipping unreadable chat session #%d: %s", index, exc)
            if len(sessions) < len(data):
                self._back_up()
            return sessions

    def _back_up(self) -> None:
        try:
            shutil.copyfile(self._path, self.backup_path)
        except OSError as exc:
            logger.error("Could not back up %s: %s", self._path, exc)
            return
        logger.warning("Copied chat sessions file to %s", self.backup_path)

    def save(self, sessions: list[ChatSession]) -> None:
        payload = json.dumps([asdict(s) for s in sessions], ensure_ascii=False, indent=2)
        with self._lock:
            tmp_path = self._path.with_suffix(".json.tmp")
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self._path)
