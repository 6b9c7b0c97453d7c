"""Training session and exam models."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields
from typing import Any, Mapping

PASSING_SCORE = 80
QUESTIONS_PER_EXAM = 5


class TrainingStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


def _known_fields(cls: type, row: Mapping[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in row.items() if key in names}


def _flag(value: Any) -> bool | None:
    # SQLite hands booleans back as 0/1.
    if value is None:
        return None
    return bool(value)


@dataclass
class TrainingSession:
    id: str
    document_title: str
    status: str = TrainingStatus.PENDING.value
    document_id: str | None = None
    user_id: str | None = None
    company_id: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    score: int | None = None
    passed: bool | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TrainingSession":
        data = _known_fields(cls, row)
        data["passed"] = _flag(data.get("passed"))
        return cls(**data)


@dataclass
class ExamOption:
    id: str
    text: str
    is_correct: bool = False

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "ExamOption":
        return cls(
            id=str(raw["id"]),
            text=str(raw.get("text") or ""),
            is_correct=raw.get("isCorrect") is True,
        )

    def to_json(self) -> dict[str, Any]:
        """Stored shape of an option, as the exam client reads it."""
        return {"id": self.id, "text": self.text, "isCorrect": self.is_correct}


@dataclass
class TrainingQuestion:
    id: str
    session_id: str
    question_number: int
    question_text: str
    options: list[ExamOption] = field(default_factory=list)
    explanation: str | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TrainingQuestion":
        data = _known_fields(cls, row)
        data["options"] = [
            ExamOption.from_json(option)
            for option in data.get("options") or []
            if isinstance(option, Mapping) and "id" in option
        ]
        return cls(**data)

    def option(self, option_id: str) -> ExamOption | None:
        for option in self.options:
            if option.id == option_id:
                return option
        return None


@dataclass
class TrainingAnswer:
    id: str
    session_id: str
    question_id: str
    selected_option_id: str
    is_correct: bool
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TrainingAnswer":
        data = _known_fields(cls, row)
        data["is_correct"] = bool(data.get("is_correct"))
        return cls(**data)


@dataclass
class ExamResult:
    session: TrainingSession
    correct: int
    total: int

    @property
    def score(self) -> int:
        return self.session.score or 0

    @property
    def passed(self) -> bool:
        return bool(self.session.passed)
