"""Data models for the audit/CAPA chain."""

from __future__ import annotations

import enum
from dataclasses import dataclass, fields
from pathlib import PurePath
from typing import Any, Mapping, TypeVar

_T = TypeVar("_T")


class ActionType(str, enum.Enum):
    CORRECTIVE = "corrective"
    PREVENTIVE = "preventive"


class ActionStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"
    OVERDUE = "overdue"


class NoticeLevel(str, enum.Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


def _from_row(cls: type[_T], row: Mapping[str, Any]) -> _T:
    names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    return cls(**{key: value for key, value in row.items() if key in names})


@dataclass
class Audit:
    id: str
    title: str
    description: str | None = None
    audit_date: str | None = None
    auditor_id: str | None = None
    status: str = "planned"
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Audit":
        return _from_row(cls, row)


@dataclass
class CapaPlan:
    id: str
    audit_id: str
    description: str | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CapaPlan":
        return _from_row(cls, row)


@dataclass
class NonConformity:
    id: str
    capa_plan_id: str
    title: str
    description: str | None = None
    severity: str | None = None
    root_cause: str | None = None
    status: str = "open"
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "NonConformity":
        return _from_row(cls, row)


@dataclass
class Action:
    id: str
    non_conformity_id: str
    action_type: ActionType
    description: str
    responsible_id: str | None = None
    due_date: str | None = None
    status: ActionStatus = ActionStatus.OPEN
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Action":
        action = _from_row(cls, row)
        action.action_type = ActionType(action.action_type)
        action.status = ActionStatus(action.status)
        return action


@dataclass
class ActionAttachment:
    id: str
    action_id: str
    bucket_id: str
    object_path: str
    file_name: str | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ActionAttachment":
        return _from_row(cls, row)


@dataclass(frozen=True)
class AttachmentUpload:
    """A file supplied with a new action."""

    filename: str
    content: bytes

    @property
    def extension(self) -> str:
        suffix = PurePath(self.filename).suffix
        return suffix[1:] if suffix else ""


@dataclass(frozen=True)
class Notice:
    """User-facing notification for the outcome of a mutation."""

    level: NoticeLevel
    title: str
    message: str

