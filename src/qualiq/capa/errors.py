"""Workflow error kinds for the audit/CAPA chain."""

from __future__ import annotations

from qualiq.persistence.base import StoreError


class WorkflowError(Exception):
    """Base class; ``kind`` is the stable identifier reported to callers."""

    kind = "WorkflowError"

    def __init__(self, message: str, *, cause: StoreError | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> dict[str, str | None]:
        return {
            "kind": self.kind,
            "message": self.message,
            "cause": self.cause.message if self.cause else None,
        }


class EntityCreationFailed(WorkflowError):
    """The requested entity itself could not be created; nothing was written."""

    kind = "EntityCreationFailed"

    def __init__(self, entity: str, message: str, *, cause: StoreError | None = None) -> None:
        super().__init__(message, cause=cause)
        self.entity = entity


class EntityUpdateFailed(WorkflowError):
    kind = "EntityUpdateFailed"


class MandatoryChildCreationFailed(WorkflowError):
    """The parent was persisted but its mandatory child is missing."""

    kind = "MandatoryChildCreationFailed"

    def __init__(self, parent_id: str, message: str, *, cause: StoreError | None = None) -> None:
        super().__init__(message, cause=cause)
        self.parent_id = parent_id


class CapaPlanCreationFailed(MandatoryChildCreationFailed):
    kind = "CapaPlanCreationFailed"


class CorrectiveActionCreationFailed(MandatoryChildCreationFailed):
    kind = "CorrectiveActionCreationFailed"


class AttachmentUploadFailed(WorkflowError):
    """The action exists but its attachment was not stored."""

    kind = "AttachmentUploadFailed"

    def __init__(self, action_id: str, message: str, *, cause: StoreError | None = None) -> None:
        super().__init__(message, cause=cause)
        self.action_id = action_id


class EntityNotFound(EntityUpdateFailed):
    """The targeted row does not exist."""

    kind = "EntityNotFound"
