"""Audit/CAPA workflow: audits, CAPA plans, non-conformities and actions."""

from qualiq.capa.errors import (
    AttachmentUploadFailed,
    CapaPlanCreationFailed,
    CorrectiveActionCreationFailed,
    EntityCreationFailed,
    EntityNotFound,
    EntityUpdateFailed,
    MandatoryChildCreationFailed,
    WorkflowError,
)
from qualiq.capa.models import (
    Action,
    ActionAttachment,
    ActionStatus,
    ActionType,
    AttachmentUpload,
    Audit,
    CapaPlan,
    NonConformity,
    Notice,
    NoticeLevel,
)
from qualiq.capa.read_model import CapaSnapshot, IntegrityReport
from qualiq.capa.workflow import (
    INITIAL_CORRECTIVE_ACTION_DESCRIPTION,
    ActionCreated,
    AuditCreated,
    CapaWorkflow,
    NonConformityCreated,
)

__all__ = [
    "INITIAL_CORRECTIVE_ACTION_DESCRIPTION",
    "Action",
    "ActionAttachment",
    "ActionCreated",
    "ActionStatus",
    "ActionType",
    "AttachmentUpload",
    "AttachmentUploadFailed",
    "Audit",
    "AuditCreated",
    "CapaPlan",
    "CapaPlanCreationFailed",
    "CapaSnapshot",
    "CapaWorkflow",
    "CorrectiveActionCreationFailed",
    "EntityCreationFailed",
    "EntityNotFound",
    "EntityUpdateFailed",
    "IntegrityReport",
    "MandatoryChildCreationFailed",
    "NonConformity",
    "NonConformityCreated",
    "Notice",
    "NoticeLevel",
    "WorkflowError",
]
