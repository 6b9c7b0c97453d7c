"""Audit/CAPA workflow engine.

Every mutation is a short, ordered series of independent writes:

- audit -> CAPA plan (unless the store created it already)
- non-conformity -> initial corrective action
- action -> blob upload -> attachment row

There is no rollback across a series. When the parent write succeeds and a
mandatory child fails, the parent stays persisted and the outcome carries a
``MandatoryChildCreationFailed`` issue so the caller can surface it and offer
a repair. Failure of the parent write itself raises ``EntityCreationFailed``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from qualiq.capa.errors import (
    AttachmentUploadFailed,
    CapaPlanCreationFailed,
    CorrectiveActionCreationFailed,
    EntityCreationFailed,
    EntityNotFound,
    EntityUpdateFailed,
    WorkflowError,
)
from qualiq.capa.models import (
    Action,
    ActionAttachment,
    ActionStatus,
    ActionType,
    Audit,
    AttachmentUpload,
    CapaPlan,
    NonConformity,
    Notice,
    NoticeLevel,
)
from qualiq.persistence.base import BlobStore, TableStore

logger = logging.getLogger(__name__)

INITIAL_CORRECTIVE_ACTION_DESCRIPTION = "initial corrective action"
DEFAULT_BUCKET_ID = "documents"

_UPDATABLE_ACTION_FIELDS = frozenset(
    {"action_type", "description", "responsible_id", "due_date", "status"}
)


def _require_text(value: str | None, name: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{name} must not be empty")
    return str(value).strip()


def _optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _coerce_action_type(value: ActionType | str) -> ActionType:
    try:
        return ActionType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in ActionType)
        raise ValueError(f"action_type must be one of: {allowed}") from None


def _coerce_status(value: ActionStatus | str) -> ActionStatus:
    try:
        return ActionStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in ActionStatus)
        raise ValueError(f"status must be one of: {allowed}") from None


@dataclass
class AuditCreated:
    audit: Audit
    capa_plan: CapaPlan | None
    issues: list[WorkflowError] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.issues

    def notice(self) -> Notice:
        if self.complete:
            return Notice(
                NoticeLevel.SUCCESS,
                "Audit created",
                "The audit and its CAPA plan were created.",
            )
        return Notice(
            NoticeLevel.WARNING,
            "Audit created",
            "The audit was saved, but its CAPA plan could not be created.",
        )


@dataclass
class NonConformityCreated:
    non_conformity: NonConformity
    corrective_action: Action | None
    issues: list[WorkflowError] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.issues

    def notice(self) -> Notice:
        if self.complete:
            return Notice(
                NoticeLevel.SUCCESS,
                "Non-conformity created",
                "It was created with a mandatory corrective action.",
            )
        return Notice(
            NoticeLevel.WARNING,
            "Non-conformity created",
            "But the automatic corrective action could not be created.",
        )


@dataclass
class ActionCreated:
    action: Action
    attachment: ActionAttachment | None = None
    issues: list[WorkflowError] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.issues

    def notice(self) -> Notice:
        if self.complete:
            return Notice(NoticeLevel.SUCCESS, "Action created", "The action was recorded.")
        return Notice(
            NoticeLevel.WARNING,
            "Action created",
            "The action was recorded, but its attachment could not be stored.",
        )


def creation_failed_notice(error: WorkflowError) -> Notice:
    return Notice(NoticeLevel.ERROR, "Error", error.message)


class CapaWorkflow:
    def __init__(
        self,
        store: TableStore,
        blobs: BlobStore | None = None,
        *,
        bucket_id: str = DEFAULT_BUCKET_ID,
    ) -> None:
        self._store = store
        self._blobs = blobs
        self._bucket_id = bucket_id

    # -- audits -----------------------------------------------------------

    def create_audit(
        self,
        title: str,
        description: str | None = None,
        audit_date: str | None = None,
        auditor_id: str | None = None,
    ) -> AuditCreated:
        row = {
            "title": _require_text(title, "title"),
            "description": _optional_text(description),
            "audit_date": _optional_text(audit_date),
            "auditor_id": _optional_text(auditor_id),
        }
        result = self._store.insert("audits", row)
        if result.error is not None:
            raise EntityCreationFailed(
                "audit", f"Could not create audit: {result.error.message}", cause=result.error
            )
        audit = Audit.from_row(result.data)
        logger.info("Created audit %s", audit.id)

        outcome = AuditCreated(audit=audit, capa_plan=None)
        try:
            outcome.capa_plan = self._ensure_capa_plan(audit.id)
        except CapaPlanCreationFailed as exc:
            logger.warning("Audit %s has no CAPA plan: %s", audit.id, exc.message)
            outcome.issues.append(exc)
        return outcome

    def _ensure_capa_plan(self, audit_id: str) -> CapaPlan:
        existing = self._store.select("capa_plans", filters={"audit_id": audit_id})
        if existing.error is not None:
            raise CapaPlanCreationFailed(
                audit_id,
                f"Could not verify the CAPA plan: {existing.error.message}",
                cause=existing.error,
            )
        if existing.data:
            if len(existing.data) > 1:
                logger.warning(
                    "Audit %s owns %d CAPA plans; using the oldest",
                    audit_id,
                    len(existing.data),
                )
            return CapaPlan.from_row(existing.data[0])

        created = self._store.insert("capa_plans", {"audit_id": audit_id})
        if created.error is not None:
            raise CapaPlanCreationFailed(
                audit_id,
                f"Could not create the CAPA plan: {created.error.message}",
                cause=created.error,
            )
        plan = CapaPlan.from_row(created.data)
        logger.info("Created CAPA plan %s for audit %s", plan.id, audit_id)
        return plan

    def repair_missing_capa_plan(self, audit_id: str) -> CapaPlan:
        """Create the CAPA plan of an audit left without one."""
        self._require_row("audits", audit_id, "audit")
        return self._ensure_capa_plan(audit_id)

    # -- non-conformities -------------------------------------------------

    def create_non_conformity(
        self,
        capa_plan_id: str,
        title: str,
        description: str | None = None,
        severity: str | None = None,
        root_cause: str | None = None,
        status: str = "open",
    ) -> NonConformityCreated:
        row = {
            "capa_plan_id": _require_text(capa_plan_id, "capa_plan_id"),
            "title": _require_text(title, "title"),
            "description": _optional_text(description),
            "severity": _optional_text(severity),
            "root_cause": _optional_text(root_cause),
            "status": _optional_text(status) or "open",
        }
        result = self._store.insert("non_conformities", row)
        if result.error is not None:
            raise EntityCreationFailed(
                "non_conformity",
                f"Could not create non-conformity: {result.error.message}",
                cause=result.error,
            )
        non_conformity = NonConformity.from_row(result.data)
        logger.info(
            "Created non-conformity %s under CAPA plan %s", non_conformity.id, capa_plan_id
        )

        outcome = NonConformityCreated(non_conformity=non_conformity, corrective_action=None)
        try:
            outcome.corrective_action = self._insert_corrective_action(non_conformity.id)
        except CorrectiveActionCreationFailed as exc:
            logger.warning(
                "Non-conformity %s has no corrective action: %s", non_conformity.id, exc.message
            )
            outcome.issues.append(exc)
        return outcome

    def _insert_corrective_action(self, non_conformity_id: str) -> Action:
        result = self._store.insert(
            "actions",
            {
                "non_conformity_id": non_conformity_id,
                "action_type": ActionType.CORRECTIVE.value,
                "description": INITIAL_CORRECTIVE_ACTION_DESCRIPTION,
                "status": ActionStatus.OPEN.value,
            },
        )
        if result.error is not None:
            raise CorrectiveActionCreationFailed(
                non_conformity_id,
                f"Could not create the initial corrective action: {result.error.message}",
                cause=result.error,
            )
        return Action.from_row(result.data)

    def repair_missing_corrective_action(self, non_conformity_id: str) -> Action:
        """Create the initial corrective action of a non-conformity lacking one."""
        self._require_row("non_conformities", non_conformity_id, "non-conformity")
        existing = self._store.select(
            "actions",
            filters={
                "non_conformity_id": non_conformity_id,
                "action_type": ActionType.CORRECTIVE.value,
            },
            limit=1,
        )
        if existing.error is None and existing.data:
            return Action.from_row(existing.data[0])

        action = self._insert_corrective_action(non_conformity_id)
        logger.info("Repaired corrective action for non-conformity %s", non_conformity_id)
        return action

    # -- actions ----------------------------------------------------------

    def create_action(
        self,
        non_conformity_id: str,
        action_type: ActionType | str,
        description: str,
        responsible_id: str | None = None,
        due_date: str | None = None,
        status: ActionStatus | str = ActionStatus.OPEN,
        attachment: AttachmentUpload | None = None,
    ) -> ActionCreated:
        row = {
            "non_conformity_id": _require_text(non_conformity_id, "non_conformity_id"),
            "action_type": _coerce_action_type(action_type).value,
            "description": _require_text(description, "description"),
            "responsible_id": _optional_text(responsible_id),
            "due_date": _optional_text(due_date),
            "status": _coerce_status(status).value,
        }
        result = self._store.insert("actions", row)
        if result.error is not None:
            raise EntityCreationFailed(
                "action", f"Could not create action: {result.error.message}", cause=result.error
            )
        action = Action.from_row(result.data)
        logger.info("Created %s action %s", action.action_type.value, action.id)

        outcome = ActionCreated(action=action)
        if attachment is not None:
            stored, issue = self._attach(action.id, attachment)
            outcome.attachment = stored
            if issue is not None:
                logger.warning("Attachment for action %s not stored: %s", action.id, issue.message)
                outcome.issues.append(issue)
        return outcome

    def _attach(
        self, action_id: str, upload: AttachmentUpload
    ) -> tuple[ActionAttachment | None, AttachmentUploadFailed | None]:
        if self._blobs is None:
            return None, AttachmentUploadFailed(action_id, "No blob storage is configured")

        name = uuid4().hex
        extension = upload.extension
        object_path = f"actions/{action_id}/{name}"
        if extension:
            object_path += f".{extension}"
        uploaded = self._blobs.upload(self._bucket_id, object_path, upload.content, upsert=False)
        if uploaded.error is not None:
            return None, AttachmentUploadFailed(
                action_id, f"Upload failed: {uploaded.error.message}", cause=uploaded.error
            )

        recorded = self._store.insert(
            "action_attachments",
            {
                "action_id": action_id,
                "bucket_id": self._bucket_id,
                "object_path": object_path,
                "file_name": upload.filename,
            },
        )
        if recorded.error is not None:
            return None, AttachmentUploadFailed(
                action_id,
                f"Uploaded file could not be linked: {recorded.error.message}",
                cause=recorded.error,
            )
        return ActionAttachment.from_row(recorded.data), None

    def update_action(self, action_id: str, **patch: Any) -> Action:
        """Apply a direct update; any status may follow any other."""
        unknown = set(patch) - _UPDATABLE_ACTION_FIELDS
        if unknown:
            raise ValueError(f"Cannot update action field(s): {', '.join(sorted(unknown))}")
        if not patch:
            raise ValueError("Nothing to update")

        values = dict(patch)
        if "action_type" in values:
            values["action_type"] = _coerce_action_type(values["action_type"]).value
        if "status" in values:
            values["status"] = _coerce_status(values["status"]).value
        if "description" in values:
            values["description"] = _require_text(values["description"], "description")
        for key in ("responsible_id", "due_date"):
            if key in values:
                values[key] = _optional_text(values[key])

        result = self._store.update("actions", values, {"id": action_id})
        if result.error is not None:
            raise EntityUpdateFailed(
                f"Could not update action {action_id}: {result.error.message}",
                cause=result.error,
            )
        if not result.data:
            raise EntityNotFound(f"Action not found: {action_id}")
        return Action.from_row(result.data[0])

    def set_action_status(self, action_id: str, status: ActionStatus | str) -> Action:
        return self.update_action(action_id, status=status)

    def _require_row(self, table: str, row_id: str, label: str) -> None:
        result = self._store.select(table, columns="id", filters={"id": row_id}, limit=1)
        if result.error is not None:
            raise EntityUpdateFailed(
                f"Could not load {label} {row_id}: {result.error.message}", cause=result.error
            )
        if not result.data:
            raise EntityNotFound(f"{label.capitalize()} not found: {row_id}")
