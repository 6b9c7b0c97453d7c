"""Client-side read model for the audit/CAPA chain.

Each collection is fetched on its own and the per-audit views are recomputed
by matching foreign keys. Callers reload the whole snapshot after every write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from qualiq.capa.models import (
    Action,
    ActionAttachment,
    ActionType,
    Audit,
    CapaPlan,
    NonConformity,
)
from qualiq.persistence.base import Row, TableStore

logger = logging.getLogger(__name__)


@dataclass
class IntegrityReport:
    audits_without_plan: list[str] = field(default_factory=list)
    audits_with_multiple_plans: list[str] = field(default_factory=list)
    non_conformities_without_corrective_action: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not (
            self.audits_without_plan
            or self.audits_with_multiple_plans
            or self.non_conformities_without_corrective_action
        )


@dataclass
class CapaSnapshot:
    audits: list[Audit] = field(default_factory=list)
    capa_plans: list[CapaPlan] = field(default_factory=list)
    non_conformities: list[NonConformity] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    attachments: list[ActionAttachment] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @classmethod
    def load(cls, store: TableStore) -> "CapaSnapshot":
        snapshot = cls()

        def fetch(table: str, **kwargs: object) -> list[Row]:
            result = store.select(table, **kwargs)  # type: ignore[arg-type]
            if result.error is not None:
                logger.warning("Could not load %s: %s", table, result.error.message)
                snapshot.errors[table] = result.error.message
                return []
            return list(result.data or [])

        snapshot.audits = [
            Audit.from_row(row) for row in fetch("audits", order_by="created_at", descending=True)
        ]
        snapshot.capa_plans = [CapaPlan.from_row(row) for row in fetch("capa_plans")]
        snapshot.non_conformities = [
            NonConformity.from_row(row) for row in fetch("non_conformities")
        ]
        snapshot.actions = [Action.from_row(row) for row in fetch("actions")]
        snapshot.attachments = [
            ActionAttachment.from_row(row) for row in fetch("action_attachments")
        ]
        return snapshot

    @property
    def default_audit(self) -> Audit | None:
        return self.audits[0] if self.audits else None

    def plan_for_audit(self, audit_id: str) -> CapaPlan | None:
        return next((plan for plan in self.capa_plans if plan.audit_id == audit_id), None)

    def non_conformities_for_plan(self, capa_plan_id: str) -> list[NonConformity]:
        return [nc for nc in self.non_conformities if nc.capa_plan_id == capa_plan_id]

    def non_conformities_for_audit(self, audit_id: str) -> list[NonConformity]:
        plan = self.plan_for_audit(audit_id)
        if plan is None:
            return []
        return self.non_conformities_for_plan(plan.id)

    def actions_for_non_conformity(self, non_conformity_id: str) -> list[Action]:
        return [a for a in self.actions if a.non_conformity_id == non_conformity_id]

    def attachments_for_action(self, action_id: str) -> list[ActionAttachment]:
        return [att for att in self.attachments if att.action_id == action_id]

    def integrity_report(self) -> IntegrityReport:
        report = IntegrityReport()
        plan_counts: dict[str, int] = {}
        for plan in self.capa_plans:
            plan_counts[plan.audit_id] = plan_counts.get(plan.audit_id, 0) + 1
        for audit in self.audits:
            count = plan_counts.get(audit.id, 0)
            if count == 0:
                report.audits_without_plan.append(audit.id)
            elif count > 1:
                report.audits_with_multiple_plans.append(audit.id)

        covered = {
            action.non_conformity_id
            for action in self.actions
            if action.action_type is ActionType.CORRECTIVE
        }
        report.non_conformities_without_corrective_action = [
            nc.id for nc in self.non_conformities if nc.id not in covered
        ]
        return report

    def to_dict(self) -> dict[str, object]:
        return {
            "audits": self.audits,
            "capa_plans": self.capa_plans,
            "non_conformities": self.non_conformities,
            "actions": self.actions,
            "action_attachments": self.attachments,
            "errors": self.errors,
        }
