"""Regulatory inspection simulation models."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields
from typing import Any, Mapping

SIMULATION_TYPES = frozenset({"fda", "ema", "aemps", "aesan"})
FINDING_SEVERITIES = frozenset({"critical", "major", "minor", "observation"})
FINDING_CATEGORIES = frozenset(
    {
        "documentation",
        "training",
        "process_control",
        "quality_assurance",
        "validation",
        "storage",
        "equipment",
    }
)

DEFAULT_FINDING_SEVERITY = "observation"
DEFAULT_FINDING_CATEGORY = "documentation"


class SimulationStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def _known_fields(cls: type, row: Mapping[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in row.items() if key in names}


@dataclass
class AuditSimulation:
    id: str
    simulation_type: str
    status: str = SimulationStatus.PENDING.value
    company_id: str | None = None
    created_by: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    summary: str | None = None
    risk_score: float | None = None
    total_findings: int | None = None
    critical_findings: int | None = None
    major_findings: int | None = None
    minor_findings: int | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AuditSimulation":
        return cls(**_known_fields(cls, row))


@dataclass
class AuditFinding:
    id: str
    simulation_id: str
    severity: str
    category: str
    finding_title: str
    finding_description: str
    recommendation: str
    regulation_reference: str | None = None
    affected_area: str | None = None
    document_id: str | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AuditFinding":
        return cls(**_known_fields(cls, row))


@dataclass
class SimulationReport:
    """A completed simulation together with the findings that were stored."""

    simulation: AuditSimulation
    findings: list[AuditFinding] = field(default_factory=list)

    @property
    def findings_count(self) -> int:
        return len(self.findings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "findings_count": self.findings_count,
            "risk_score": self.simulation.risk_score,
            "simulation": self.simulation,
            "findings": self.findings,
        }
