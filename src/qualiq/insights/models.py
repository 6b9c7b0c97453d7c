"""Predictive insight models."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Mapping

INSIGHT_TYPES = frozenset({"pattern", "trend", "risk", "recommendation"})
SEVERITIES = frozenset({"high", "medium", "low"})

DEFAULT_INSIGHT_TYPE = "pattern"
DEFAULT_SEVERITY = "medium"


def _known_fields(cls: type, row: Mapping[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in row.items() if key in names}


@dataclass
class PatternDetection:
    id: str
    insight_id: str
    pattern_type: str | None = None
    data_points: dict[str, Any] | None = None
    correlation_strength: float | None = None
    company_id: str | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PatternDetection":
        return cls(**_known_fields(cls, row))


@dataclass
class PredictiveInsight:
    id: str
    insight_type: str
    severity: str
    title: str
    description: str
    pattern_details: dict[str, Any] | None = None
    affected_areas: list[str] = field(default_factory=list)
    suggested_actions: list[str] = field(default_factory=list)
    confidence_score: float | None = None
    company_id: str | None = None
    created_at: str | None = None
    detection: PatternDetection | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PredictiveInsight":
        data = _known_fields(cls, row)
        data.pop("detection", None)
        data["affected_areas"] = list(data.get("affected_areas") or [])
        data["suggested_actions"] = list(data.get("suggested_actions") or [])
        return cls(**data)
