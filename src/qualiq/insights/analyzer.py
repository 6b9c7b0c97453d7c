"""CAPA pattern analysis through the AI gateway."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Sequence

from qualiq.assistant.models import AssistantProfile
from qualiq.gateway.client import AIGatewayClient
from qualiq.insights.models import (
    DEFAULT_INSIGHT_TYPE,
    DEFAULT_SEVERITY,
    INSIGHT_TYPES,
    SEVERITIES,
    PatternDetection,
    PredictiveInsight,
)
from qualiq.persistence.base import TableStore

logger = logging.getLogger(__name__)

SAMPLE_INCIDENTS: list[dict[str, str]] = [
    {"type": "deviation", "area": "Línea 4", "shift": "B", "date": "2024-01-15", "description": "Desviación de temperatura"},
    {"type": "deviation", "area": "Línea 4", "shift": "B", "date": "2024-01-22", "description": "Desviación de humedad"},
    {"type": "nc", "area": "Almacén", "shift": "A", "date": "2024-01-18", "description": "Documentación incompleta"},
    {"type": "deviation", "area": "Línea 4", "shift": "B", "date": "2024-02-05", "description": "Parámetros fuera de especificación"},
    {"type": "capa", "area": "Línea 4", "shift": "B", "date": "2024-02-10", "description": "CAPA por desviaciones recurrentes"},
]

_RESPONSE_SHAPE = """{
  "insights": [
    {
      "insight_type": "pattern|trend|risk|recommendation",
      "severity": "high|medium|low",
      "title": "Título del insight",
      "description": "Descripción detallada del patrón detectado",
      "pattern_details": {
        "type": "shift_correlation|seasonal|equipment|personnel|process",
        "correlation_strength": 0.85,
        "data_points_analyzed": 15
      },
      "affected_areas": ["Línea 4", "Turno B"],
      "suggested_actions": ["Acción preventiva 1", "Acción preventiva 2"],
      "confidence_score": 85
    }
  ]
}"""


def build_user_prompt(incidents: Sequence[Mapping[str, Any]] | None) -> str:
    records = list(incidents) if incidents else SAMPLE_INCIDENTS
    context = json.dumps(records, indent=2, ensure_ascii=False, default=str)
    return (
        "Analiza los siguientes datos de incidencias y detecta patrones predictivos:\n\n"
        f"DATOS DE INCIDENCIAS:\n{context}\n\n"
        f"Responde en formato JSON con esta estructura:\n{_RESPONSE_SHAPE}\n\n"
        "Genera entre 2 y 5 insights relevantes basados en los patrones detectados."
    )


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


def _choice(value: Any, allowed: frozenset[str], default: str, name: str) -> str:
    text = str(value).strip().lower() if value is not None else ""
    if text in allowed:
        return text
    if text:
        logger.warning("Unknown %s %r, using %r", name, value, default)
    return default


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class CapaPatternAnalyzer:
    """Asks the gateway for predictive insights and stores them."""

    def __init__(
        self,
        gateway: AIGatewayClient,
        store: TableStore,
        profile: AssistantProfile,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._profile = profile

    async def analyze(
        self,
        incidents: Sequence[Mapping[str, Any]] | None = None,
        company_id: str | None = None,
    ) -> list[PredictiveInsight]:
        payload = await self._gateway.complete_json(
            self._profile.pattern_analysis_system_prompt,
            build_user_prompt(incidents),
        )
        raw = payload.get("insights") or []
        if not isinstance(raw, list):
            logger.warning("Pattern analysis returned a non-list 'insights' value")
            return []
        logger.info("Pattern analysis returned %d insight(s)", len(raw))
        return await asyncio.to_thread(self.persist, raw, company_id)

    def persist(
        self, raw_insights: Sequence[Any], company_id: str | None = None
    ) -> list[PredictiveInsight]:
        stored: list[PredictiveInsight] = []
        for item in raw_insights:
            if not isinstance(item, dict):
                logger.warning("Skipping malformed insight: %r", item)
                continue
            details = item.get("pattern_details")
            if not isinstance(details, dict):
                details = None
            result = self._store.insert(
                "predictive_insights",
                {
                    "company_id": company_id,
                    "insight_type": _choice(
                        item.get("insight_type"), INSIGHT_TYPES, DEFAULT_INSIGHT_TYPE, "insight type"
                    ),
                    "severity": _choice(
                        item.get("severity"), SEVERITIES, DEFAULT_SEVERITY, "severity"
                    ),
                    "title": item.get("title") or "",
                    "description": item.get("description") or "",
                    "pattern_details": details,
                    "affected_areas": _string_list(item.get("affected_areas")),
                    "suggested_actions": _string_list(item.get("suggested_actions")),
                    "confidence_score": _number(item.get("confidence_score")),
                },
            )
            if result.error is not None or not result.data:
                message = result.error.message if result.error else "no row returned"
                logger.error("Error inserting insight: %s", message)
                continue
            insight = PredictiveInsight.from_row(result.data)
            stored.append(insight)

            if details is not None:
                detection = self._store.insert(
                    "pattern_detections",
                    {
                        "company_id": company_id,
                        "insight_id": insight.id,
                        "pattern_type": details.get("type"),
                        "data_points": {"analyzed": details.get("data_points_analyzed")},
                        "correlation_strength": _number(details.get("correlation_strength")),
                    },
                )
                if detection.error is not None:
                    logger.error(
                        "Error inserting pattern detection for %s: %s",
                        insight.id,
                        detection.error.message,
                    )
                else:
                    insight.detection = PatternDetection.from_row(detection.data)
        return stored
