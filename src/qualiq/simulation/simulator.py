"""Simulated regulatory inspections through the AI gateway."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Sequence

from qualiq.assistant.models import AssistantProfile
from qualiq.capa.errors import EntityCreationFailed, EntityNotFound, WorkflowError
from qualiq.gateway.client import AIGatewayClient, GatewayResponseError
from qualiq.persistence.base import QueryResult, TableStore
from qualiq.simulation.models import (
    DEFAULT_FINDING_CATEGORY,
    DEFAULT_FINDING_SEVERITY,
    FINDING_CATEGORIES,
    FINDING_SEVERITIES,
    SIMULATION_TYPES,
    AuditFinding,
    AuditSimulation,
    SimulationReport,
    SimulationStatus,
)
from qualiq.utils.timestamps import iso_timestamp

logger = logging.getLogger(__name__)

NO_DOCUMENTS_TEXT = "No hay documentos disponibles para revisar."

_RESPONSE_SHAPE = """{
  "summary": "Resumen ejecutivo de la inspección simulada",
  "risk_score": 75,
  "findings": [
    {
      "severity": "critical|major|minor|observation",
      "category": "documentation|training|process_control|quality_assurance|validation|storage|equipment",
      "finding_title": "Título del hallazgo",
      "finding_description": "Descripción detallada del hallazgo",
      "regulation_reference": "Referencia normativa específica (ej: 21 CFR 211.68)",
      "recommendation": "Acción correctiva recomendada",
      "affected_area": "Área afectada"
    }
  ]
}"""

# Runs may start from these; a running or completed simulation is left alone.
_RUNNABLE = frozenset({SimulationStatus.PENDING.value, SimulationStatus.FAILED.value})


class SimulationStateError(WorkflowError):
    """The simulation is not in a state that allows another run."""

    kind = "SimulationStateError"


def _document_line(document: Mapping[str, Any]) -> str:
    def text(key: str) -> str:
        value = document.get(key)
        return str(value) if value not in (None, "") else "-"

    return f"- {text('code')}: {text('title')} ({text('category')}, v{text('version')})"


def build_simulation_prompt(documents: Sequence[Mapping[str, Any]] | None) -> str:
    lines = [_document_line(d) for d in documents or [] if isinstance(d, Mapping)]
    context = "\n".join(lines) if lines else NO_DOCUMENTS_TEXT
    return (
        "Realiza una simulación de inspección para esta empresa farmacéutica/sanitaria.\n\n"
        f"DOCUMENTOS DISPONIBLES PARA REVISIÓN:\n{context}\n\n"
        "Analiza la documentación disponible y genera hallazgos potenciales que un "
        "inspector real podría identificar.\n\n"
        f"Responde en formato JSON con esta estructura:\n{_RESPONSE_SHAPE}\n\n"
        "Genera entre 3 y 8 hallazgos realistas, incluyendo al menos 1 crítico o mayor "
        "si hay evidencia de incumplimiento."
    )


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _choice(value: Any, allowed: frozenset[str], default: str, name: str) -> str:
    text = (_text(value) or "").lower()
    if text in allowed:
        return text
    if text:
        logger.warning("Unknown finding %s %r, using %r", name, value, default)
    return default


def _score(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class AuditSimulator:
    """Runs an agency-specific mock inspection and records its findings."""

    def __init__(
        self,
        gateway: AIGatewayClient,
        store: TableStore,
        profile: AssistantProfile,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._profile = profile

    def create_simulation(
        self,
        simulation_type: str,
        *,
        company_id: str | None = None,
        created_by: str | None = None,
    ) -> AuditSimulation:
        kind = (simulation_type or "").strip().lower()
        if kind not in SIMULATION_TYPES:
            raise ValueError(
                f"simulation_type must be one of: {', '.join(sorted(SIMULATION_TYPES))}"
            )
        result = self._store.insert(
            "audit_simulations",
            {
                "simulation_type": kind,
                "status": SimulationStatus.PENDING.value,
                "company_id": company_id,
                "created_by": created_by,
            },
        )
        if result.error is not None:
            raise EntityCreationFailed(
                "audit_simulation", "Error creating audit simulation", cause=result.error
            )
        return AuditSimulation.from_row(result.data)

    def get_simulation(self, simulation_id: str) -> AuditSimulation:
        result = self._store.select("audit_simulations", filters={"id": simulation_id}, limit=1)
        if result.error is not None or not result.data:
            raise EntityNotFound(
                f"Audit simulation {simulation_id} not found", cause=result.error
            )
        return AuditSimulation.from_row(result.data[0])

    def list_findings(self, simulation_id: str) -> list[AuditFinding]:
        result = self._store.select(
            "audit_findings", filters={"simulation_id": simulation_id}, order_by="created_at"
        )
        if result.error is not None:
            logger.error(
                "Error loading findings for simulation %s: %s",
                simulation_id,
                result.error.message,
            )
            return []
        return [AuditFinding.from_row(row) for row in result.data]

    def load_report(self, simulation_id: str) -> SimulationReport:
        simulation = self.get_simulation(simulation_id)
        return SimulationReport(simulation, self.list_findings(simulation_id))

    async def run(
        self,
        simulation_id: str,
        documents: Sequence[Mapping[str, Any]] | None = None,
    ) -> SimulationReport:
        """Run the inspection for a pending or previously failed simulation.

        The simulation is marked ``running`` before the gateway call and
        ``failed`` if the call or its response is unusable, so a crashed run
        never stays ``running``.
        """
        simulation = await asyncio.to_thread(self.get_simulation, simulation_id)
        if simulation.status not in _RUNNABLE:
            raise SimulationStateError(
                f"Audit simulation {simulation_id} is already {simulation.status}"
            )
        await asyncio.to_thread(
            self._set_status,
            simulation_id,
            SimulationStatus.RUNNING,
            started_at=iso_timestamp(),
        )
        logger.info(
            "Running audit simulation %s (type %s)", simulation_id, simulation.simulation_type
        )

        try:
            payload = await self._gateway.complete_json(
                self._profile.inspector_prompt(simulation.simulation_type),
                build_simulation_prompt(documents),
            )
            raw = payload.get("findings")
            if raw is None:
                raw = []
            if not isinstance(raw, list):
                raise GatewayResponseError("Invalid findings format")
        except Exception:
            await asyncio.to_thread(self._set_status, simulation_id, SimulationStatus.FAILED)
            raise

        logger.info("Audit simulation %s returned %d finding(s)", simulation_id, len(raw))
        return await asyncio.to_thread(
            self.complete,
            simulation_id,
            raw,
            summary=_text(payload.get("summary")),
            risk_score=_score(payload.get("risk_score")),
        )

    def complete(
        self,
        simulation_id: str,
        raw_findings: Sequence[Any],
        *,
        summary: str | None = None,
        risk_score: float | None = None,
    ) -> SimulationReport:
        """Store the findings and close the simulation with its severity totals."""
        findings = self._insert_findings(simulation_id, raw_findings)
        counts = {severity: 0 for severity in FINDING_SEVERITIES}
        for finding in findings:
            counts[finding.severity] += 1

        result = self._set_status(
            simulation_id,
            SimulationStatus.COMPLETED,
            completed_at=iso_timestamp(),
            summary=summary,
            risk_score=risk_score,
            total_findings=len(findings),
            critical_findings=counts["critical"],
            major_findings=counts["major"],
            minor_findings=counts["minor"],
        )
        if result.error is not None or not result.data:
            raise EntityNotFound(
                f"Audit simulation {simulation_id} not found", cause=result.error
            )
        return SimulationReport(AuditSimulation.from_row(result.data[0]), findings)

    def _insert_findings(self, simulation_id: str, raw: Sequence[Any]) -> list[AuditFinding]:
        stored: list[AuditFinding] = []
        for item in raw:
            if not isinstance(item, dict):
                logger.warning("Skipping malformed finding: %r", item)
                continue
            title = _text(item.get("finding_title"))
            if title is None:
                logger.warning("Skipping finding without a title: %r", item)
                continue
            result = self._store.insert(
                "audit_findings",
                {
                    "simulation_id": simulation_id,
                    "document_id": _text(item.get("document_id")),
                    "severity": _choice(
                        item.get("severity"), FINDING_SEVERITIES, DEFAULT_FINDING_SEVERITY, "severity"
                    ),
                    "category": _choice(
                        item.get("category"), FINDING_CATEGORIES, DEFAULT_FINDING_CATEGORY, "category"
                    ),
                    "finding_title": title,
                    "finding_description": _text(item.get("finding_description")) or "",
                    "regulation_reference": _text(item.get("regulation_reference")),
                    "recommendation": _text(item.get("recommendation")) or "",
                    "affected_area": _text(item.get("affected_area")),
                },
            )
            if result.error is not None or not result.data:
                message = result.error.message if result.error else "no row returned"
                logger.error("Error inserting finding for %s: %s", simulation_id, message)
                continue
            stored.append(AuditFinding.from_row(result.data))
        return stored

    def _set_status(
        self, simulation_id: str, status: SimulationStatus, **fields: Any
    ) -> QueryResult:
        result = self._store.update(
            "audit_simulations", {"status": status.value, **fields}, {"id": simulation_id}
        )
        if result.error is not None:
            logger.error(
                "Error marking simulation %s %s: %s",
                simulation_id,
                status.value,
                result.error.message,
            )
        return result
