"""Mock regulatory inspections (FDA, EMA, AEMPS, AESAN)."""

from qualiq.simulation.models import (
    FINDING_CATEGORIES,
    FINDING_SEVERITIES,
    SIMULATION_TYPES,
    AuditFinding,
    AuditSimulation,
    SimulationReport,
    SimulationStatus,
)
from qualiq.simulation.simulator import (
    AuditSimulator,
    SimulationStateError,
    build_simulation_prompt,
)

__all__ = [
    "FINDING_CATEGORIES",
    "FINDING_SEVERITIES",
    "SIMULATION_TYPES",
    "AuditFinding",
    "AuditSimulation",
    "AuditSimulator",
    "SimulationReport",
    "SimulationStateError",
    "SimulationStatus",
    "build_simulation_prompt",
]
