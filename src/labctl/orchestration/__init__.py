"""Orchestration package: provisioner layers and command results."""

from labctl.orchestration.layers import (
    BOOTSTRAP,
    EPHEMERAL,
    FOUNDATION,
    REQUIRED_OUTPUTS,
    backend_for,
    layer_variables,
    require_outputs,
)
from labctl.orchestration.results import (
    ComponentOutcome,
    DriftFinding,
    PhaseResult,
    ResultCollector,
)

__all__ = [
    "BOOTSTRAP",
    "ComponentOutcome",
    "DriftFinding",
    "EPHEMERAL",
    "FOUNDATION",
    "PhaseResult",
    "REQUIRED_OUTPUTS",
    "ResultCollector",
    "backend_for",
    "layer_variables",
    "require_outputs",
]
