"""Lifecycle record persisted between CLI invocations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

STATE_VERSION = "2"

# Ordered from the deepest phase to the shallowest: each flag implies the next.
PHASE_LATTICE = (
    "essentials_deployed",
    "cluster_ready",
    "cluster_deployed",
    "foundation_deployed",
    "bootstrapped",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ComponentRecord(BaseModel):
    """Deployment record for a single component."""

    model_config = ConfigDict(extra="ignore")

    deployed: bool = False
    namespace: str | None = None
    release_name: str | None = None
    deployed_at: datetime | None = None
    last_error: str | None = None


class LabState(BaseModel):
    """Mirror of the lab's real-world infrastructure.

    Outputs maps are opaque provisioner outputs keyed by output name.
    """

    model_config = ConfigDict(extra="ignore")

    version: str = STATE_VERSION
    lab_name: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    bootstrapped: bool = False
    bootstrap_outputs: dict[str, Any] = Field(default_factory=dict)

    foundation_deployed: bool = False
    foundation_outputs: dict[str, Any] = Field(default_factory=dict)

    cluster_deployed: bool = False
    cluster_outputs: dict[str, Any] = Field(default_factory=dict)
    cluster_ready: bool = False
    cluster_context: str | None = None

    essentials_deployed: bool = False
    components: dict[str, ComponentRecord] = Field(default_factory=dict)

    @field_validator("bootstrap_outputs", "foundation_outputs", "cluster_outputs", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="after")
    def _check_lattice(self) -> LabState:
        violations = self.phase_violations()
        if violations:
            raise ValueError("; ".join(violations))
        return self

    @classmethod
    def initial(cls, lab_name: str) -> LabState:
        return cls(lab_name=lab_name)

    def phase_violations(self) -> list[str]:
        """Describe every place where a phase flag is set without its predecessor."""
        violations = []
        for deeper, shallower in zip(PHASE_LATTICE, PHASE_LATTICE[1:]):
            if getattr(self, deeper) and not getattr(self, shallower):
                violations.append(f"{deeper} is set but {shallower} is not")
        deployed = self.deployed_components()
        if deployed and not self.cluster_ready:
            violations.append(
                f"components {', '.join(sorted(deployed))} are deployed but cluster_ready is not"
            )
        return violations

    def deployed_components(self) -> set[str]:
        return {name for name, record in self.components.items() if record.deployed}

    def clear_cluster(self) -> None:
        """Forget everything that lived on the ephemeral cluster."""
        self.cluster_deployed = False
        self.cluster_outputs = {}
        self.cluster_ready = False
        self.cluster_context = None
        self.essentials_deployed = False
        self.components = {}

    def clear_foundation(self) -> None:
        self.clear_cluster()
        self.foundation_deployed = False
        self.foundation_outputs = {}
