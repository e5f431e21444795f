"""Component dependency graph and ordering."""

from labctl.dependencies.graph import (
    ComponentSpec,
    DependencyResolver,
    DeployPlan,
    FailurePolicy,
    SoftDependencyWarning,
)

__all__ = [
    "ComponentSpec",
    "DependencyResolver",
    "DeployPlan",
    "FailurePolicy",
    "SoftDependencyWarning",
]
