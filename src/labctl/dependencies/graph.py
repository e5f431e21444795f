"""Static component dependency graph.

Hard dependencies gate deployment: a component is installed only once all
of its hard dependencies are installed, and removed only once all of its
dependents are gone. Soft dependencies only produce warnings.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Collection, Iterable

from labctl.core.errors import ConfigurationError, UnmetHardDependency


class FailurePolicy(str, Enum):
    """What a component's failure means for the rest of ``up``."""

    ABORT = "abort"
    CONTINUE = "continue"


@dataclass(frozen=True)
class ComponentSpec:
    name: str
    namespace: str
    release_name: str
    hard_dependencies: frozenset[str] = frozenset()
    soft_dependencies: frozenset[str] = frozenset()


@dataclass(frozen=True)
class SoftDependencyWarning:
    component: str
    missing: str

    def __str__(self) -> str:
        return (
            f"{self.component} works best with {self.missing}, "
            f"which is neither deployed nor requested"
        )


@dataclass
class DeployPlan:
    batches: list[frozenset[str]] = field(default_factory=list)
    warnings: list[SoftDependencyWarning] = field(default_factory=list)

    @property
    def components(self) -> list[str]:
        return [name for batch in self.batches for name in sorted(batch)]


class DependencyResolver:
    """Orders component deployment and teardown from the dependency graph."""

    def __init__(self, specs: Iterable[ComponentSpec]) -> None:
        self._specs = {spec.name: spec for spec in specs}
        self._dependents: dict[str, set[str]] = defaultdict(set)

        for spec in self._specs.values():
            unknown = (spec.hard_dependencies | spec.soft_dependencies) - self._specs.keys()
            if unknown:
                raise ConfigurationError(
                    f"Component '{spec.name}' depends on unknown components: "
                    f"{', '.join(sorted(unknown))}"
                )
            for dep in spec.hard_dependencies:
                self._dependents[dep].add(spec.name)

        # Layering the full graph fails on a cycle.
        self._layers(set(self._specs), lambda name: self._specs[name].hard_dependencies)

    def spec(self, name: str) -> ComponentSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise ConfigurationError(f"Unknown component: {name}") from None

    @property
    def names(self) -> list[str]:
        return list(self._specs)

    def dependents(self, name: str) -> set[str]:
        """Components that hard-depend on ``name``."""
        self.spec(name)
        return set(self._dependents.get(name, set()))

    def transitive_dependents(self, names: Collection[str]) -> set[str]:
        """Components that hard-depend on any of ``names``, directly or through others."""
        found: set[str] = set()
        pending = list(names)
        while pending:
            for dependent in self.dependents(pending.pop()):
                if dependent not in found:
                    found.add(dependent)
                    pending.append(dependent)
        return found

    def resolve(
        self,
        requested: Collection[str],
        deployed: Collection[str] = frozenset(),
    ) -> DeployPlan:
        """Batch ``requested`` so every hard dependency lands in an earlier batch.

        Raises:
            UnmetHardDependency: a hard dependency is neither requested nor deployed
        """
        wanted = {self.spec(name).name for name in requested}
        present = set(deployed)

        missing: dict[str, list[str]] = {}
        warnings: list[SoftDependencyWarning] = []
        for name in sorted(wanted):
            spec = self._specs[name]
            unmet = sorted(spec.hard_dependencies - wanted - present)
            if unmet:
                missing[name] = unmet
            for soft in sorted(spec.soft_dependencies - wanted - present):
                warnings.append(SoftDependencyWarning(component=name, missing=soft))
        if missing:
            raise UnmetHardDependency(missing)

        batches = self._layers(wanted, lambda n: self._specs[n].hard_dependencies & wanted)
        return DeployPlan(batches=batches, warnings=warnings)

    def deploy_order(
        self,
        requested: Collection[str],
        deployed: Collection[str] = frozenset(),
    ) -> list[frozenset[str]]:
        return self.resolve(requested, deployed).batches

    def undeploy_order(self, deployed: Collection[str]) -> list[frozenset[str]]:
        """Batch ``deployed`` so every component goes after all its deployed dependents."""
        present = {self.spec(name).name for name in deployed}
        return self._layers(present, lambda n: self._dependents.get(n, set()) & present)

    def failure_policy(self, name: str, requested: Collection[str]) -> FailurePolicy:
        """ABORT when another requested component hard-depends on ``name``."""
        if self.dependents(name) & (set(requested) - {name}):
            return FailurePolicy.ABORT
        return FailurePolicy.CONTINUE

    def _layers(self, nodes: set[str], predecessors) -> list[frozenset[str]]:
        """Kahn's algorithm, emitting each wave of zero in-degree nodes as a batch."""
        remaining = {node: set(predecessors(node)) for node in nodes}
        layers: list[frozenset[str]] = []
        while remaining:
            ready = frozenset(node for node, preds in remaining.items() if not preds)
            if not ready:
                raise ConfigurationError(
                    f"Dependency cycle between components: {', '.join(sorted(remaining))}"
                )
            layers.append(ready)
            for node in ready:
                del remaining[node]
            for preds in remaining.values():
                preds -= ready
        return layers
