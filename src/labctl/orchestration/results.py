"""Result types for lifecycle commands."""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import structlog

from labctl.dependencies.graph import FailurePolicy

logger = structlog.get_logger()


@dataclass
class ComponentOutcome:
    """What happened to one component during a command."""

    name: str
    action: str
    error: Optional[str] = None
    policy: Optional[FailurePolicy] = None

    @property
    def failed(self) -> bool:
        return self.action in ("failed", "not-attempted")


@dataclass
class DriftFinding:
    """A difference between recorded state and live infrastructure."""

    subject: str
    recorded: str
    observed: str


@dataclass
class PhaseResult:
    """Result of one lifecycle command."""

    command: str
    lab_name: str
    dry_run: bool = False
    aborted: bool = False
    noop_reason: Optional[str] = None
    steps: List[str] = field(default_factory=list)
    plans: Dict[str, str] = field(default_factory=dict)
    components: List[ComponentOutcome] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def failures(self) -> List[ComponentOutcome]:
        return [outcome for outcome in self.components if outcome.failed]

    @property
    def success(self) -> bool:
        """Whether the command finished without failed components."""
        return not self.failures


class ResultCollector:
    """Aggregates step, warning and component outcomes while a command runs."""

    def __init__(
        self,
        command: str,
        lab_name: str,
        on_step: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._result = PhaseResult(command=command, lab_name=lab_name)
        self._on_step = on_step

    @property
    def result(self) -> PhaseResult:
        return self._result

    def step(self, message: str) -> None:
        """Record a completed step."""
        self._result.steps.append(message)
        if self._on_step:
            self._on_step(message)

    def warning(self, message: str) -> None:
        self._result.warnings.append(message)
        logger.warning("lifecycle_warning", command=self._result.command, message=message)

    def plan(self, layer: str, output: str) -> None:
        self._result.dry_run = True
        self._result.plans[layer] = output

    def component(self, outcome: ComponentOutcome) -> None:
        self._result.components.append(outcome)

    def noop(self, reason: str) -> None:
        self._result.noop_reason = reason

    def abort(self) -> None:
        self._result.aborted = True

    def finalize(self, duration: float) -> PhaseResult:
        """Return the final result with duration set."""
        self._result.duration_seconds = duration
        return self._result
