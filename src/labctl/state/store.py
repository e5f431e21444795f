"""JSON persistence for :class:`LabState`.

One document per lab under the state directory. Writes go to a temporary
file in the same directory which then replaces the target, so a crash
leaves either the previous or the new document on disk, never a mix.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

import structlog
from pydantic import ValidationError

from labctl.core.errors import StateCorruption, StateInvariantViolation
from labctl.state.models import STATE_VERSION, LabState, utcnow

logger = structlog.get_logger()

_RECOVERY_HINT = (
    "Inspect the file, fix or remove it, then re-run. Removing it makes the "
    "tool forget infrastructure that may still exist."
)


def _migrate_v1(data: dict[str, Any]) -> dict[str, Any]:
    """Version 1 used ``eks_*`` names for the cluster phase."""
    migrated = dict(data)
    if "eks_deployed" in migrated:
        migrated["cluster_deployed"] = migrated.pop("eks_deployed")
    if "eks_outputs" in migrated:
        migrated["cluster_outputs"] = migrated.pop("eks_outputs")
    migrated["version"] = "2"
    return migrated


MIGRATIONS: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    "1": _migrate_v1,
}


class StateStore:
    """Loads and atomically saves lab state documents."""

    def __init__(self, state_dir: Path, clock: Callable[[], datetime] = utcnow) -> None:
        self.state_dir = Path(state_dir)
        self._clock = clock

    def path_for(self, lab_name: str) -> Path:
        return self.state_dir / f"{lab_name}.json"

    def load(self, lab_name: str) -> LabState:
        """Return the persisted record, or a fresh one when none exists."""
        path = self.path_for(lab_name)
        if not path.exists():
            logger.debug("state_initialized", lab=lab_name, path=str(path))
            now = self._clock()
            return LabState(lab_name=lab_name, created_at=now, updated_at=now)

        try:
            data = json.loads(path.read_text())
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StateCorruption(
                f"State file {path} is not valid JSON: {e}. {_RECOVERY_HINT}",
                details={"path": str(path)},
            ) from e

        if not isinstance(data, dict):
            raise StateCorruption(
                f"State file {path} does not contain an object. {_RECOVERY_HINT}",
                details={"path": str(path)},
            )

        data = self._migrate(data, path)

        try:
            state = LabState.model_validate(data)
        except ValidationError as e:
            raise StateCorruption(
                f"State file {path} failed validation: {e.errors()[0]['msg']}. {_RECOVERY_HINT}",
                details={"path": str(path)},
            ) from e

        if state.lab_name != lab_name:
            raise StateCorruption(
                f"State file {path} belongs to lab '{state.lab_name}', not '{lab_name}'",
                details={"path": str(path)},
            )
        return state

    def save(self, state: LabState) -> None:
        """Persist the whole record, refreshing ``updated_at``."""
        violations = state.phase_violations()
        if violations:
            raise StateInvariantViolation(
                "Refusing to save inconsistent lab state: " + "; ".join(violations),
                details={"lab": state.lab_name},
            )

        state.updated_at = self._clock()
        payload = json.dumps(state.model_dump(mode="json"), indent=2, sort_keys=True) + "\n"

        path = self.path_for(state.lab_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("state_saved", lab=state.lab_name, path=str(path))

    def reset(self, lab_name: str) -> LabState:
        """Replace the persisted record with a fresh initial one."""
        now = self._clock()
        state = LabState(lab_name=lab_name, created_at=now, updated_at=now)
        self.save(state)
        logger.info("state_reset", lab=lab_name)
        return state

    def _migrate(self, data: dict[str, Any], path: Path) -> dict[str, Any]:
        version = str(data.get("version", "1"))
        while version != STATE_VERSION:
            migration = MIGRATIONS.get(version)
            if migration is None:
                raise StateCorruption(
                    f"State file {path} has unsupported version '{version}' "
                    f"(this tool understands up to '{STATE_VERSION}')",
                    details={"path": str(path), "version": version},
                )
            data = migration(data)
            logger.info("state_migrated", path=str(path), from_version=version)
            version = str(data["version"])
        return data
