"""
Configuration file loading.

Search order:
1. Explicit path (--config flag or LAB_CONFIG)
2. lab.yaml in the current directory or the nearest parent that has one

String values may reference other values of the same document with
``${dotted.path}``; unknown references are left as written. Environment
overrides from :class:`~labctl.config.settings.Settings` are applied last.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from labctl.config.models import LabConfig
from labctl.config.settings import Settings, get_settings
from labctl.core.errors import ConfigurationError

logger = structlog.get_logger()

CONFIG_FILENAME = "lab.yaml"

_REFERENCE = re.compile(r"\$\{([^}]+)\}")


def find_project_root(start: Path | None = None) -> Path:
    """Return the nearest directory at or above ``start`` holding lab.yaml.

    Falls back to ``start`` itself when no parent has one.
    """
    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / CONFIG_FILENAME).exists():
            return candidate
    return current


def get_config_path(explicit_path: str | Path | None = None) -> Path:
    """Find the configuration file to use (it may not exist)."""
    if explicit_path:
        return Path(explicit_path).expanduser().resolve()
    return find_project_root() / CONFIG_FILENAME


def flatten(data: Any, prefix: str = "") -> dict[str, str]:
    """Flatten nested mappings into ``{"a.b": "value"}`` for interpolation."""
    result: dict[str, str] = {}
    if isinstance(data, dict):
        for key, value in data.items():
            name = f"{prefix}.{key}" if prefix else str(key)
            if isinstance(value, dict):
                result.update(flatten(value, name))
            elif not isinstance(value, list):
                result[name] = "" if value is None else str(value)
    return result


def interpolate(data: Any, variables: dict[str, str]) -> Any:
    if isinstance(data, str):
        return _REFERENCE.sub(lambda m: variables.get(m.group(1), m.group(0)), data)
    if isinstance(data, list):
        return [interpolate(item, variables) for item in data]
    if isinstance(data, dict):
        return {key: interpolate(value, variables) for key, value in data.items()}
    return data


def apply_overrides(data: dict[str, Any], settings: Settings) -> dict[str, Any]:
    aws = dict(data.get("aws") or {})
    if settings.aws_region:
        aws["region"] = settings.aws_region
    if settings.aws_profile:
        aws["profile"] = settings.aws_profile
    if aws:
        data["aws"] = aws
    return data


@dataclass
class LabPaths:
    """Filesystem layout of a lab project."""

    root: Path
    state_dir_override: Path | None = None

    @property
    def state_dir(self) -> Path:
        return self.state_dir_override or self.root / ".lab" / "state"

    @property
    def values_dir(self) -> Path:
        return self.root / ".lab" / "helm"

    @property
    def terraform_dir(self) -> Path:
        return self.root / "terraform"

    def module(self, layer: str) -> Path:
        return self.terraform_dir / layer

    def resolve(self, relative: str) -> Path:
        path = Path(relative).expanduser()
        return path if path.is_absolute() else self.root / path


class ConfigLoader:
    """
    Loads and validates lab.yaml.
    """

    def __init__(self, config_path: Path | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.config_path = get_config_path(config_path or self.settings.config)

    @property
    def paths(self) -> LabPaths:
        override = Path(self.settings.state_dir) if self.settings.state_dir else None
        return LabPaths(root=self.config_path.parent, state_dir_override=override)

    def load(self) -> LabConfig:
        if not self.config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self.config_path}. "
                "Create a lab.yaml file or copy lab.yaml.example",
                details={"path": str(self.config_path)},
            )

        try:
            with open(self.config_path) as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in {self.config_path}: {e}",
                details={"path": str(self.config_path)},
            ) from e

        if not isinstance(raw, dict):
            raise ConfigurationError(
                f"{self.config_path} must contain a mapping at the top level",
                details={"path": str(self.config_path)},
            )

        data = apply_overrides(interpolate(raw, flatten(raw)), self.settings)

        try:
            config = LabConfig.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigurationError(
                f"Invalid configuration in {self.config_path}: {problems}",
                details={"path": str(self.config_path)},
            ) from e

        logger.debug("loaded_config", path=str(self.config_path), lab=config.lab.name)
        return config


def load_config(config_path: Path | None = None) -> tuple[LabConfig, LabPaths]:
    """Convenience function returning the validated config and project paths."""
    loader = ConfigLoader(config_path)
    return loader.load(), loader.paths
