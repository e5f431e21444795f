"""
Lab configuration.

- lab.yaml models validated with Pydantic
- environment overrides via pydantic-settings (LAB_ prefix)
- project discovery and filesystem layout
"""

from labctl.config.loader import (
    CONFIG_FILENAME,
    ConfigLoader,
    LabPaths,
    find_project_root,
    get_config_path,
    load_config,
)
from labctl.config.models import LabConfig
from labctl.config.settings import Settings, get_settings

__all__ = [
    "CONFIG_FILENAME",
    "ConfigLoader",
    "LabConfig",
    "LabPaths",
    "Settings",
    "find_project_root",
    "get_config_path",
    "get_settings",
    "load_config",
]
