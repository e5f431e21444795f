"""Lakehouse components deployable into the lab cluster."""

from labctl.components.base import HelmComponent, deep_merge
from labctl.components.handlers import (
    CREDENTIALS_SECRET,
    DEFAULT_COMPONENTS,
    KeycloakHandler,
    OPAHandler,
    PolarisHandler,
    SparkHandler,
    TrinoHandler,
    default_registry,
    register_default_handlers,
)
from labctl.components.registry import ComponentContext, ComponentHandler, ComponentRegistry

__all__ = [
    "CREDENTIALS_SECRET",
    "ComponentContext",
    "ComponentHandler",
    "ComponentRegistry",
    "DEFAULT_COMPONENTS",
    "HelmComponent",
    "KeycloakHandler",
    "OPAHandler",
    "PolarisHandler",
    "SparkHandler",
    "TrinoHandler",
    "deep_merge",
    "default_registry",
    "register_default_handlers",
]
