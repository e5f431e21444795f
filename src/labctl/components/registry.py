"""Component handler protocol and registry."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, runtime_checkable

import structlog

from labctl.config.loader import LabPaths
from labctl.config.models import LabConfig
from labctl.core.errors import ConfigurationError, DeploymentFailure, ProvisionerFailure
from labctl.dependencies.graph import ComponentSpec, DependencyResolver
from labctl.gateways.base import (
    DatabaseCredentials,
    DatabaseGateway,
    DeploymentGateway,
    ProvisionerGateway,
)
from labctl.polling import ReadinessPoller
from labctl.state.models import ComponentRecord, LabState

logger = structlog.get_logger()


@dataclass
class ComponentContext:
    """Shared context passed to all component handlers."""

    config: LabConfig
    paths: LabPaths
    state: LabState
    provisioner: ProvisionerGateway
    deployer: DeploymentGateway
    poller: ReadinessPoller
    database: Optional[DatabaseGateway] = None
    # helm's repository cache is not safe for concurrent updates
    repo_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def database_credentials(self) -> DatabaseCredentials:
        outputs = self.state.foundation_outputs
        secret_arn = outputs.get("aurora_secret_arn")
        if not secret_arn:
            raise ProvisionerFailure("Foundation outputs do not include aurora_secret_arn")
        secret = await self.provisioner.read_secret(secret_arn)
        try:
            return DatabaseCredentials.from_secret(
                secret, fallback_host=outputs.get("aurora_cluster_endpoint")
            )
        except ValueError as e:
            raise DeploymentFailure(f"Unusable database secret {secret_arn}: {e}") from e

    async def create_database(self, name: str) -> None:
        if self.database is None:
            logger.warning("database_creation_skipped", database=name, reason="psql unavailable")
            return
        await self.database.create_database(await self.database_credentials(), name)


@runtime_checkable
class ComponentHandler(Protocol):
    """Protocol for components that can be deployed into the lab cluster."""

    @property
    def name(self) -> str:
        """Component identifier (e.g. 'keycloak')."""
        ...

    @property
    def display_name(self) -> str:
        ...

    @property
    def spec(self) -> ComponentSpec:
        """Static dependency and placement information."""
        ...

    async def deploy(self, ctx: ComponentContext) -> ComponentRecord:
        """Install or upgrade the component and wait until it is ready."""
        ...

    async def undeploy(self, ctx: ComponentContext) -> None:
        ...

    async def endpoint(self, ctx: ComponentContext) -> Optional[str]:
        ...


class ComponentRegistry:
    """In-memory registry for component handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[str, ComponentHandler] = {}

    def register(self, handler: ComponentHandler) -> None:
        """Register a handler by its name."""
        self._handlers[handler.name] = handler

    def get(self, name: str) -> ComponentHandler:
        try:
            return self._handlers[name]
        except KeyError:
            raise ConfigurationError(f"Unknown component: {name}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def list(self) -> List[str]:
        """List all registered component names."""
        return list(self._handlers.keys())

    def resolver(self) -> DependencyResolver:
        return DependencyResolver(handler.spec for handler in self._handlers.values())
