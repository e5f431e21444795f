"""Interfaces to the external tools that create and inspect lab infrastructure."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping


class ClusterStatus(str, Enum):
    CREATING = "CREATING"
    ACTIVE = "ACTIVE"
    DELETING = "DELETING"
    FAILED = "FAILED"
    UPDATING = "UPDATING"
    PENDING = "PENDING"

    @property
    def is_terminal_failure(self) -> bool:
        return self in (ClusterStatus.FAILED, ClusterStatus.DELETING)


@dataclass(frozen=True)
class BackendConfig:
    """Remote provisioner state location for one layer of one lab."""

    bucket: str
    key: str
    region: str
    lock_table: str

    @classmethod
    def for_layer(cls, lab_name: str, layer: str, region: str, outputs: Mapping[str, Any]):
        return cls(
            bucket=str(outputs["state_bucket"]),
            key=f"{lab_name}/{layer}/terraform.tfstate",
            region=region,
            lock_table=str(outputs["state_lock_table"]),
        )


@dataclass(frozen=True)
class NodeStatus:
    ready: int
    total: int

    @property
    def all_ready(self) -> bool:
        return self.total > 0 and self.ready == self.total


@dataclass(frozen=True)
class ReleaseInfo:
    name: str
    namespace: str
    status: str
    revision: int | None = None


@dataclass(frozen=True)
class DatabaseCredentials:
    username: str
    password: str
    host: str
    port: int = 5432

    @classmethod
    def from_secret(cls, data: Mapping[str, Any], fallback_host: str | None = None):
        host = data.get("host") or fallback_host
        if not data.get("username") or not data.get("password") or not host:
            raise ValueError("database secret must provide username, password and host")
        return cls(
            username=str(data["username"]),
            password=str(data["password"]),
            host=str(host),
            port=int(data.get("port") or 5432),
        )


class ProvisionerGateway(ABC):
    """Plans, applies and destroys infrastructure modules and inspects the result."""

    @abstractmethod
    def missing_tools(self) -> list[str]:
        """Executables this gateway needs that are not installed."""

    @abstractmethod
    async def plan(
        self, module: Path, variables: Mapping[str, Any], backend: BackendConfig | None = None
    ) -> str:
        """Show the changes ``apply`` would make, without making them."""

    @abstractmethod
    async def apply(
        self, module: Path, variables: Mapping[str, Any], backend: BackendConfig | None = None
    ) -> dict[str, Any]:
        """Converge the module and return its outputs."""

    @abstractmethod
    async def destroy(
        self, module: Path, variables: Mapping[str, Any], backend: BackendConfig | None = None
    ) -> None:
        ...

    @abstractmethod
    async def output(self, module: Path, backend: BackendConfig | None = None) -> dict[str, Any]:
        ...

    @abstractmethod
    async def cluster_status(self, name: str) -> ClusterStatus | None:
        """Current control-plane status, or None when the cluster does not exist."""

    @abstractmethod
    async def object_store_exists(self, bucket: str) -> bool:
        ...

    @abstractmethod
    async def database_status(self, identifier: str) -> str | None:
        ...

    @abstractmethod
    async def read_secret(self, secret_id: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def caller_account_id(self) -> str:
        ...


class DeploymentGateway(ABC):
    """Installs packaged services into the cluster and inspects what runs there."""

    @abstractmethod
    def missing_tools(self) -> list[str]:
        ...

    @abstractmethod
    def use_context(self, context: str) -> None:
        """Target an already configured kube context."""

    @abstractmethod
    async def configure_context(self, cluster_name: str, region: str, context: str) -> None:
        """Make ``context`` point at the cluster and use it for later calls."""

    @abstractmethod
    async def node_status(self) -> NodeStatus:
        ...

    @abstractmethod
    async def add_repo(self, name: str, url: str) -> None:
        ...

    @abstractmethod
    async def update_repos(self) -> None:
        ...

    @abstractmethod
    async def install(
        self,
        release: str,
        chart: str,
        namespace: str,
        values_file: Path | None = None,
        wait: bool = True,
        timeout: str = "10m",
    ) -> None:
        """Install or upgrade ``release``."""

    @abstractmethod
    async def uninstall(self, release: str, namespace: str) -> None:
        """Remove ``release``; a release that does not exist is not an error."""

    @abstractmethod
    async def release_status(self, release: str, namespace: str) -> ReleaseInfo | None:
        ...

    async def exists(self, release: str, namespace: str) -> bool:
        return await self.release_status(release, namespace) is not None

    @abstractmethod
    async def list_releases(self, namespace: str | None = None) -> list[ReleaseInfo]:
        ...

    @abstractmethod
    async def create_namespace(self, name: str) -> None:
        """Create ``name``; an existing namespace is not an error."""

    @abstractmethod
    async def delete_namespace(self, name: str) -> None:
        """Best-effort delete; failures are logged, never raised."""

    @abstractmethod
    async def namespace_exists(self, name: str) -> bool:
        ...

    @abstractmethod
    async def apply_secret(self, name: str, namespace: str, data: Mapping[str, Any]) -> None:
        ...

    @abstractmethod
    async def apply_configmap(self, name: str, namespace: str, files: Mapping[str, Path]) -> None:
        ...

    @abstractmethod
    async def delete_resources(self, kind: str, namespace: str, name: str | None = None) -> None:
        """Best-effort delete of one named resource, or all of ``kind`` when unnamed."""

    @abstractmethod
    async def pod_phases(self, namespace: str, selector: str) -> list[str]:
        ...

    @abstractmethod
    async def service_hostname(self, name: str, namespace: str) -> str | None:
        """External hostname (or IP) of a LoadBalancer service, once assigned."""


class DatabaseGateway(ABC):
    """Creates per-component databases on the foundation's database cluster."""

    @abstractmethod
    def missing_tools(self) -> list[str]:
        ...

    @abstractmethod
    async def create_database(self, credentials: DatabaseCredentials, name: str) -> bool:
        """Create ``name`` unless present. Returns True when it was created."""
