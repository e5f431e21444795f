"""Gateways to the provisioner, package manager, cluster and database."""

from labctl.gateways.base import (
    BackendConfig,
    ClusterStatus,
    DatabaseCredentials,
    DatabaseGateway,
    DeploymentGateway,
    NodeStatus,
    ProvisionerGateway,
    ReleaseInfo,
)

__all__ = [
    "BackendConfig",
    "ClusterStatus",
    "DatabaseCredentials",
    "DatabaseGateway",
    "DeploymentGateway",
    "NodeStatus",
    "ProvisionerGateway",
    "ReleaseInfo",
]
