"""Concrete handlers for the lakehouse services."""

from __future__ import annotations

from typing import Any

import structlog

from labctl.components.base import HelmComponent, summarize_phases
from labctl.components.registry import ComponentContext, ComponentRegistry
from labctl.core.errors import DeploymentFailure
from labctl.polling import PollResult

logger = structlog.get_logger()

KEYCLOAK_REALM = "lakehouse"
CREDENTIALS_SECRET = "aurora-credentials"


def irsa_role_arn(account_id: str, lab_name: str, component: str) -> str:
    return f"arn:aws:iam::{account_id}:role/{lab_name}-{component}-role"


class KeycloakHandler(HelmComponent):
    """Identity provider; every other service authenticates against it."""

    name = "keycloak"
    display_name = "Keycloak"
    namespace = "keycloak"
    release_name = "keycloak"
    chart = "bitnami/keycloak"
    repo_name = "bitnami"
    repo_url = "https://charts.bitnami.com/bitnami"
    install_timeout = "15m"
    ready_timeout_minutes = 10
    ready_selector = "app.kubernetes.io/name=keycloak"
    database_name = "keycloak"
    service_name = "keycloak"
    realm_configmap = "keycloak-realm"

    def _realm_file(self, ctx: ComponentContext):
        realm_file = ctx.config.components.keycloak.realm_file
        if not realm_file:
            return None
        path = ctx.paths.resolve(realm_file)
        return path if path.exists() else None

    async def prepare(self, ctx: ComponentContext) -> None:
        await super().prepare(ctx)
        realm = self._realm_file(ctx)
        if realm is None:
            logger.warning("keycloak_realm_missing", hint="realm import skipped")
            return
        await ctx.deployer.create_namespace(self.namespace)
        await ctx.deployer.apply_configmap(
            self.realm_configmap, self.namespace, {"realm.json": realm}
        )

    async def values(self, ctx: ComponentContext) -> dict[str, Any]:
        creds = await ctx.database_credentials()
        settings = ctx.config.components.keycloak
        values: dict[str, Any] = {
            "auth": {
                "adminUser": settings.admin_user,
                "adminPassword": settings.admin_password,
            },
            "postgresql": {"enabled": False},
            "externalDatabase": {
                "host": creds.host,
                "port": creds.port,
                "user": creds.username,
                "password": creds.password,
                "database": self.database_name,
            },
            "service": {"type": "LoadBalancer"},
        }
        if self._realm_file(ctx) is not None:
            values["extraStartupArgs"] = "--import-realm"
            values["extraVolumes"] = [
                {"name": "realm", "configMap": {"name": self.realm_configmap}}
            ]
            values["extraVolumeMounts"] = [
                {"name": "realm", "mountPath": "/opt/bitnami/keycloak/data/import"}
            ]
        return values


class PolarisHandler(HelmComponent):
    """Iceberg REST catalog backed by the foundation database and data bucket."""

    name = "polaris"
    display_name = "Polaris"
    namespace = "polaris"
    release_name = "polaris"
    chart = "polaris/polaris"
    repo_name = "polaris"
    repo_url = "https://apache.github.io/polaris"
    hard_dependencies = frozenset({"keycloak"})
    install_timeout = "15m"
    ready_timeout_minutes = 10
    ready_selector = "app.kubernetes.io/name=polaris"
    database_name = "polaris"
    service_name = "polaris"
    service_port = 8181

    async def values(self, ctx: ComponentContext) -> dict[str, Any]:
        keycloak_url = await KeycloakHandler().endpoint(ctx)
        if not keycloak_url:
            raise DeploymentFailure("Keycloak URL not available. Deploy Keycloak first.")
        creds = await ctx.database_credentials()
        account = await ctx.provisioner.caller_account_id()
        bucket = ctx.state.foundation_outputs.get("data_bucket", ctx.config.data_bucket)
        region = ctx.config.aws.region
        return {
            "serviceAccount": {
                "annotations": {
                    "eks.amazonaws.com/role-arn": irsa_role_arn(account, ctx.config.name, self.name)
                }
            },
            "service": {"type": "LoadBalancer", "ports": [{"name": "http", "port": self.service_port}]},
            "persistence": {
                "type": "relational-jdbc",
                "relationalJdbc": {
                    "jdbcUrl": f"jdbc:postgresql://{creds.host}:{creds.port}/{self.database_name}",
                    "username": creds.username,
                    "password": creds.password,
                },
            },
            "authentication": {
                "type": "external",
                "oidc": {
                    "authServerUrl": f"{keycloak_url}/realms/{KEYCLOAK_REALM}",
                    "clientId": "polaris",
                },
            },
            "storage": {
                "s3": {
                    "region": region,
                    "warehouse": f"s3://{bucket}/warehouses",
                }
            },
        }


class TrinoHandler(HelmComponent):
    """Distributed SQL engine querying the Polaris catalog."""

    name = "trino"
    display_name = "Trino"
    namespace = "trino"
    release_name = "trino"
    chart = "trino/trino"
    repo_name = "trino"
    repo_url = "https://trinodb.github.io/charts"
    hard_dependencies = frozenset({"polaris"})
    install_timeout = "20m"
    ready_timeout_minutes = 15
    service_name = "trino"
    service_port = 8080

    coordinator_selector = "app=trino,component=coordinator"
    worker_selector = "app=trino,component=worker"

    async def values(self, ctx: ComponentContext) -> dict[str, Any]:
        polaris_url = await PolarisHandler().endpoint(ctx)
        if not polaris_url:
            raise DeploymentFailure("Polaris URL not available. Deploy Polaris first.")
        account = await ctx.provisioner.caller_account_id()
        catalog = "\n".join(
            [
                "connector.name=iceberg",
                "iceberg.catalog.type=rest",
                f"iceberg.rest-catalog.uri={polaris_url}/api/catalog",
                "iceberg.rest-catalog.warehouse=lakehouse",
                "fs.native-s3.enabled=true",
                f"s3.region={ctx.config.aws.region}",
            ]
        )
        return {
            "server": {"workers": 2},
            "service": {"type": "LoadBalancer", "port": self.service_port},
            "serviceAccount": {
                "create": True,
                "annotations": {
                    "eks.amazonaws.com/role-arn": irsa_role_arn(account, ctx.config.name, self.name)
                },
            },
            "catalogs": {"lakehouse": catalog},
        }

    async def check_ready(self, ctx: ComponentContext) -> PollResult:
        coordinator = await ctx.deployer.pod_phases(self.namespace, self.coordinator_selector)
        workers = await ctx.deployer.pod_phases(self.namespace, self.worker_selector)
        detail = f"coordinator {summarize_phases(coordinator)}, workers {summarize_phases(workers)}"
        if (
            coordinator
            and workers
            and all(phase == "Running" for phase in coordinator + workers)
        ):
            return PollResult.ready(detail)
        return PollResult.not_ready(detail)


class SparkHandler(HelmComponent):
    """Spark operator running batch jobs against the lakehouse."""

    name = "spark"
    display_name = "Spark Operator"
    namespace = "spark"
    release_name = "spark-operator"
    chart = "spark-operator/spark-operator"
    repo_name = "spark-operator"
    repo_url = "https://kubeflow.github.io/spark-operator"
    soft_dependencies = frozenset({"polaris"})
    install_timeout = "15m"
    ready_timeout_minutes = 10
    ready_selector = "app.kubernetes.io/name=spark-operator"

    async def values(self, ctx: ComponentContext) -> dict[str, Any]:
        account = await ctx.provisioner.caller_account_id()
        values: dict[str, Any] = {
            "spark": {
                "jobNamespaces": [self.namespace],
                "serviceAccount": {
                    "create": True,
                    "annotations": {
                        "eks.amazonaws.com/role-arn": irsa_role_arn(
                            account, ctx.config.name, self.name
                        )
                    },
                },
            },
            "webhook": {"enable": True},
        }
        polaris_url = await PolarisHandler().endpoint(ctx)
        if polaris_url:
            values["controller"] = {
                "env": [{"name": "POLARIS_CATALOG_URI", "value": f"{polaris_url}/api/catalog"}]
            }
        else:
            logger.warning("spark_without_catalog", hint="deploy polaris for Iceberg access")
        return values

    async def cleanup(self, ctx: ComponentContext) -> None:
        await ctx.deployer.delete_resources("sparkapplications", self.namespace)


class OPAHandler(HelmComponent):
    """Policy engine serving data-access policies to the query layer."""

    name = "opa"
    display_name = "OPA"
    namespace = "opa"
    release_name = "opa"
    chart = "opa/opa"
    repo_name = "opa"
    repo_url = "https://open-policy-agent.github.io/kube-mgmt/charts"
    soft_dependencies = frozenset({"keycloak"})
    install_timeout = "15m"
    ready_timeout_minutes = 10
    ready_selector = "app=opa"
    policies_configmap = "opa-policies"

    async def prepare(self, ctx: ComponentContext) -> None:
        policies_dir = ctx.config.components.opa.policies_dir
        path = ctx.paths.resolve(policies_dir) if policies_dir else None
        policies = sorted(path.glob("*.rego")) if path and path.is_dir() else []
        if not policies:
            logger.warning("opa_policies_missing", path=str(path) if path else None)
            return
        await ctx.deployer.create_namespace(self.namespace)
        await ctx.deployer.apply_configmap(
            self.policies_configmap, self.namespace, {p.name: p for p in policies}
        )

    async def values(self, ctx: ComponentContext) -> dict[str, Any]:
        return {
            "mgmt": {
                "configmapPolicies": {
                    "enabled": True,
                    "namespaces": [self.namespace],
                    "requireLabel": False,
                }
            },
        }

    async def cleanup(self, ctx: ComponentContext) -> None:
        await ctx.deployer.delete_resources("configmap", self.namespace, self.policies_configmap)


DEFAULT_COMPONENTS = ("keycloak", "polaris")


def register_default_handlers(registry: ComponentRegistry) -> ComponentRegistry:
    for handler in (KeycloakHandler(), PolarisHandler(), TrinoHandler(), SparkHandler(), OPAHandler()):
        registry.register(handler)
    return registry


def default_registry() -> ComponentRegistry:
    return register_default_handlers(ComponentRegistry())
