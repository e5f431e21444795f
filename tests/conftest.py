"""Root test configuration and in-memory gateways."""

import logging
from pathlib import Path
from typing import Any, Mapping

import pytest
import structlog

from labctl.config.loader import LabPaths
from labctl.config.models import LabConfig
from labctl.gateways.base import (
    ClusterStatus,
    DatabaseCredentials,
    DatabaseGateway,
    DeploymentGateway,
    NodeStatus,
    ProvisionerGateway,
    ReleaseInfo,
)
from labctl.orchestrator import PhaseOrchestrator
from labctl.polling import ReadinessPoller
from labctl.state.store import StateStore


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


LAYER_OUTPUTS = {
    "bootstrap": {"state_bucket": "demo-tfstate", "state_lock_table": "demo-tflock"},
    "foundation": {
        "vpc_id": "vpc-0abc",
        "aurora_cluster_endpoint": "demo-aurora.cluster-xyz.us-east-1.rds.amazonaws.com",
        "aurora_secret_arn": "arn:aws:secretsmanager:us-east-1:123456789012:secret:demo-db",
        "data_bucket": "demo-lakehouse-data",
    },
    "ephemeral": {"cluster_name": "demo-eks", "cluster_endpoint": "https://eks.example"},
}


class FakeProvisioner(ProvisionerGateway):
    """Records mutating calls in ``calls`` as ``(operation, layer)`` tuples."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.backends: dict[str, Any] = {}
        self.fail: dict[tuple[str, str], Exception] = {}
        self.cluster_statuses: list[ClusterStatus | None] = []
        self.cluster_errors: list[Exception] = []
        self.missing: list[str] = []
        self.bucket_present = True

    def missing_tools(self):
        return list(self.missing)

    def _maybe_fail(self, operation, layer):
        error = self.fail.get((operation, layer))
        if error is not None:
            raise error

    async def plan(self, module, variables, backend=None):
        self._maybe_fail("plan", module.name)
        return f"Plan: {module.name}"

    async def apply(self, module, variables, backend=None):
        self.calls.append(("apply", module.name))
        self.backends[module.name] = backend
        self._maybe_fail("apply", module.name)
        return dict(LAYER_OUTPUTS[module.name])

    async def destroy(self, module, variables, backend=None):
        self.calls.append(("destroy", module.name))
        self._maybe_fail("destroy", module.name)

    async def output(self, module, backend=None):
        return dict(LAYER_OUTPUTS[module.name])

    async def cluster_status(self, name):
        if self.cluster_errors:
            raise self.cluster_errors.pop(0)
        if len(self.cluster_statuses) > 1:
            return self.cluster_statuses.pop(0)
        if self.cluster_statuses:
            return self.cluster_statuses[0]
        return ClusterStatus.ACTIVE

    async def object_store_exists(self, bucket):
        return self.bucket_present

    async def database_status(self, identifier):
        return "available"

    async def read_secret(self, secret_id):
        return {"username": "lab", "password": "secret", "host": "db.internal", "port": 5432}

    async def caller_account_id(self):
        return "123456789012"


class FakeDeployer(DeploymentGateway):
    """In-memory cluster. Mutating calls are recorded in ``calls``."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.context: str | None = None
        self.releases: dict[str, str] = {}
        self.namespaces: set[str] = set()
        self.fail_install: dict[str, Exception] = {}
        self.keep_failed_releases = False
        self.fail_uninstall: dict[str, Exception] = {}
        self.nodes = NodeStatus(ready=2, total=2)
        self.node_errors: list[Exception] = []
        self.phases: dict[str, list[str]] = {}
        self.missing: list[str] = []

    def missing_tools(self):
        return list(self.missing)

    def use_context(self, context):
        self.context = context

    async def configure_context(self, cluster_name, region, context):
        self.calls.append(("configure_context", cluster_name))
        self.context = context

    async def node_status(self):
        if self.node_errors:
            raise self.node_errors.pop(0)
        return self.nodes

    async def add_repo(self, name, url):
        self.calls.append(("add_repo", name))

    async def update_repos(self):
        self.calls.append(("update_repos",))

    async def install(self, release, chart, namespace, values_file=None, wait=True, timeout="10m"):
        self.calls.append(("install", release))
        error = self.fail_install.get(release)
        if error is None or self.keep_failed_releases:
            self.releases[release] = namespace
            self.namespaces.add(namespace)
        if error is not None:
            raise error

    async def uninstall(self, release, namespace):
        self.calls.append(("uninstall", release))
        error = self.fail_uninstall.get(release)
        if error is not None:
            raise error
        self.releases.pop(release, None)

    async def release_status(self, release, namespace):
        if self.releases.get(release) == namespace:
            return ReleaseInfo(name=release, namespace=namespace, status="deployed", revision=1)
        return None

    async def list_releases(self, namespace=None):
        return [
            ReleaseInfo(name=name, namespace=ns, status="deployed")
            for name, ns in self.releases.items()
            if namespace in (None, ns)
        ]

    async def create_namespace(self, name):
        self.calls.append(("create_namespace", name))
        self.namespaces.add(name)

    async def delete_namespace(self, name):
        self.calls.append(("delete_namespace", name))
        self.namespaces.discard(name)

    async def namespace_exists(self, name):
        return name in self.namespaces

    async def apply_secret(self, name, namespace, data):
        self.calls.append(("apply_secret", name, namespace))

    async def apply_configmap(self, name, namespace, files: Mapping[str, Path]):
        self.calls.append(("apply_configmap", name, namespace))

    async def delete_resources(self, kind, namespace, name=None):
        self.calls.append(("delete_resources", kind, namespace))

    async def pod_phases(self, namespace, selector):
        return self.phases.get(namespace, ["Running"])

    async def service_hostname(self, name, namespace):
        return f"{name}.elb.example"


class FakeDatabase(DatabaseGateway):
    def __init__(self):
        self.created: list[str] = []
        self.missing: list[str] = []

    def missing_tools(self):
        return list(self.missing)

    async def create_database(self, credentials: DatabaseCredentials, name: str) -> bool:
        self.created.append(name)
        return True


class FakePrompter:
    def __init__(self, confirm: bool = True, typed: bool = True):
        self.answer = confirm
        self.typed = typed
        self.asked: list[str] = []

    def confirm(self, message):
        self.asked.append(message)
        return self.answer

    def confirm_typed(self, message, expected):
        self.asked.append(message)
        return self.typed


@pytest.fixture
def lab_config():
    return LabConfig.model_validate(
        {
            "lab": {"name": "demo"},
            "timeouts": {
                "poll_interval_seconds": 0.01,
                "nodes_poll_interval_seconds": 0.01,
                "pods_poll_interval_seconds": 0.01,
                "cluster_active_minutes": 0.005,
                "nodes_ready_minutes": 0.005,
                "shutdown_grace_seconds": 0,
            },
        }
    )


@pytest.fixture
def lab_paths(tmp_path):
    return LabPaths(root=tmp_path)


@pytest.fixture
def store(lab_paths):
    return StateStore(lab_paths.state_dir)


@pytest.fixture
def provisioner():
    return FakeProvisioner()


@pytest.fixture
def deployer():
    return FakeDeployer()


@pytest.fixture
def database():
    return FakeDatabase()


@pytest.fixture
def prompter():
    return FakePrompter()


@pytest.fixture
def orchestrator(lab_config, lab_paths, store, provisioner, deployer, database, prompter):
    return PhaseOrchestrator(
        config=lab_config,
        paths=lab_paths,
        store=store,
        provisioner=provisioner,
        deployer=deployer,
        database=database,
        prompter=prompter,
        poller=ReadinessPoller(),
    )


@pytest.fixture
def bootstrapped(store):
    """Persist a lab whose state backend and foundation exist."""
    state = store.load("demo")
    state.bootstrapped = True
    state.bootstrap_outputs = dict(LAYER_OUTPUTS["bootstrap"])
    state.foundation_deployed = True
    state.foundation_outputs = dict(LAYER_OUTPUTS["foundation"])
    store.save(state)
    return state


@pytest.fixture
def running(store, bootstrapped):
    """Persist a lab with a ready cluster and essentials."""
    state = store.load("demo")
    state.cluster_deployed = True
    state.cluster_outputs = dict(LAYER_OUTPUTS["ephemeral"])
    state.cluster_ready = True
    state.cluster_context = "demo-context"
    state.essentials_deployed = True
    store.save(state)
    return state
