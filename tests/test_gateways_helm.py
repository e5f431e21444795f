"""Tests for gateways/helm.py and gateways/database.py."""

import base64
import json
from unittest.mock import AsyncMock, patch

import pytest

from labctl.core.errors import ClusterUnreachable, DeploymentFailure
from labctl.gateways.base import DatabaseCredentials
from labctl.gateways.database import PsqlDatabase
from labctl.gateways.helm import HelmDeployer
from labctl.gateways.process import CommandResult


def result(returncode=0, stdout="", stderr=""):
    return CommandResult(args=["helm"], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def helm():
    return HelmDeployer(context="demo-context")


class TestReleases:
    @pytest.mark.asyncio
    async def test_install_is_upgrade_install(self, helm, tmp_path):
        run = AsyncMock(return_value=result())
        with patch("labctl.gateways.helm.run_command", run):
            await helm.install("trino", "trino/trino", "trino", values_file=tmp_path / "v.yaml", timeout="20m")
        argv = run.call_args.args[0]
        assert argv[:4] == ["helm", "upgrade", "--install", "trino"]
        assert "--create-namespace" in argv
        assert argv[argv.index("--timeout") + 1] == "20m"
        assert argv[-2:] == ["--kube-context", "demo-context"]

    @pytest.mark.asyncio
    async def test_install_failure(self, helm):
        run = AsyncMock(return_value=result(1, stderr="Error: timed out waiting for the condition"))
        with patch("labctl.gateways.helm.run_command", run):
            with pytest.raises(DeploymentFailure, match="timed out waiting"):
                await helm.install("trino", "trino/trino", "trino")

    @pytest.mark.asyncio
    async def test_release_status(self, helm):
        payload = json.dumps({"name": "polaris", "namespace": "polaris", "info": {"status": "deployed"}, "version": 3})
        with patch("labctl.gateways.helm.run_command", AsyncMock(return_value=result(stdout=payload))):
            info = await helm.release_status("polaris", "polaris")
        assert info.status == "deployed"
        assert info.revision == 3

    @pytest.mark.asyncio
    async def test_absent_release(self, helm):
        missing = result(1, stderr="Error: release: not found")
        with patch("labctl.gateways.helm.run_command", AsyncMock(return_value=missing)):
            assert await helm.release_status("polaris", "polaris") is None
            assert await helm.exists("polaris", "polaris") is False
            await helm.uninstall("polaris", "polaris")

    @pytest.mark.asyncio
    async def test_existing_repo_is_fine(self, helm):
        exists = result(1, stderr='Error: repository name (bitnami) already exists')
        with patch("labctl.gateways.helm.run_command", AsyncMock(return_value=exists)):
            await helm.add_repo("bitnami", "https://charts.bitnami.com/bitnami")

    @pytest.mark.asyncio
    async def test_list_releases(self, helm):
        payload = json.dumps([{"name": "opa", "namespace": "opa", "status": "deployed", "revision": "2"}])
        with patch("labctl.gateways.helm.run_command", AsyncMock(return_value=result(stdout=payload))) as run:
            releases = await helm.list_releases()
        assert releases[0].revision == 2
        assert "--all-namespaces" in run.call_args.args[0]


class TestClusterObjects:
    @pytest.mark.asyncio
    async def test_node_status_counts_ready_nodes(self, helm):
        nodes = {
            "items": [
                {"status": {"conditions": [{"type": "Ready", "status": "True"}]}},
                {"status": {"conditions": [{"type": "Ready", "status": "False"}]}},
            ]
        }
        with patch("labctl.gateways.helm.run_command", AsyncMock(return_value=result(stdout=json.dumps(nodes)))):
            status = await helm.node_status()
        assert (status.ready, status.total, status.all_ready) == (1, 2, False)

    @pytest.mark.asyncio
    async def test_unreachable_api_is_distinguished(self, helm):
        down = result(1, stderr="Unable to connect to the server: dial tcp 10.0.0.1:443: i/o timeout")
        with patch("labctl.gateways.helm.run_command", AsyncMock(return_value=down)):
            with pytest.raises(ClusterUnreachable):
                await helm.node_status()

    @pytest.mark.asyncio
    async def test_unauthorized_is_not_unreachable(self, helm):
        denied = result(1, stderr="error: You must be logged in to the server (Unauthorized)")
        with patch("labctl.gateways.helm.run_command", AsyncMock(return_value=denied)):
            with pytest.raises(DeploymentFailure) as exc:
                await helm.node_status()
        assert not isinstance(exc.value, ClusterUnreachable)

    @pytest.mark.asyncio
    async def test_secret_is_base64_encoded(self, helm):
        run = AsyncMock(return_value=result())
        with patch("labctl.gateways.helm.run_command", run):
            await helm.apply_secret("aurora-credentials", "default", {"password": "pw", "port": 5432})
        manifest = json.loads(run.call_args.kwargs["input"])
        assert manifest["kind"] == "Secret"
        assert base64.b64decode(manifest["data"]["password"]) == b"pw"
        assert base64.b64decode(manifest["data"]["port"]) == b"5432"

    @pytest.mark.asyncio
    async def test_existing_namespace_is_fine(self, helm):
        exists = result(1, stderr='Error from server (AlreadyExists): namespaces "trino" already exists')
        with patch("labctl.gateways.helm.run_command", AsyncMock(return_value=exists)):
            await helm.create_namespace("trino")

    @pytest.mark.asyncio
    async def test_namespace_delete_never_raises(self, helm):
        with patch("labctl.gateways.helm.run_command", AsyncMock(return_value=result(1, stderr="forbidden"))):
            await helm.delete_namespace("trino")

    @pytest.mark.asyncio
    async def test_namespace_exists(self, helm):
        not_found = result(1, stderr='Error from server (NotFound): namespaces "trino" not found')
        with patch("labctl.gateways.helm.run_command", AsyncMock(return_value=not_found)):
            assert await helm.namespace_exists("trino") is False

    @pytest.mark.asyncio
    async def test_service_hostname(self, helm):
        svc = {"status": {"loadBalancer": {"ingress": [{"hostname": "abc.elb.amazonaws.com"}]}}}
        with patch("labctl.gateways.helm.run_command", AsyncMock(return_value=result(stdout=json.dumps(svc)))):
            assert await helm.service_hostname("trino", "trino") == "abc.elb.amazonaws.com"

    @pytest.mark.asyncio
    async def test_service_without_ingress(self, helm):
        svc = {"status": {"loadBalancer": {}}}
        with patch("labctl.gateways.helm.run_command", AsyncMock(return_value=result(stdout=json.dumps(svc)))):
            assert await helm.service_hostname("trino", "trino") is None

    @pytest.mark.asyncio
    async def test_configure_context_switches_context(self):
        deployer = HelmDeployer(aws_profile="lab")
        run = AsyncMock(return_value=result())
        with patch("labctl.gateways.helm.run_command", run):
            await deployer.configure_context("demo-eks", "us-east-1", "demo-context")
        argv = run.call_args.args[0]
        assert argv[:3] == ["aws", "eks", "update-kubeconfig"]
        assert argv[argv.index("--alias") + 1] == "demo-context"
        assert run.call_args.kwargs["env"] == {"AWS_PROFILE": "lab"}
        assert deployer.context == "demo-context"


class TestPsqlDatabase:
    CREDS = DatabaseCredentials(username="lab", password="pw", host="db.internal")

    @pytest.mark.asyncio
    async def test_creates_missing_database(self):
        run = AsyncMock(side_effect=[result(stdout=""), result()])
        with patch("labctl.gateways.database.run_command", run):
            assert await PsqlDatabase().create_database(self.CREDS, "polaris") is True
        assert run.call_args.args[0][-1] == 'CREATE DATABASE "polaris"'
        assert run.call_args.kwargs["env"]["PGPASSWORD"] == "pw"

    @pytest.mark.asyncio
    async def test_existing_database_is_kept(self):
        run = AsyncMock(return_value=result(stdout="1\n"))
        with patch("labctl.gateways.database.run_command", run):
            assert await PsqlDatabase().create_database(self.CREDS, "polaris") is False
        assert run.call_count == 1

    @pytest.mark.asyncio
    async def test_rejects_unsafe_names(self):
        with pytest.raises(ValueError):
            await PsqlDatabase().create_database(self.CREDS, "x; DROP DATABASE y")
