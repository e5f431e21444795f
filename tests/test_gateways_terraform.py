"""Tests for gateways/terraform.py."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from labctl.core.errors import ProvisionerFailure, ProvisionerLockError, ProvisionerThrottled
from labctl.gateways.base import BackendConfig
from labctl.gateways.process import CommandResult
from labctl.gateways.terraform import TerraformProvisioner, backend_args

MODULE = Path("/lab/terraform/foundation")
BACKEND = BackendConfig(
    bucket="demo-tfstate", key="demo/foundation/terraform.tfstate", region="us-east-1", lock_table="demo-tflock"
)


def ok(stdout=""):
    return CommandResult(args=["terraform"], returncode=0, stdout=stdout, stderr="")


def failed(stderr, code=1):
    return CommandResult(args=["terraform"], returncode=code, stdout="", stderr=stderr)


@pytest.fixture
def terraform():
    return TerraformProvisioner(region="us-east-1", profile="lab")


class TestBackendArgs:
    def test_local_state(self):
        assert backend_args(None) == []

    def test_remote_state(self):
        args = backend_args(BACKEND)
        assert args[0] == "-reconfigure"
        assert "-backend-config=bucket=demo-tfstate" in args
        assert "-backend-config=dynamodb_table=demo-tflock" in args


class TestTerraformProvisioner:
    @pytest.mark.asyncio
    async def test_apply_inits_applies_and_reads_outputs(self, terraform):
        outputs = json.dumps({"vpc_id": {"value": "vpc-1", "type": "string"}})
        seen_vars = {}

        async def fake_run(args, **kwargs):
            var_file = next((a for a in args if a.startswith("-var-file=")), None)
            if var_file:
                seen_vars.update(json.loads(Path(var_file.split("=", 1)[1]).read_text()))
            return ok(outputs if "output" in args else "")

        with patch("labctl.gateways.terraform.run_command", side_effect=fake_run) as run:
            result = await terraform.apply(MODULE, {"lab_name": "demo"}, BACKEND)

        assert result == {"vpc_id": "vpc-1"}
        assert seen_vars == {"lab_name": "demo"}
        commands = [call.args[0] for call in run.call_args_list]
        assert [c[2] for c in commands] == ["init", "apply", "output"]
        assert commands[0][1] == f"-chdir={MODULE}"
        assert "-auto-approve" in commands[1]
        env = run.call_args_list[0].kwargs["env"]
        assert env["AWS_PROFILE"] == "lab"
        assert env["TF_IN_AUTOMATION"] == "1"

    @pytest.mark.asyncio
    async def test_var_file_is_removed(self, terraform):
        paths = []

        async def fake_run(args, **kwargs):
            paths.extend(a.split("=", 1)[1] for a in args if a.startswith("-var-file="))
            return ok()

        with patch("labctl.gateways.terraform.run_command", side_effect=fake_run):
            await terraform.destroy(MODULE, {"lab_name": "demo"}, BACKEND)

        assert paths
        assert not any(Path(p).exists() for p in paths)

    @pytest.mark.asyncio
    async def test_failure_includes_stderr(self, terraform):
        run = AsyncMock(side_effect=[ok(), failed("Error: creating VPC: quota exceeded")])
        with patch("labctl.gateways.terraform.run_command", run):
            with pytest.raises(ProvisionerFailure, match="quota exceeded") as exc:
                await terraform.apply(MODULE, {}, BACKEND)
        assert not isinstance(exc.value, ProvisionerLockError)

    @pytest.mark.asyncio
    async def test_lock_contention(self, terraform):
        run = AsyncMock(return_value=failed("Error acquiring the state lock\nLock Info: ..."))
        with patch("labctl.gateways.terraform.run_command", run):
            with pytest.raises(ProvisionerLockError, match="locked"):
                await terraform.plan(MODULE, {}, BACKEND)

    @pytest.mark.asyncio
    async def test_unreadable_outputs(self, terraform):
        run = AsyncMock(return_value=ok("not json"))
        with patch("labctl.gateways.terraform.run_command", run):
            with pytest.raises(ProvisionerFailure, match="Unreadable"):
                await terraform.output(MODULE)

    def test_missing_tools(self, terraform):
        with patch("labctl.gateways.terraform.tool_available", return_value=False):
            assert terraform.missing_tools() == ["terraform"]


def eks_session(error):
    client = AsyncMock()
    client.describe_cluster.side_effect = error
    session = MagicMock()
    session.client.return_value.__aenter__.return_value = client
    return session


def client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "DescribeCluster")


class TestClusterStatus:
    @pytest.mark.asyncio
    async def test_not_found_is_none(self, terraform):
        terraform._session = eks_session(client_error("ResourceNotFoundException"))
        assert await terraform.cluster_status("demo-eks") is None

    @pytest.mark.asyncio
    async def test_throttling_is_distinguished(self, terraform):
        terraform._session = eks_session(client_error("ThrottlingException"))
        with pytest.raises(ProvisionerThrottled):
            await terraform.cluster_status("demo-eks")

    @pytest.mark.asyncio
    async def test_access_denied_is_not_throttling(self, terraform):
        terraform._session = eks_session(client_error("AccessDeniedException"))
        with pytest.raises(ProvisionerFailure) as exc:
            await terraform.cluster_status("demo-eks")
        assert not isinstance(exc.value, ProvisionerThrottled)
