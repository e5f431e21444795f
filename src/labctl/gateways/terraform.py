"""Terraform-backed provisioner with AWS API inspection via aioboto3."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping

import aioboto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from labctl.core.errors import ProvisionerFailure, ProvisionerLockError, ProvisionerThrottled
from labctl.gateways.base import BackendConfig, ClusterStatus, ProvisionerGateway
from labctl.gateways.process import CommandResult, run_command, tool_available

logger = structlog.get_logger()

LOCK_ERROR_MARKER = "Error acquiring the state lock"

THROTTLING_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "ServiceUnavailableException",
    }
)


def backend_args(backend: BackendConfig | None) -> list[str]:
    if backend is None:
        return []
    return [
        "-reconfigure",
        f"-backend-config=bucket={backend.bucket}",
        f"-backend-config=key={backend.key}",
        f"-backend-config=region={backend.region}",
        f"-backend-config=dynamodb_table={backend.lock_table}",
        "-backend-config=encrypt=true",
    ]


class TerraformProvisioner(ProvisionerGateway):
    """Runs ``terraform`` against a module directory.

    Variables are handed over as a temporary ``.tfvars.json`` file, and the
    S3 backend is configured on every ``init`` so each command targets the
    right state object.
    """

    def __init__(self, region: str, profile: str | None = None, binary: str = "terraform") -> None:
        self.region = region
        self.profile = profile
        self.binary = binary
        self._session = aioboto3.Session(profile_name=profile, region_name=region)

    def missing_tools(self) -> list[str]:
        return [] if tool_available(self.binary) else [self.binary]

    @property
    def _env(self) -> dict[str, str]:
        env = {"TF_IN_AUTOMATION": "1", "AWS_REGION": self.region}
        if self.profile:
            env["AWS_PROFILE"] = self.profile
        return env

    async def _run(self, module: Path, *args: str) -> CommandResult:
        result = await run_command([self.binary, f"-chdir={module}", *args], env=self._env)
        if not result.ok:
            if LOCK_ERROR_MARKER in result.stderr:
                raise ProvisionerLockError(
                    f"State for {module.name} is locked by another operation. "
                    "Wait for it to finish, or release the lock with 'terraform force-unlock'",
                    details={"module": str(module)},
                )
            raise ProvisionerFailure(
                f"terraform {args[0]} failed for {module.name} (exit {result.returncode}): "
                f"{result.stderr_tail()}",
                details={"module": str(module), "exit_code": result.returncode},
            )
        return result

    async def _init(self, module: Path, backend: BackendConfig | None) -> None:
        await self._run(module, "init", "-input=false", "-no-color", *backend_args(backend))

    async def _with_var_file(self, variables: Mapping[str, Any], module: Path, *args: str):
        fd, path = tempfile.mkstemp(suffix=".tfvars.json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(dict(variables), f)
            return await self._run(module, *args, f"-var-file={path}")
        finally:
            Path(path).unlink(missing_ok=True)

    async def plan(self, module, variables, backend=None) -> str:
        await self._init(module, backend)
        result = await self._with_var_file(variables, module, "plan", "-input=false", "-no-color")
        return result.stdout

    async def apply(self, module, variables, backend=None) -> dict[str, Any]:
        await self._init(module, backend)
        logger.info("terraform_apply", module=module.name)
        await self._with_var_file(
            variables, module, "apply", "-input=false", "-no-color", "-auto-approve"
        )
        return await self._outputs(module)

    async def destroy(self, module, variables, backend=None) -> None:
        await self._init(module, backend)
        logger.info("terraform_destroy", module=module.name)
        await self._with_var_file(
            variables, module, "destroy", "-input=false", "-no-color", "-auto-approve"
        )

    async def output(self, module, backend=None) -> dict[str, Any]:
        await self._init(module, backend)
        return await self._outputs(module)

    async def _outputs(self, module: Path) -> dict[str, Any]:
        result = await self._run(module, "output", "-json", "-no-color")
        try:
            raw = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise ProvisionerFailure(f"Unreadable terraform outputs for {module.name}: {e}") from e
        return {name: entry.get("value") for name, entry in raw.items()}

    # === Live inspection ===

    async def cluster_status(self, name: str) -> ClusterStatus | None:
        try:
            async with self._session.client("eks") as client:
                response = await client.describe_cluster(name=name)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code == "ResourceNotFoundException":
                return None
            if code in THROTTLING_CODES:
                raise ProvisionerThrottled(f"Throttled describing cluster {name}: {code}") from e
            raise ProvisionerFailure(f"Could not describe cluster {name}: {e}") from e
        except BotoCoreError as e:
            raise ProvisionerFailure(f"Could not describe cluster {name}: {e}") from e
        status = response["cluster"]["status"]
        try:
            return ClusterStatus(status)
        except ValueError:
            logger.warning("unknown_cluster_status", cluster=name, status=status)
            return ClusterStatus.PENDING

    async def object_store_exists(self, bucket: str) -> bool:
        try:
            async with self._session.client("s3") as client:
                await client.head_bucket(Bucket=bucket)
        except ClientError:
            return False
        return True

    async def database_status(self, identifier: str) -> str | None:
        try:
            async with self._session.client("rds") as client:
                response = await client.describe_db_clusters(DBClusterIdentifier=identifier)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "DBClusterNotFoundFault":
                return None
            raise ProvisionerFailure(f"Could not describe database {identifier}: {e}") from e
        clusters = response.get("DBClusters") or []
        return clusters[0].get("Status") if clusters else None

    async def read_secret(self, secret_id: str) -> dict[str, Any]:
        try:
            async with self._session.client("secretsmanager") as client:
                response = await client.get_secret_value(SecretId=secret_id)
        except (ClientError, BotoCoreError) as e:
            raise ProvisionerFailure(f"Could not read secret {secret_id}: {e}") from e
        secret_string = response.get("SecretString")
        if not secret_string:
            raise ProvisionerFailure(f"Secret {secret_id} has no string value")
        try:
            return json.loads(secret_string)
        except json.JSONDecodeError as e:
            raise ProvisionerFailure(f"Secret {secret_id} is not JSON") from e

    async def caller_account_id(self) -> str:
        try:
            async with self._session.client("sts") as client:
                response = await client.get_caller_identity()
        except (ClientError, BotoCoreError) as e:
            raise ProvisionerFailure(f"Could not determine AWS account: {e}") from e
        return response["Account"]
