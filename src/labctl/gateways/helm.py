"""Helm + kubectl backed deployment gateway."""

from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any, Mapping

import structlog

from labctl.core.errors import ClusterUnreachable, DeploymentFailure
from labctl.gateways.base import DeploymentGateway, NodeStatus, ReleaseInfo
from labctl.gateways.process import CommandResult, run_command, tool_available

logger = structlog.get_logger()

UNREACHABLE_MARKERS = (
    "unable to connect to the server",
    "connection refused",
    "connection reset by peer",
    "i/o timeout",
    "no such host",
    "tls handshake timeout",
)


def is_unreachable(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in UNREACHABLE_MARKERS)


class HelmDeployer(DeploymentGateway):
    """Drives ``helm`` and ``kubectl`` against one kube context.

    Until :meth:`configure_context` is called, commands use whatever context
    is current in the user's kubeconfig.
    """

    def __init__(
        self,
        context: str | None = None,
        helm: str = "helm",
        kubectl: str = "kubectl",
        aws: str = "aws",
        aws_profile: str | None = None,
    ) -> None:
        self.context = context
        self.helm = helm
        self.kubectl = kubectl
        self.aws = aws
        self.aws_profile = aws_profile

    def missing_tools(self) -> list[str]:
        return [tool for tool in (self.helm, self.kubectl, self.aws) if not tool_available(tool)]

    async def _helm(self, *args: str, check: bool = True) -> CommandResult:
        argv = [self.helm, *args]
        if self.context:
            argv += ["--kube-context", self.context]
        result = await run_command(argv)
        if check and not result.ok:
            raise DeploymentFailure(
                f"helm {args[0]} failed (exit {result.returncode}): {result.stderr_tail()}",
                details={"command": result.command},
            )
        return result

    async def _kubectl(self, *args: str, input: str | None = None, check: bool = True):
        argv = [self.kubectl, *args]
        if self.context:
            argv += ["--context", self.context]
        result = await run_command(argv, input=input)
        if check and not result.ok:
            error = ClusterUnreachable if is_unreachable(result.stderr) else DeploymentFailure
            raise error(
                f"kubectl {args[0]} failed (exit {result.returncode}): {result.stderr_tail()}",
                details={"command": result.command},
            )
        return result

    def use_context(self, context: str) -> None:
        self.context = context

    async def configure_context(self, cluster_name: str, region: str, context: str) -> None:
        argv = [
            self.aws, "eks", "update-kubeconfig",
            "--name", cluster_name,
            "--region", region,
            "--alias", context,
        ]
        env = {"AWS_PROFILE": self.aws_profile} if self.aws_profile else None
        result = await run_command(argv, env=env)
        if not result.ok:
            raise DeploymentFailure(
                f"Could not configure kube context {context}: {result.stderr_tail()}",
                details={"cluster": cluster_name},
            )
        self.context = context
        logger.info("kube_context_configured", context=context, cluster=cluster_name)

    async def node_status(self) -> NodeStatus:
        result = await self._kubectl("get", "nodes", "-o", "json")
        items = json.loads(result.stdout or "{}").get("items", [])
        ready = 0
        for node in items:
            conditions = node.get("status", {}).get("conditions", [])
            if any(c.get("type") == "Ready" and c.get("status") == "True" for c in conditions):
                ready += 1
        return NodeStatus(ready=ready, total=len(items))

    # === Releases ===

    async def add_repo(self, name: str, url: str) -> None:
        result = await self._helm("repo", "add", name, url, check=False)
        if not result.ok and "already exists" not in result.stderr:
            raise DeploymentFailure(
                f"helm repo add {name} failed: {result.stderr_tail()}", details={"url": url}
            )

    async def update_repos(self) -> None:
        await self._helm("repo", "update")

    async def install(
        self,
        release: str,
        chart: str,
        namespace: str,
        values_file: Path | None = None,
        wait: bool = True,
        timeout: str = "10m",
    ) -> None:
        args = ["upgrade", "--install", release, chart, "--namespace", namespace, "--create-namespace"]
        if values_file:
            args += ["--values", str(values_file)]
        if wait:
            args += ["--wait", "--timeout", timeout]
        logger.info("helm_install", release=release, chart=chart, namespace=namespace)
        await self._helm(*args)

    async def uninstall(self, release: str, namespace: str) -> None:
        result = await self._helm("uninstall", release, "--namespace", namespace, check=False)
        if result.ok:
            logger.info("helm_uninstalled", release=release, namespace=namespace)
        elif "not found" in result.stderr:
            logger.debug("helm_release_absent", release=release, namespace=namespace)
        else:
            raise DeploymentFailure(
                f"helm uninstall {release} failed: {result.stderr_tail()}",
                details={"namespace": namespace},
            )

    async def release_status(self, release: str, namespace: str) -> ReleaseInfo | None:
        result = await self._helm(
            "status", release, "--namespace", namespace, "--output", "json", check=False
        )
        if not result.ok:
            if "not found" in result.stderr:
                return None
            raise DeploymentFailure(
                f"helm status {release} failed: {result.stderr_tail()}",
                details={"namespace": namespace},
            )
        data = json.loads(result.stdout)
        return ReleaseInfo(
            name=data.get("name", release),
            namespace=data.get("namespace", namespace),
            status=data.get("info", {}).get("status", "unknown"),
            revision=data.get("version"),
        )

    async def list_releases(self, namespace: str | None = None) -> list[ReleaseInfo]:
        scope = ["--namespace", namespace] if namespace else ["--all-namespaces"]
        result = await self._helm("list", "--output", "json", *scope)
        return [
            ReleaseInfo(
                name=item["name"],
                namespace=item["namespace"],
                status=item.get("status", "unknown"),
                revision=int(item["revision"]) if item.get("revision") else None,
            )
            for item in json.loads(result.stdout or "[]")
        ]

    # === Cluster objects ===

    async def create_namespace(self, name: str) -> None:
        result = await self._kubectl("create", "namespace", name, check=False)
        if not result.ok and "AlreadyExists" not in result.stderr:
            raise DeploymentFailure(f"Could not create namespace {name}: {result.stderr_tail()}")

    async def delete_namespace(self, name: str) -> None:
        result = await self._kubectl(
            "delete", "namespace", name, "--ignore-not-found=true", "--wait=false", check=False
        )
        if not result.ok:
            logger.warning("namespace_delete_failed", namespace=name, error=result.stderr_tail(3))

    async def namespace_exists(self, name: str) -> bool:
        result = await self._kubectl("get", "namespace", name, "-o", "name", check=False)
        if result.ok:
            return True
        if "NotFound" in result.stderr:
            return False
        error = ClusterUnreachable if is_unreachable(result.stderr) else DeploymentFailure
        raise error(f"Could not look up namespace {name}: {result.stderr_tail()}")

    async def _apply_manifest(self, manifest: dict[str, Any]) -> None:
        await self._kubectl("apply", "-f", "-", input=json.dumps(manifest))

    async def apply_secret(self, name: str, namespace: str, data: Mapping[str, Any]) -> None:
        encoded = {
            key: base64.b64encode(str(value).encode()).decode() for key, value in data.items()
        }
        await self._apply_manifest(
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "type": "Opaque",
                "metadata": {"name": name, "namespace": namespace},
                "data": encoded,
            }
        )

    async def apply_configmap(self, name: str, namespace: str, files: Mapping[str, Path]) -> None:
        await self._apply_manifest(
            {
                "apiVersion": "v1",
                "kind": "ConfigMap",
                "metadata": {"name": name, "namespace": namespace},
                "data": {key: Path(path).read_text() for key, path in files.items()},
            }
        )

    async def delete_resources(self, kind: str, namespace: str, name: str | None = None) -> None:
        target = [name] if name else ["--all"]
        result = await self._kubectl(
            "delete", kind, *target, "-n", namespace, "--ignore-not-found=true", check=False
        )
        if not result.ok:
            logger.warning(
                "resource_delete_failed", kind=kind, namespace=namespace, error=result.stderr_tail(3)
            )

    async def pod_phases(self, namespace: str, selector: str) -> list[str]:
        result = await self._kubectl("get", "pods", "-n", namespace, "-l", selector, "-o", "json")
        items = json.loads(result.stdout or "{}").get("items", [])
        return [item.get("status", {}).get("phase", "Unknown") for item in items]

    async def service_hostname(self, name: str, namespace: str) -> str | None:
        result = await self._kubectl("get", "svc", name, "-n", namespace, "-o", "json", check=False)
        if not result.ok:
            return None
        ingress = json.loads(result.stdout).get("status", {}).get("loadBalancer", {}).get("ingress")
        if not ingress:
            return None
        return ingress[0].get("hostname") or ingress[0].get("ip")
