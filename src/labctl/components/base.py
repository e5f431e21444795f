"""Shared behaviour for Helm-packaged components."""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar, Mapping

import structlog
import yaml

from labctl.components.registry import ComponentContext
from labctl.core.errors import ClusterUnreachable
from labctl.dependencies.graph import ComponentSpec
from labctl.polling import PollResult
from labctl.state.models import ComponentRecord, utcnow

logger = structlog.get_logger()


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into ``base`` recursively; override wins on conflicts."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def summarize_phases(phases: list[str]) -> str:
    running = sum(1 for phase in phases if phase == "Running")
    return f"{running}/{len(phases)} running"


class HelmComponent:
    """A component installed from a Helm chart into its own namespace.

    Subclasses describe the chart and fill in :meth:`values`; ``prepare``
    and ``cleanup`` hook in work that must happen before install and before
    uninstall.
    """

    name: ClassVar[str]
    display_name: ClassVar[str]
    namespace: ClassVar[str]
    release_name: ClassVar[str]
    chart: ClassVar[str]
    repo_name: ClassVar[str]
    repo_url: ClassVar[str]
    hard_dependencies: ClassVar[frozenset[str]] = frozenset()
    soft_dependencies: ClassVar[frozenset[str]] = frozenset()

    install_timeout: ClassVar[str] = "15m"
    ready_timeout_minutes: ClassVar[float] = 10
    ready_selector: ClassVar[str] = ""
    database_name: ClassVar[str | None] = None
    service_name: ClassVar[str | None] = None
    service_port: ClassVar[int | None] = None

    @property
    def spec(self) -> ComponentSpec:
        return ComponentSpec(
            name=self.name,
            namespace=self.namespace,
            release_name=self.release_name,
            hard_dependencies=self.hard_dependencies,
            soft_dependencies=self.soft_dependencies,
        )

    def overrides(self, ctx: ComponentContext) -> Mapping[str, Any]:
        settings = getattr(ctx.config.components, self.name, None)
        return getattr(settings, "values", {}) or {}

    async def prepare(self, ctx: ComponentContext) -> None:
        if self.database_name:
            await ctx.create_database(self.database_name)

    async def values(self, ctx: ComponentContext) -> dict[str, Any]:
        return {}

    async def cleanup(self, ctx: ComponentContext) -> None:
        pass

    def write_values(self, ctx: ComponentContext, values: Mapping[str, Any]) -> Path:
        ctx.paths.values_dir.mkdir(parents=True, exist_ok=True)
        path = ctx.paths.values_dir / f"{self.name}-values.yaml"
        with open(path, "w") as f:
            yaml.safe_dump(dict(values), f, default_flow_style=False, sort_keys=False)
        return path

    async def deploy(self, ctx: ComponentContext) -> ComponentRecord:
        log = logger.bind(component=self.name)
        await self.prepare(ctx)

        async with ctx.repo_lock:
            await ctx.deployer.add_repo(self.repo_name, self.repo_url)
            await ctx.deployer.update_repos()

        values = deep_merge(await self.values(ctx), self.overrides(ctx))
        values_file = self.write_values(ctx, values)

        log.info("component_installing", chart=self.chart, namespace=self.namespace)
        await ctx.deployer.install(
            self.release_name,
            self.chart,
            self.namespace,
            values_file=values_file,
            wait=True,
            timeout=self.install_timeout,
        )
        await self.wait_ready(ctx)
        log.info("component_deployed")
        return ComponentRecord(
            deployed=True,
            namespace=self.namespace,
            release_name=self.release_name,
            deployed_at=utcnow(),
        )

    async def undeploy(self, ctx: ComponentContext) -> None:
        await self.cleanup(ctx)
        await ctx.deployer.uninstall(self.release_name, self.namespace)
        logger.info("component_undeployed", component=self.name)

    async def check_ready(self, ctx: ComponentContext) -> PollResult:
        phases = await ctx.deployer.pod_phases(self.namespace, self.ready_selector)
        if not phases:
            return PollResult.not_ready("no pods scheduled yet")
        if all(phase == "Running" for phase in phases):
            return PollResult.ready(summarize_phases(phases))
        return PollResult.not_ready(summarize_phases(phases))

    async def wait_ready(self, ctx: ComponentContext) -> None:
        await ctx.poller.poll_until(
            lambda: self.check_ready(ctx),
            interval=ctx.config.timeouts.pods_poll_interval_seconds,
            timeout=self.ready_timeout_minutes * 60,
            description=f"{self.display_name} pods",
            transient=(ClusterUnreachable,),
        )

    async def endpoint(self, ctx: ComponentContext) -> str | None:
        if not self.service_name:
            return None
        host = await ctx.deployer.service_hostname(self.service_name, self.namespace)
        if not host:
            return None
        return f"http://{host}:{self.service_port}" if self.service_port else f"http://{host}"
