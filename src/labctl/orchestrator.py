"""
Lab lifecycle orchestrator.

Drives the phases of a lab: state backend and foundation (``bootstrap``),
cluster, essentials and components (``up``), and teardown (``down``).
State is loaded at the start of every command and saved after every
durable step, so an interrupted command resumes from the last completed
step when re-run.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional, Protocol, Sequence

import structlog

from labctl.components.handlers import CREDENTIALS_SECRET, DEFAULT_COMPONENTS, default_registry
from labctl.components.registry import ComponentContext, ComponentRegistry
from labctl.config.loader import LabPaths
from labctl.config.models import LabConfig
from labctl.core.errors import (
    ClusterUnreachable,
    DeploymentFailure,
    LabError,
    PreflightError,
    ProvisionerFailure,
    ProvisionerThrottled,
    ReadinessTimeout,
)
from labctl.dependencies.graph import DeployPlan, FailurePolicy
from labctl.gateways.base import (
    ClusterStatus,
    DatabaseGateway,
    DeploymentGateway,
    ProvisionerGateway,
)
from labctl.orchestration.layers import (
    BOOTSTRAP,
    EPHEMERAL,
    FOUNDATION,
    backend_for,
    layer_variables,
    require_outputs,
)
from labctl.orchestration.results import (
    ComponentOutcome,
    DriftFinding,
    PhaseResult,
    ResultCollector,
)
from labctl.polling import PollResult, ReadinessPoller
from labctl.state.models import ComponentRecord, LabState
from labctl.state.store import StateStore

logger = structlog.get_logger()

CREDENTIALS_NAMESPACE = "default"
NAMESPACE_POLL_SECONDS = 5


class Prompter(Protocol):
    def confirm(self, message: str) -> bool:
        ...

    def confirm_typed(self, message: str, expected: str) -> bool:
        ...


class _RefuseAll:
    """Prompter used when none is supplied: destructive commands need ``--force``."""

    def confirm(self, message: str) -> bool:
        return False

    def confirm_typed(self, message: str, expected: str) -> bool:
        return False


def _message(error: BaseException) -> str:
    return error.message if isinstance(error, LabError) else f"{type(error).__name__}: {error}"


class PhaseOrchestrator:
    """State machine for the lab lifecycle."""

    def __init__(
        self,
        config: LabConfig,
        paths: LabPaths,
        store: StateStore,
        provisioner: ProvisionerGateway,
        deployer: DeploymentGateway,
        database: Optional[DatabaseGateway] = None,
        registry: Optional[ComponentRegistry] = None,
        prompter: Optional[Prompter] = None,
        poller: Optional[ReadinessPoller] = None,
        on_step: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.config = config
        self.paths = paths
        self.store = store
        self.provisioner = provisioner
        self.deployer = deployer
        self.database = database
        self.registry = registry or default_registry()
        self.resolver = self.registry.resolver()
        self.prompter: Prompter = prompter or _RefuseAll()
        self.poller = poller or ReadinessPoller()
        self.on_step = on_step

    @property
    def lab_name(self) -> str:
        return self.config.lab.name

    def cancel(self) -> None:
        """Stop any readiness wait at its next attempt."""
        self.poller.cancel()

    def status(self) -> LabState:
        return self.store.load(self.lab_name)

    # === bootstrap ===

    async def bootstrap(
        self,
        *,
        dry_run: bool = False,
        skip_foundation: bool = False,
        force: bool = False,
    ) -> PhaseResult:
        """Create the state backend, then the foundation."""
        started = time.monotonic()
        collector = ResultCollector("bootstrap", self.lab_name, self.on_step)
        state = self.store.load(self.lab_name)

        foundation_wanted = not skip_foundation and (not state.foundation_deployed or force)
        if state.bootstrapped and not foundation_wanted and not force:
            collector.noop("Lab already bootstrapped. Use --force to re-apply.")
            return collector.finalize(time.monotonic() - started)

        self._require_tools(self.provisioner.missing_tools())

        if dry_run:
            if not state.bootstrapped or force:
                collector.plan(BOOTSTRAP, await self._plan(BOOTSTRAP, state))
            if foundation_wanted:
                if state.bootstrapped:
                    collector.plan(FOUNDATION, await self._plan(FOUNDATION, state))
                else:
                    collector.warning(
                        "The foundation plan needs the state backend; "
                        "run bootstrap without --dry-run to create it first"
                    )
            return collector.finalize(time.monotonic() - started)

        if not state.bootstrapped or force:
            outputs = await self._apply(BOOTSTRAP, state)
            state.bootstrapped = True
            state.bootstrap_outputs = outputs
            self._checkpoint(state, collector, "State backend ready")

        if foundation_wanted:
            outputs = await self._apply(FOUNDATION, state)
            state.foundation_deployed = True
            state.foundation_outputs = outputs
            self._checkpoint(state, collector, "Foundation deployed")
        elif skip_foundation:
            collector.warning("Foundation skipped (--skip-foundation)")

        return collector.finalize(time.monotonic() - started)

    # === up ===

    def select_components(
        self,
        requested: Sequence[str],
        all_components: bool = False,
        collector: Optional[ResultCollector] = None,
    ) -> list[str]:
        if all_components:
            return self.registry.list()
        if not requested:
            return list(DEFAULT_COMPONENTS)
        selected: list[str] = []
        for raw in requested:
            name = raw.strip().lower()
            if name not in self.registry:
                if collector:
                    collector.warning(f"Unknown component '{raw}' skipped")
                continue
            if name not in selected:
                selected.append(name)
        return selected

    async def up(
        self,
        components: Sequence[str] = (),
        *,
        all_components: bool = False,
        dry_run: bool = False,
        force: bool = False,
        skip_essentials: bool = False,
        skip_components: bool = False,
    ) -> PhaseResult:
        """Bring the cluster and the selected components up.

        Raises:
            PreflightError: foundation missing or required tools not installed
            UnmetHardDependency: before any change, when the selection is incomplete
            DeploymentFailure: a component other requested components depend on failed
        """
        started = time.monotonic()
        collector = ResultCollector("up", self.lab_name, self.on_step)
        state = self.store.load(self.lab_name)

        if not state.foundation_deployed:
            raise PreflightError("Foundation not deployed. Run 'lab bootstrap' first.")
        backend_for(self.config, EPHEMERAL, state)
        self._require_tools(self.provisioner.missing_tools() + self.deployer.missing_tools())
        database = self._available_database(collector)

        selection = [] if skip_components else self.select_components(
            components, all_components, collector
        )
        plan = self.resolver.resolve(selection, state.deployed_components())
        for warning in plan.warnings:
            collector.warning(str(warning))

        provisioned = False
        if not state.cluster_deployed or force:
            if dry_run:
                collector.plan(EPHEMERAL, await self._plan(EPHEMERAL, state))
                self._record_planned(plan, collector)
                return collector.finalize(time.monotonic() - started)
            outputs = await self._apply(EPHEMERAL, state)
            state.cluster_deployed = True
            state.cluster_outputs = outputs
            self._checkpoint(state, collector, f"Cluster {outputs['cluster_name']} provisioned")
            provisioned = True
        elif dry_run:
            collector.noop("Cluster already deployed; nothing to plan")
            self._record_planned(plan, collector)
            return collector.finalize(time.monotonic() - started)

        if provisioned or not state.cluster_ready:
            await self._wait_for_cluster(state, collector)
        elif state.cluster_context:
            self.deployer.use_context(state.cluster_context)

        if skip_essentials:
            collector.warning("Essentials skipped (--skip-essentials)")
        elif not state.essentials_deployed or force:
            await self._deploy_essentials(state, collector)

        if plan.batches:
            await self._deploy_components(state, plan, selection, force, database, collector)

        return collector.finalize(time.monotonic() - started)

    def _record_planned(self, plan: DeployPlan, collector: ResultCollector) -> None:
        for name in plan.components:
            collector.component(ComponentOutcome(name, "planned"))

    async def _wait_for_cluster(self, state: LabState, collector: ResultCollector) -> None:
        timeouts = self.config.timeouts
        cluster_name = state.cluster_outputs["cluster_name"]

        async def cluster_active() -> PollResult:
            status = await self.provisioner.cluster_status(cluster_name)
            if status is None:
                return PollResult.not_ready("cluster not found yet")
            if status is ClusterStatus.ACTIVE:
                return PollResult.ready("ACTIVE")
            if status.is_terminal_failure:
                return PollResult.fatal(
                    f"cluster is {status.value}. Check the AWS console for details."
                )
            return PollResult.not_ready(f"status {status.value}")

        await self.poller.poll_until(
            cluster_active,
            interval=timeouts.poll_interval_seconds,
            timeout=timeouts.cluster_active_minutes * 60,
            description=f"cluster {cluster_name} to become ACTIVE",
            transient=(ProvisionerThrottled,),
        )

        context = self.config.kube_context
        await self.deployer.configure_context(cluster_name, self.config.aws.region, context)

        async def nodes_ready() -> PollResult:
            nodes = await self.deployer.node_status()
            detail = f"{nodes.ready}/{nodes.total} nodes Ready"
            return PollResult.ready(detail) if nodes.all_ready else PollResult.not_ready(detail)

        await self.poller.poll_until(
            nodes_ready,
            interval=timeouts.nodes_poll_interval_seconds,
            timeout=timeouts.nodes_ready_minutes * 60,
            description=f"nodes of {cluster_name} to become Ready",
            transient=(ClusterUnreachable,),
        )

        state.cluster_ready = True
        state.cluster_context = context
        self._checkpoint(state, collector, f"Cluster ready (context {context})")

    async def _deploy_essentials(self, state: LabState, collector: ResultCollector) -> None:
        namespaces = sorted({self.registry.get(name).spec.namespace for name in self.registry.list()})
        for namespace in namespaces:
            await self.deployer.create_namespace(namespace)

        secret_arn = state.foundation_outputs.get("aurora_secret_arn")
        if not secret_arn:
            raise ProvisionerFailure("Foundation outputs do not include aurora_secret_arn")
        secret = await self.provisioner.read_secret(secret_arn)
        await self.deployer.apply_secret(CREDENTIALS_SECRET, CREDENTIALS_NAMESPACE, secret)

        state.essentials_deployed = True
        self._checkpoint(state, collector, f"Essentials deployed ({len(namespaces)} namespaces)")

    async def _deploy_components(
        self,
        state: LabState,
        plan: DeployPlan,
        requested: Sequence[str],
        force: bool,
        database: Optional[DatabaseGateway],
        collector: ResultCollector,
    ) -> None:
        ctx = self._context(state, database)
        aborting: list[str] = []
        blocked: list[str] = []

        for batch in plan.batches:
            unreachable = self.resolver.transitive_dependents(aborting)
            names: list[str] = []
            for name in sorted(batch):
                if name in unreachable:
                    blocked.append(name)
                    collector.component(
                        ComponentOutcome(
                            name, "not-attempted", error=f"{', '.join(aborting)} failed"
                        )
                    )
                else:
                    names.append(name)
            if not names:
                continue

            results = await asyncio.gather(
                *(self._deploy_one(ctx, state, name, force) for name in names),
                return_exceptions=True,
            )

            interrupted: Optional[BaseException] = None
            for name, result in zip(names, results):
                spec = self.registry.get(name).spec
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        interrupted = interrupted or result
                    policy = self.resolver.failure_policy(name, requested)
                    state.components[name] = ComponentRecord(
                        deployed=False,
                        namespace=spec.namespace,
                        release_name=spec.release_name,
                        last_error=_message(result),
                    )
                    collector.component(
                        ComponentOutcome(name, "failed", error=_message(result), policy=policy)
                    )
                    logger.error(
                        "component_deploy_failed",
                        component=name,
                        error=_message(result),
                        policy=policy.value,
                    )
                    if policy is FailurePolicy.ABORT:
                        aborting.append(name)
                else:
                    record, action = result
                    state.components[name] = record
                    collector.component(ComponentOutcome(name, action))

            self._checkpoint(state, collector, f"Components {', '.join(names)} processed")

            if interrupted is not None:
                raise interrupted

        if aborting:
            raise DeploymentFailure(
                f"{', '.join(aborting)} failed; dependent components were not attempted"
                + (f" ({', '.join(blocked)})" if blocked else ""),
                details={"failed": aborting, "not_attempted": blocked},
            )

    async def _deploy_one(
        self, ctx: ComponentContext, state: LabState, name: str, force: bool
    ) -> tuple[ComponentRecord, str]:
        handler = self.registry.get(name)
        spec = handler.spec
        existing = state.components.get(name)

        if not force and await self.deployer.exists(spec.release_name, spec.namespace):
            if existing is None:
                logger.info("component_adopted", component=name)
                return (
                    ComponentRecord(
                        deployed=True, namespace=spec.namespace, release_name=spec.release_name
                    ),
                    "adopted",
                )
            if existing.deployed:
                return existing, "unchanged"
            # A release left behind by a failed attempt is upgraded in place.
            logger.info("component_retrying", component=name, last_error=existing.last_error)
        elif existing is not None and existing.deployed and not force:
            logger.warning("component_release_missing", component=name)
        record = await handler.deploy(ctx)
        return record, "deployed"

    # === down ===

    async def down(self, *, force: bool = False, destroy_foundation: bool = False) -> PhaseResult:
        """Tear down the cluster, and optionally everything else."""
        started = time.monotonic()
        collector = ResultCollector("down", self.lab_name, self.on_step)
        state = self.store.load(self.lab_name)

        if destroy_foundation:
            await self._destroy_all(state, collector)
            return collector.finalize(time.monotonic() - started)

        if not state.cluster_deployed:
            collector.noop("No cluster deployed. Nothing to tear down.")
            return collector.finalize(time.monotonic() - started)

        if not force and not self.prompter.confirm(
            f"Destroy the cluster of lab '{self.lab_name}' and every deployed component?"
        ):
            collector.abort()
            return collector.finalize(time.monotonic() - started)

        self._require_tools(self.provisioner.missing_tools())
        await self._teardown_cluster(state, collector)
        await self._verify_foundation(state, collector)
        return collector.finalize(time.monotonic() - started)

    async def _destroy_all(self, state: LabState, collector: ResultCollector) -> None:
        if not (state.bootstrapped or state.foundation_deployed or state.cluster_deployed):
            collector.noop("Nothing deployed for this lab.")
            return

        if not self.prompter.confirm_typed(
            f"This permanently destroys lab '{self.lab_name}', its data and its state backend. "
            "Type the lab name to confirm",
            self.lab_name,
        ):
            collector.abort()
            return

        self._require_tools(self.provisioner.missing_tools())
        if state.cluster_deployed:
            await self._teardown_cluster(state, collector)

        if state.foundation_deployed:
            await self.provisioner.destroy(
                self.paths.module(FOUNDATION),
                layer_variables(self.config, FOUNDATION, state),
                backend_for(self.config, FOUNDATION, state),
            )
            state.clear_foundation()
            self._checkpoint(state, collector, "Foundation destroyed")

        if state.bootstrapped:
            await self.provisioner.destroy(
                self.paths.module(BOOTSTRAP),
                layer_variables(self.config, BOOTSTRAP, state),
                None,
            )
            self.store.reset(self.lab_name)
            collector.step("State backend destroyed; lab state reset")

    async def _teardown_cluster(self, state: LabState, collector: ResultCollector) -> None:
        missing = self.deployer.missing_tools()
        if state.cluster_ready and not missing:
            if state.cluster_context:
                self.deployer.use_context(state.cluster_context)
            await self._undeploy_components(state, collector)
            self._checkpoint(state, collector, "Components removed")
            await self._drain_namespaces(collector)
        elif missing:
            collector.warning(
                f"Skipping component teardown, tools not installed: {', '.join(missing)}"
            )
        else:
            collector.warning("Cluster was never ready; skipping component teardown")

        await self.provisioner.destroy(
            self.paths.module(EPHEMERAL),
            layer_variables(self.config, EPHEMERAL, state),
            backend_for(self.config, EPHEMERAL, state),
        )
        state.clear_cluster()
        self._checkpoint(state, collector, "Cluster destroyed")

    async def _undeploy_components(self, state: LabState, collector: ResultCollector) -> None:
        deployed = {name for name in state.deployed_components() if name in self.registry}
        for name in state.deployed_components() - deployed:
            collector.warning(f"Component '{name}' is not known to this version; left in place")

        ctx = self._context(state, None)
        still_installed: set[str] = set()
        for batch in self.resolver.undeploy_order(deployed):
            runnable = []
            for name in sorted(batch):
                blockers = self.resolver.dependents(name) & still_installed
                if blockers:
                    still_installed.add(name)
                    collector.component(
                        ComponentOutcome(
                            name, "skipped", error=f"{', '.join(sorted(blockers))} still installed"
                        )
                    )
                else:
                    runnable.append(name)

            results = await asyncio.gather(
                *(self.registry.get(name).undeploy(ctx) for name in runnable),
                return_exceptions=True,
            )
            for name, result in zip(runnable, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    still_installed.add(name)
                    state.components[name].last_error = _message(result)
                    collector.component(ComponentOutcome(name, "uninstall-failed", error=_message(result)))
                    collector.warning(f"Could not uninstall {name}: {_message(result)}")
                else:
                    del state.components[name]
                    collector.component(ComponentOutcome(name, "undeployed"))

    async def _drain_namespaces(self, collector: ResultCollector) -> None:
        """Delete workload namespaces and give their load balancers time to go."""
        namespaces = sorted({self.registry.get(name).spec.namespace for name in self.registry.list()})
        for namespace in namespaces:
            await self.deployer.delete_namespace(namespace)

        async def namespaces_gone() -> PollResult:
            remaining = [ns for ns in namespaces if await self.deployer.namespace_exists(ns)]
            if remaining:
                return PollResult.not_ready(f"still terminating: {', '.join(remaining)}")
            return PollResult.ready()

        grace = self.config.timeouts.shutdown_grace_seconds
        try:
            await self.poller.poll_until(
                namespaces_gone,
                interval=NAMESPACE_POLL_SECONDS,
                timeout=grace,
                description="workload namespaces to terminate",
                transient=(ClusterUnreachable,),
            )
        except ReadinessTimeout as e:
            collector.warning(f"{e.message}; destroying the cluster anyway")

    async def _verify_foundation(self, state: LabState, collector: ResultCollector) -> None:
        """Check the foundation survived the teardown. Problems are only reported."""
        outputs = state.foundation_outputs
        bucket = outputs.get("data_bucket")
        endpoint = outputs.get("aurora_cluster_endpoint")
        try:
            if bucket:
                if await self.provisioner.object_store_exists(bucket):
                    collector.step(f"Data bucket {bucket} intact")
                else:
                    collector.warning(f"Data bucket {bucket} could not be found")
            if endpoint:
                identifier = str(endpoint).split(".")[0]
                status = await self.provisioner.database_status(identifier)
                if status is None:
                    collector.warning(f"Database cluster {identifier} could not be found")
                else:
                    collector.step(f"Database cluster {identifier} is {status}")
        except Exception as e:
            collector.warning(f"Foundation verification failed: {_message(e)}")

    # === drift ===

    async def check_drift(self) -> list[DriftFinding]:
        """Compare recorded state with live infrastructure without changing either."""
        state = self.store.load(self.lab_name)
        findings: list[DriftFinding] = []

        if state.foundation_deployed:
            bucket = state.foundation_outputs.get("data_bucket")
            if bucket and not await self.provisioner.object_store_exists(bucket):
                findings.append(DriftFinding(f"bucket {bucket}", "present", "missing"))
            endpoint = state.foundation_outputs.get("aurora_cluster_endpoint")
            if endpoint:
                identifier = str(endpoint).split(".")[0]
                if await self.provisioner.database_status(identifier) is None:
                    findings.append(DriftFinding(f"database {identifier}", "present", "missing"))

        if state.cluster_deployed:
            cluster_name = state.cluster_outputs.get("cluster_name", "")
            status = await self.provisioner.cluster_status(cluster_name)
            if status is None:
                findings.append(DriftFinding(f"cluster {cluster_name}", "deployed", "missing"))
            elif status is not ClusterStatus.ACTIVE:
                findings.append(DriftFinding(f"cluster {cluster_name}", "ACTIVE", status.value))

        if state.cluster_ready and not self.deployer.missing_tools():
            if state.cluster_context:
                self.deployer.use_context(state.cluster_context)
            for name in self.registry.list():
                spec = self.registry.get(name).spec
                record = state.components.get(name)
                recorded = record is not None and record.deployed
                present = await self.deployer.exists(spec.release_name, spec.namespace)
                if recorded and not present:
                    findings.append(DriftFinding(f"component {name}", "deployed", "release missing"))
                elif present and not recorded:
                    findings.append(
                        DriftFinding(f"component {name}", "not deployed", "release installed")
                    )
        elif state.cluster_deployed and not state.cluster_ready:
            findings.append(DriftFinding("cluster readiness", "not ready", "unverified"))

        return findings

    async def endpoints(self, names: Sequence[str]) -> dict[str, str]:
        """External URLs of the given components, where their services expose one."""
        state = self.store.load(self.lab_name)
        if not state.cluster_ready:
            return {}
        if state.cluster_context:
            self.deployer.use_context(state.cluster_context)
        ctx = self._context(state, None)
        found = {}
        for name in names:
            url = await self.registry.get(name).endpoint(ctx)
            if url:
                found[name] = url
        return found

    # === helpers ===

    def _require_tools(self, missing: Sequence[str]) -> None:
        if missing:
            raise PreflightError(
                f"Required tools not installed: {', '.join(sorted(set(missing)))}",
                details={"missing": sorted(set(missing))},
            )

    def _available_database(self, collector: ResultCollector) -> Optional[DatabaseGateway]:
        if self.database is None:
            return None
        missing = self.database.missing_tools()
        if missing:
            collector.warning(
                f"{', '.join(missing)} not installed; component databases will not be created"
            )
            return None
        return self.database

    def _context(self, state: LabState, database: Optional[DatabaseGateway]) -> ComponentContext:
        return ComponentContext(
            config=self.config,
            paths=self.paths,
            state=state,
            provisioner=self.provisioner,
            deployer=self.deployer,
            poller=self.poller,
            database=database,
        )

    def _checkpoint(self, state: LabState, collector: ResultCollector, step: str) -> None:
        self.store.save(state)
        logger.info("checkpoint", lab=self.lab_name, step=step)
        collector.step(step)

    async def _plan(self, layer: str, state: LabState) -> str:
        return await self.provisioner.plan(
            self.paths.module(layer),
            layer_variables(self.config, layer, state),
            backend_for(self.config, layer, state),
        )

    async def _apply(self, layer: str, state: LabState) -> dict:
        outputs = await self.provisioner.apply(
            self.paths.module(layer),
            layer_variables(self.config, layer, state),
            backend_for(self.config, layer, state),
        )
        return require_outputs(layer, outputs)
