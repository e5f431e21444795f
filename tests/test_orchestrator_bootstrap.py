"""Tests for PhaseOrchestrator.bootstrap."""

import pytest

from labctl.core.errors import PreflightError, ProvisionerFailure, ProvisionerLockError


class TestBootstrap:
    @pytest.mark.asyncio
    async def test_fresh_lab_applies_both_layers(self, orchestrator, provisioner, store):
        result = await orchestrator.bootstrap()

        assert provisioner.calls == [("apply", "bootstrap"), ("apply", "foundation")]
        assert provisioner.backends["bootstrap"] is None
        backend = provisioner.backends["foundation"]
        assert backend.bucket == "demo-tfstate"
        assert backend.key == "demo/foundation/terraform.tfstate"
        assert backend.lock_table == "demo-tflock"

        state = store.load("demo")
        assert state.bootstrapped and state.foundation_deployed
        assert state.foundation_outputs["vpc_id"] == "vpc-0abc"
        assert result.success
        assert result.steps == ["State backend ready", "Foundation deployed"]

    @pytest.mark.asyncio
    async def test_second_run_is_a_noop(self, orchestrator, provisioner, store):
        await orchestrator.bootstrap()
        provisioner.calls.clear()

        result = await orchestrator.bootstrap()

        assert provisioner.calls == []
        assert result.noop_reason is not None

    @pytest.mark.asyncio
    async def test_force_reapplies(self, orchestrator, provisioner, bootstrapped):
        await orchestrator.bootstrap(force=True)
        assert provisioner.calls == [("apply", "bootstrap"), ("apply", "foundation")]

    @pytest.mark.asyncio
    async def test_skip_foundation(self, orchestrator, provisioner, store):
        result = await orchestrator.bootstrap(skip_foundation=True)

        assert provisioner.calls == [("apply", "bootstrap")]
        state = store.load("demo")
        assert state.bootstrapped and not state.foundation_deployed
        assert any("skipped" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_resumes_foundation_after_partial_run(self, orchestrator, provisioner, store):
        provisioner.fail[("apply", "foundation")] = ProvisionerFailure("quota exceeded")
        with pytest.raises(ProvisionerFailure):
            await orchestrator.bootstrap()
        assert store.load("demo").bootstrapped

        provisioner.fail.clear()
        provisioner.calls.clear()
        await orchestrator.bootstrap()

        assert provisioner.calls == [("apply", "foundation")]
        assert store.load("demo").foundation_deployed

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self, orchestrator, provisioner, store):
        result = await orchestrator.bootstrap(dry_run=True)

        assert provisioner.calls == []
        assert result.dry_run
        assert result.plans == {"bootstrap": "Plan: bootstrap"}
        assert result.warnings
        assert not store.path_for("demo").exists()

    @pytest.mark.asyncio
    async def test_dry_run_plans_foundation_once_bootstrapped(self, orchestrator, store):
        state = store.load("demo")
        state.bootstrapped = True
        state.bootstrap_outputs = {"state_bucket": "demo-tfstate", "state_lock_table": "demo-tflock"}
        store.save(state)

        result = await orchestrator.bootstrap(dry_run=True)

        assert list(result.plans) == ["foundation"]

    @pytest.mark.asyncio
    async def test_lock_error_surfaces(self, orchestrator, provisioner, store):
        provisioner.fail[("apply", "bootstrap")] = ProvisionerLockError("locked")
        with pytest.raises(ProvisionerLockError):
            await orchestrator.bootstrap()
        assert not store.load("demo").bootstrapped

    @pytest.mark.asyncio
    async def test_missing_tools_fail_preflight(self, orchestrator, provisioner):
        provisioner.missing = ["terraform"]
        with pytest.raises(PreflightError, match="terraform"):
            await orchestrator.bootstrap()
        assert provisioner.calls == []

    @pytest.mark.asyncio
    async def test_noop_rerun_does_not_need_terraform(self, orchestrator, provisioner, bootstrapped):
        provisioner.missing = ["terraform"]
        result = await orchestrator.bootstrap()
        assert result.noop_reason is not None
        assert provisioner.calls == []
