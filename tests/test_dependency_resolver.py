"""Tests for dependencies/graph.py."""

import pytest

from labctl.components.handlers import default_registry
from labctl.core.errors import ConfigurationError, UnmetHardDependency
from labctl.dependencies.graph import ComponentSpec, DependencyResolver, FailurePolicy


@pytest.fixture
def resolver():
    return default_registry().resolver()


def spec(name, hard=(), soft=()):
    return ComponentSpec(
        name=name,
        namespace=name,
        release_name=name,
        hard_dependencies=frozenset(hard),
        soft_dependencies=frozenset(soft),
    )


class TestResolve:
    def test_hard_dependencies_land_in_earlier_batches(self, resolver):
        plan = resolver.resolve(["trino", "polaris", "keycloak"])
        assert plan.batches == [
            frozenset({"keycloak"}),
            frozenset({"polaris"}),
            frozenset({"trino"}),
        ]

    def test_independent_components_share_a_batch(self, resolver):
        plan = resolver.resolve(["keycloak", "polaris", "trino", "spark", "opa"])
        assert plan.batches[0] == frozenset({"keycloak", "spark", "opa"})
        assert plan.components == ["keycloak", "opa", "spark", "polaris", "trino"]

    def test_deployed_dependency_satisfies_request(self, resolver):
        plan = resolver.resolve(["trino"], deployed={"keycloak", "polaris"})
        assert plan.batches == [frozenset({"trino"})]

    def test_deploy_order_matches_resolved_batches(self, resolver):
        assert resolver.deploy_order(["polaris"], deployed={"keycloak"}) == [frozenset({"polaris"})]

    def test_missing_hard_dependency_raises(self, resolver):
        with pytest.raises(UnmetHardDependency) as exc:
            resolver.resolve(["trino"], deployed={"keycloak"})
        assert exc.value.missing == {"trino": ["polaris"]}
        assert "trino requires polaris" in exc.value.message

    def test_soft_dependency_only_warns(self, resolver):
        plan = resolver.resolve(["spark"])
        assert plan.batches == [frozenset({"spark"})]
        assert [(w.component, w.missing) for w in plan.warnings] == [("spark", "polaris")]
        assert "spark works best with polaris" in str(plan.warnings[0])

    def test_soft_dependency_requested_gives_no_warning(self, resolver):
        plan = resolver.resolve(["keycloak", "opa"])
        assert plan.warnings == []

    def test_unknown_component_raises(self, resolver):
        with pytest.raises(ConfigurationError, match="Unknown component: hive"):
            resolver.resolve(["hive"])

    def test_empty_request(self, resolver):
        plan = resolver.resolve([])
        assert plan.batches == []
        assert plan.components == []


class TestUndeployOrder:
    def test_dependents_go_first(self, resolver):
        order = resolver.undeploy_order({"keycloak", "polaris", "trino", "spark"})
        assert order[0] == frozenset({"trino", "spark"})
        assert order[1:] == [frozenset({"polaris"}), frozenset({"keycloak"})]

    def test_only_deployed_components_are_ordered(self, resolver):
        assert resolver.undeploy_order({"keycloak"}) == [frozenset({"keycloak"})]


class TestFailurePolicy:
    def test_abort_when_requested_component_depends_on_failure(self, resolver):
        policy = resolver.failure_policy("polaris", ["keycloak", "polaris", "trino"])
        assert policy is FailurePolicy.ABORT

    def test_continue_for_leaf(self, resolver):
        assert resolver.failure_policy("trino", ["trino", "opa"]) is FailurePolicy.CONTINUE

    def test_continue_when_dependent_not_requested(self, resolver):
        assert resolver.failure_policy("keycloak", ["keycloak", "opa"]) is FailurePolicy.CONTINUE

    def test_transitive_dependents(self, resolver):
        assert resolver.transitive_dependents(["keycloak"]) == {"polaris", "trino"}
        assert resolver.transitive_dependents(["opa"]) == set()
        assert resolver.transitive_dependents([]) == set()

    def test_dependents(self, resolver):
        assert resolver.dependents("keycloak") == {"polaris"}
        assert resolver.dependents("trino") == set()


class TestGraphValidation:
    def test_cycle_is_rejected(self):
        with pytest.raises(ConfigurationError, match="cycle"):
            DependencyResolver([spec("a", hard=["b"]), spec("b", hard=["a"])])

    def test_unknown_dependency_is_rejected(self):
        with pytest.raises(ConfigurationError, match="unknown components: ghost"):
            DependencyResolver([spec("a", hard=["ghost"])])
