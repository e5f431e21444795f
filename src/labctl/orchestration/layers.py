"""Provisioner layers and the variables each one receives."""

from __future__ import annotations

from typing import Any, Mapping

from labctl.config.models import LabConfig
from labctl.core.errors import PreflightError, ProvisionerFailure
from labctl.gateways.base import BackendConfig
from labctl.state.models import LabState

BOOTSTRAP = "bootstrap"
FOUNDATION = "foundation"
EPHEMERAL = "ephemeral"

REQUIRED_OUTPUTS: dict[str, tuple[str, ...]] = {
    BOOTSTRAP: ("state_bucket", "state_lock_table"),
    FOUNDATION: ("vpc_id", "aurora_cluster_endpoint", "aurora_secret_arn", "data_bucket"),
    EPHEMERAL: ("cluster_name", "cluster_endpoint"),
}


def layer_variables(config: LabConfig, layer: str, state: LabState) -> dict[str, Any]:
    variables: dict[str, Any] = {
        "lab_name": config.lab.name,
        "environment": config.lab.environment,
        "aws_region": config.aws.region,
    }
    if layer in (FOUNDATION, EPHEMERAL):
        aurora = config.foundation.aurora
        variables.update(
            vpc_cidr=config.foundation.vpc_cidr,
            aurora_instance_class=aurora.instance_class,
            aurora_min_capacity=aurora.min_capacity,
            aurora_max_capacity=aurora.max_capacity,
            data_bucket_name=config.data_bucket,
            logs_bucket_name=config.logs_bucket,
        )
    if layer == EPHEMERAL:
        eks = config.ephemeral.eks
        variables.update(
            state_bucket=state.bootstrap_outputs.get("state_bucket"),
            eks_cluster_version=eks.cluster_version,
            eks_instance_types=list(eks.instance_types),
            eks_desired_size=eks.desired_size,
        )
    return variables


def backend_for(config: LabConfig, layer: str, state: LabState) -> BackendConfig | None:
    """Remote state for ``layer``; the bootstrap layer keeps local state."""
    if layer == BOOTSTRAP:
        return None
    outputs = state.bootstrap_outputs
    if not outputs.get("state_bucket") or not outputs.get("state_lock_table"):
        raise PreflightError(
            "State backend outputs are missing from lab state. Run 'lab bootstrap' first."
        )
    return BackendConfig.for_layer(config.lab.name, layer, config.aws.region, outputs)


def require_outputs(layer: str, outputs: Mapping[str, Any]) -> dict[str, Any]:
    missing = [key for key in REQUIRED_OUTPUTS[layer] if outputs.get(key) in (None, "")]
    if missing:
        raise ProvisionerFailure(
            f"The {layer} layer did not produce required outputs: {', '.join(missing)}",
            details={"layer": layer},
        )
    return dict(outputs)
