"""
CLI command showing the recorded lab state, optionally checked against
live infrastructure.
"""

from typing import Optional

from labctl.cli.common import build_orchestrator, run
from labctl.cli.ux import console, header, print_key_value, print_table, success, warning
from labctl.core.errors import main_with_error_handling
from labctl.state.models import LabState


def _flag(value: bool, on: str, off: str) -> str:
    return f"[green]{on}[/green]" if value else f"[yellow]{off}[/yellow]"


def print_state(state: LabState, environment: str, region: str) -> None:
    print_key_value(
        {
            "Lab": state.lab_name,
            "Environment": environment,
            "AWS region": region,
            "Updated": state.updated_at.isoformat(timespec="seconds"),
        }
    )
    print_key_value(
        {
            "Bootstrap": _flag(state.bootstrapped, "Complete", "Not started"),
            "Foundation": _flag(state.foundation_deployed, "Deployed", "Not deployed"),
            "Cluster": _flag(state.cluster_deployed, "Running", "Not deployed"),
            "Cluster ready": _flag(state.cluster_ready, "Yes", "No"),
            "Essentials": _flag(state.essentials_deployed, "Deployed", "Not deployed"),
        },
        title="Phases",
    )

    outputs = {}
    if state.bootstrap_outputs.get("state_bucket"):
        outputs["State bucket"] = str(state.bootstrap_outputs["state_bucket"])
    for key, label in (
        ("vpc_id", "VPC"),
        ("aurora_cluster_endpoint", "Database"),
        ("data_bucket", "Data bucket"),
    ):
        if state.foundation_outputs.get(key):
            outputs[label] = str(state.foundation_outputs[key])
    if state.cluster_outputs.get("cluster_name"):
        outputs["Cluster"] = str(state.cluster_outputs["cluster_name"])
    if state.cluster_context:
        outputs["Kube context"] = state.cluster_context
    if outputs:
        print_key_value(outputs, title="Outputs")

    if state.components:
        rows = []
        for name, record in sorted(state.components.items()):
            status = "[green]Deployed[/green]" if record.deployed else "[red]Failed[/red]"
            when = record.deployed_at.isoformat(timespec="seconds") if record.deployed_at else "-"
            rows.append([name, status, record.namespace or "-", when, record.last_error or ""])
        console.print()
        print_table("Components", ["Name", "Status", "Namespace", "Deployed at", "Last error"], rows)


@main_with_error_handling()
def status_command(config: Optional[str] = None, verify: bool = False) -> int:
    orchestrator = build_orchestrator(config, command="status")
    header("Lab Status")
    state = orchestrator.status()
    print_state(state, orchestrator.config.lab.environment, orchestrator.config.aws.region)

    if not verify:
        return 0

    findings = run(orchestrator.check_drift())
    console.print()
    if not findings:
        success("Recorded state matches live infrastructure")
        return 0
    print_table(
        "Drift",
        ["Subject", "Recorded", "Observed"],
        [[f.subject, f.recorded, f.observed] for f in findings],
    )
    warning("Run 'lab up' to reconcile components, or 'lab down' to clean up.")
    return 1
