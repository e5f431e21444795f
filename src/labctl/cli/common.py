"""
Shared wiring for lifecycle commands: building the orchestrator and
rendering command results.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Optional, TypeVar

from labctl.cli.ux import ConsolePrompter, console, muted
from labctl.config.loader import load_config
from labctl.gateways.database import PsqlDatabase
from labctl.gateways.helm import HelmDeployer
from labctl.gateways.terraform import TerraformProvisioner
from labctl.logging import bind_context
from labctl.orchestration.results import PhaseResult
from labctl.orchestrator import PhaseOrchestrator
from labctl.polling import ReadinessPoller
from labctl.state.store import StateStore

T = TypeVar("T")

ACTION_STYLE = {
    "deployed": ("green", "✓"),
    "adopted": ("green", "✓"),
    "unchanged": ("green", "="),
    "undeployed": ("green", "✓"),
    "planned": ("cyan", "+"),
    "skipped": ("yellow", "⚠"),
    "uninstall-failed": ("yellow", "⚠"),
    "failed": ("red", "✗"),
    "not-attempted": ("red", "✗"),
}


def build_orchestrator(config_path: Optional[str] = None, command: str = "") -> PhaseOrchestrator:
    """Load lab.yaml and assemble the orchestrator with the real gateways."""
    config, paths = load_config(Path(config_path) if config_path else None)
    bind_context(lab=config.lab.name, command=command)

    return PhaseOrchestrator(
        config=config,
        paths=paths,
        store=StateStore(paths.state_dir),
        provisioner=TerraformProvisioner(region=config.aws.region, profile=config.aws.profile),
        deployer=HelmDeployer(aws_profile=config.aws.profile),
        database=PsqlDatabase(),
        prompter=ConsolePrompter(),
        poller=ReadinessPoller(on_progress=lambda target, detail: muted(f"{target}: {detail}")),
        on_step=lambda step: console.print(f"  [green]✓[/green] {step}"),
    )


def run(coro: Awaitable[T]) -> T:
    return asyncio.run(coro)  # type: ignore[arg-type]


def print_result(result: PhaseResult) -> None:
    """Print the component outcomes, warnings and closing line of a command."""
    if result.plans:
        for layer, output in result.plans.items():
            console.print(f"\n[bold]Plan for {layer}[/bold]")
            console.print(output.rstrip() or "(no output)", markup=False, highlight=False)

    if result.components:
        console.print()
        for outcome in result.components:
            color, mark = ACTION_STYLE.get(outcome.action, ("white", "-"))
            detail = outcome.action + (f": {outcome.error}" if outcome.error else "")
            console.print(f"  [{color}]{mark} {outcome.name:<12}[/{color}] {detail}")

    if result.warnings:
        console.print()
        console.print("[yellow]Warnings:[/yellow]")
        for message in result.warnings:
            console.print(f"  [yellow]•[/yellow] {message}")

    console.print()
    duration = f" in {result.duration_seconds:.1f}s" if result.duration_seconds > 0 else ""
    if result.aborted:
        console.print("[yellow]Aborted by user. Nothing was changed.[/yellow]")
    elif result.noop_reason:
        console.print(f"[cyan]{result.noop_reason}[/cyan]")
    elif result.dry_run:
        console.print(f"[bold cyan]Dry run of {result.command} complete{duration}[/bold cyan]")
    elif result.success:
        console.print(f"[bold green]{result.command} complete{duration}[/bold green]")
    else:
        failed = ", ".join(outcome.name for outcome in result.failures)
        console.print(
            f"[bold red]{result.command} finished with failed components ({failed}){duration}[/bold red]"
        )


def exit_code(result: PhaseResult) -> int:
    return 0 if result.success else 1
