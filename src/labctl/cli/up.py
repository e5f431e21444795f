"""
CLI command for bringing the cluster and components up.
"""

from typing import List, Optional

from labctl.cli.common import build_orchestrator, exit_code, print_result, run
from labctl.cli.ux import header, print_key_value
from labctl.core.errors import main_with_error_handling
from labctl.orchestration.results import PhaseResult
from labctl.orchestrator import PhaseOrchestrator

RUNNING_ACTIONS = ("deployed", "adopted", "unchanged")


async def _up(orchestrator: PhaseOrchestrator, components: List[str], **options) -> tuple:
    result: PhaseResult = await orchestrator.up(components, **options)
    running = [o.name for o in result.components if o.action in RUNNING_ACTIONS]
    endpoints = await orchestrator.endpoints(running) if running else {}
    return result, endpoints


@main_with_error_handling()
def up_command(
    components: Optional[List[str]] = None,
    config: Optional[str] = None,
    all_components: bool = False,
    dry_run: bool = False,
    force: bool = False,
    skip_essentials: bool = False,
    skip_components: bool = False,
) -> int:
    orchestrator = build_orchestrator(config, command="up")
    header(f"Starting lab {orchestrator.lab_name}")

    result, endpoints = run(
        _up(
            orchestrator,
            components or [],
            all_components=all_components,
            dry_run=dry_run,
            force=force,
            skip_essentials=skip_essentials,
            skip_components=skip_components,
        )
    )
    print_result(result)
    if endpoints:
        print_key_value(endpoints, title="Endpoints")
    return exit_code(result)
