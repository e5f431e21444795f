"""
CLI command for creating the state backend and the foundation.
"""

from typing import Optional

from labctl.cli.common import build_orchestrator, exit_code, print_result, run
from labctl.cli.ux import header, info
from labctl.core.errors import main_with_error_handling


@main_with_error_handling()
def bootstrap_command(
    config: Optional[str] = None,
    dry_run: bool = False,
    skip_foundation: bool = False,
    force: bool = False,
) -> int:
    orchestrator = build_orchestrator(config, command="bootstrap")
    header(f"Bootstrapping lab {orchestrator.lab_name}")
    result = run(
        orchestrator.bootstrap(dry_run=dry_run, skip_foundation=skip_foundation, force=force)
    )
    print_result(result)
    if not dry_run and result.success and not result.noop_reason:
        info("Next: run 'lab up' to start the cluster.")
    return exit_code(result)
