"""
CLI command for tearing the lab down.
"""

from typing import Optional

from labctl.cli.common import build_orchestrator, exit_code, print_result, run
from labctl.cli.ux import header, info, warning
from labctl.core.errors import main_with_error_handling


@main_with_error_handling()
def down_command(
    config: Optional[str] = None,
    force: bool = False,
    destroy_foundation: bool = False,
) -> int:
    orchestrator = build_orchestrator(config, command="down")
    if destroy_foundation:
        header(f"Destroying lab {orchestrator.lab_name} completely")
        warning("The foundation holds the lab's database and data bucket.")
    else:
        header(f"Tearing down the cluster of lab {orchestrator.lab_name}")

    result = run(orchestrator.down(force=force, destroy_foundation=destroy_foundation))
    print_result(result)
    if not destroy_foundation and result.success and not (result.aborted or result.noop_reason):
        info("Foundation preserved. Run 'lab up' to recreate the cluster.")
    return exit_code(result)
