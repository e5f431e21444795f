"""
CLI commands for labctl.
"""

from labctl.cli.bootstrap import bootstrap_command
from labctl.cli.down import down_command
from labctl.cli.seed import seed_command
from labctl.cli.status import status_command
from labctl.cli.up import up_command

__all__ = [
    "bootstrap_command",
    "down_command",
    "seed_command",
    "status_command",
    "up_command",
]
