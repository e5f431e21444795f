"""
Command-line entry point for labctl.

Usage:
    lab <command> [args]

Commands: bootstrap, up, down, status, seed.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from labctl import __version__
from labctl.config.settings import get_settings
from labctl.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lab", description="Ephemeral lakehouse lab lifecycle")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to lab.yaml (default: search upwards from cwd)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show progress logs")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON")
    subparsers = parser.add_subparsers(dest="command")

    bootstrap_parser = subparsers.add_parser(
        "bootstrap", help="Create the state backend and the foundation layer"
    )
    bootstrap_parser.add_argument("--dry-run", action="store_true", help="Plan without applying")
    bootstrap_parser.add_argument(
        "--skip-foundation", action="store_true", help="Only create the state backend"
    )
    bootstrap_parser.add_argument(
        "-f", "--force", action="store_true", help="Re-apply even if already bootstrapped"
    )

    up_parser = subparsers.add_parser("up", help="Create the cluster and deploy components")
    up_parser.add_argument("components", nargs="*", help="Components to deploy")
    up_parser.add_argument("--all", dest="all_components", action="store_true", help="Deploy every component")
    up_parser.add_argument("--dry-run", action="store_true", help="Plan without applying")
    up_parser.add_argument("-f", "--force", action="store_true", help="Reinstall deployed components")
    up_parser.add_argument(
        "--skip-essentials", action="store_true", help="Skip namespaces and shared secrets"
    )
    up_parser.add_argument(
        "--skip-components", action="store_true", help="Only bring up the cluster"
    )

    down_parser = subparsers.add_parser("down", help="Tear down the cluster")
    down_parser.add_argument("-f", "--force", action="store_true", help="Skip confirmation")
    down_parser.add_argument(
        "--destroy-foundation",
        action="store_true",
        help="Also destroy the foundation and state backend (requires typing the lab name)",
    )

    status_parser = subparsers.add_parser("status", help="Show lab state")
    status_parser.add_argument(
        "--verify", action="store_true", help="Compare recorded state with live infrastructure"
    )

    seed_parser = subparsers.add_parser("seed", help="Check prerequisites and show sample data setup")
    seed_group = seed_parser.add_mutually_exclusive_group()
    seed_group.add_argument("--tables-only", action="store_true", help="Only sample tables")
    seed_group.add_argument("--users-only", action="store_true", help="Only Keycloak users")
    seed_parser.add_argument("--skip-users", action="store_true", help="Do not reset users")
    seed_parser.add_argument("--rows", type=int, help="Rows per sample table")

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    level = logging.INFO if args.verbose else settings.log_level.upper()
    configure_logging(level=level, json_logs=args.json_logs or settings.json_logs)

    if args.command == "bootstrap":
        from labctl.cli.bootstrap import bootstrap_command

        sys.exit(
            bootstrap_command(
                config=args.config,
                dry_run=args.dry_run,
                skip_foundation=args.skip_foundation,
                force=args.force,
            )
        )

    if args.command == "up":
        from labctl.cli.up import up_command

        sys.exit(
            up_command(
                components=args.components,
                config=args.config,
                all_components=args.all_components,
                dry_run=args.dry_run,
                force=args.force,
                skip_essentials=args.skip_essentials,
                skip_components=args.skip_components,
            )
        )

    if args.command == "down":
        from labctl.cli.down import down_command

        sys.exit(
            down_command(
                config=args.config,
                force=args.force,
                destroy_foundation=args.destroy_foundation,
            )
        )

    if args.command == "status":
        from labctl.cli.status import status_command

        sys.exit(status_command(config=args.config, verify=args.verify))

    if args.command == "seed":
        from labctl.cli.seed import seed_command

        sys.exit(
            seed_command(
                config=args.config,
                tables_only=args.tables_only,
                users_only=args.users_only,
                skip_users=args.skip_users,
                rows=args.rows,
            )
        )

    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":
    main()
