"""
CLI command that checks seeding prerequisites and prints the seeding plan.
"""

from typing import Optional

from labctl.cli.common import build_orchestrator
from labctl.cli.ux import console, header, success, warning
from labctl.core.errors import PreflightError, main_with_error_handling
from labctl.state.models import LabState

SAMPLE_TABLES = [
    ("sales.transactions", 10_000, "row-level security"),
    ("hr.employees", 1_000, "column masking"),
    ("iot.sensor_readings", 50_000, "analytics"),
]

SAMPLE_USERS = ["admin", "analyst", "engineer"]

TRANSACTIONS_DDL = """\
CREATE SCHEMA IF NOT EXISTS lakehouse.sales;
CREATE TABLE lakehouse.sales.transactions (
  transaction_id BIGINT,
  date DATE,
  customer_id BIGINT,
  product_id BIGINT,
  amount DECIMAL(10,2),
  department VARCHAR,
  region VARCHAR
) WITH (format = 'PARQUET');"""


def check_prerequisites(state: LabState) -> list[str]:
    """Raise when seeding is impossible; return warnings for degraded seeding."""
    if not (state.cluster_deployed and state.cluster_ready):
        raise PreflightError("The cluster must be running. Run 'lab up' first.")
    deployed = state.deployed_components()
    if "polaris" not in deployed:
        raise PreflightError("Polaris must be deployed. Run 'lab up polaris' first.")
    warnings = []
    if "trino" not in deployed:
        warnings.append("Trino not deployed; tables must be created through Spark")
    if "spark" not in deployed:
        warnings.append("Spark not deployed; manual data loading required")
    return warnings


@main_with_error_handling()
def seed_command(
    config: Optional[str] = None,
    tables_only: bool = False,
    users_only: bool = False,
    skip_users: bool = False,
    rows: Optional[int] = None,
) -> int:
    orchestrator = build_orchestrator(config, command="seed")
    header(f"Seeding lab {orchestrator.lab_name}")

    for message in check_prerequisites(orchestrator.status()):
        warning(message)
    success("Prerequisites met")

    if not users_only:
        console.print("\n[bold]Sample tables[/bold]")
        for table, default_rows, use_case in SAMPLE_TABLES:
            console.print(f"  • {table} ({rows or default_rows:,} rows) - {use_case}")
    if not tables_only and not skip_users:
        console.print("\n[bold]Keycloak users to reset[/bold]")
        for user in SAMPLE_USERS:
            console.print(f"  • {user}")

    console.print("\n[bold]Create the tables through Trino:[/bold]")
    console.print(TRANSACTIONS_DDL, markup=False, highlight=False)
    return 0
