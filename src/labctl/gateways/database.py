"""psql-backed database gateway."""

from __future__ import annotations

import re

import structlog

from labctl.core.errors import DeploymentFailure
from labctl.gateways.base import DatabaseCredentials, DatabaseGateway
from labctl.gateways.process import run_command, tool_available

logger = structlog.get_logger()

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")


class PsqlDatabase(DatabaseGateway):
    def __init__(self, binary: str = "psql") -> None:
        self.binary = binary

    def missing_tools(self) -> list[str]:
        return [] if tool_available(self.binary) else [self.binary]

    async def _query(self, credentials: DatabaseCredentials, sql: str) -> str:
        result = await run_command(
            [
                self.binary,
                "-h", credentials.host,
                "-p", str(credentials.port),
                "-U", credentials.username,
                "-d", "postgres",
                "-t", "-A",
                "-c", sql,
            ],
            env={"PGPASSWORD": credentials.password, "PGCONNECT_TIMEOUT": "15"},
        )
        if not result.ok:
            raise DeploymentFailure(
                f"psql failed against {credentials.host}: {result.stderr_tail(5)}",
                details={"host": credentials.host},
            )
        return result.stdout.strip()

    async def create_database(self, credentials: DatabaseCredentials, name: str) -> bool:
        if not _IDENTIFIER.match(name):
            raise ValueError(f"invalid database name: {name!r}")

        exists = await self._query(credentials, f"SELECT 1 FROM pg_database WHERE datname = '{name}'")
        if exists == "1":
            logger.debug("database_exists", database=name)
            return False

        await self._query(credentials, f'CREATE DATABASE "{name}"')
        logger.info("database_created", database=name)
        return True
