"""Async subprocess helper shared by the CLI-backed gateways."""

from __future__ import annotations

import asyncio
import os
import shutil
from dataclasses import dataclass
from typing import Mapping, Sequence

import structlog

logger = structlog.get_logger()


class CommandNotFound(Exception):
    """The executable is not on PATH."""


@dataclass
class CommandResult:
    args: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command(self) -> str:
        return " ".join(self.args[:3])

    def stderr_tail(self, lines: int = 20) -> str:
        return "\n".join(self.stderr.strip().splitlines()[-lines:])


def tool_available(name: str) -> bool:
    """Check whether an executable is on PATH."""
    return shutil.which(name) is not None


async def run_command(
    args: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    cwd: str | os.PathLike[str] | None = None,
    input: str | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run a command to completion, capturing output.

    Non-zero exit codes are returned, not raised; the caller decides what a
    failure means. ``env`` is merged over the current environment.
    """
    argv = [str(a) for a in args]
    merged_env = {**os.environ, **env} if env else None
    logger.debug("run_command", command=" ".join(argv[:4]), cwd=str(cwd) if cwd else None)

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=merged_env,
            cwd=cwd,
        )
    except FileNotFoundError as e:
        raise CommandNotFound(f"{argv[0]} not found on PATH") from e

    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(input.encode() if input is not None else None),
            timeout=timeout,
        )
    except BaseException:
        # Timeout or cancellation: never leave the child running.
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    return CommandResult(
        args=argv,
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
