"""
Unified error handling for lab CLI commands.

Every failure the orchestrator can raise is a ``LabError`` subclass carrying
a human-readable message, structured details for logging, and the exit code
the command should return.

Exit Codes:
- 0: Success
- 1: Error (any unrecovered failure, including failed components)
- 130: Interrupted (SIGINT)
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    ERROR = 1
    INTERRUPTED = 130


class LabError(Exception):
    """Base exception for lab errors with exit code support."""

    exit_code: ExitCode = ExitCode.ERROR
    category: str = "error"
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(LabError):
    """Raised for invalid or missing lab configuration."""

    category = "configuration"


class PreflightError(LabError):
    """Raised when a command's prerequisites are not met."""

    category = "preflight"


class UnmetHardDependency(LabError):
    """Raised when a requested component's hard dependency is unavailable."""

    category = "dependency"

    def __init__(self, missing: dict[str, list[str]]):
        parts = [f"{name} requires {', '.join(deps)}" for name, deps in sorted(missing.items())]
        super().__init__(
            "Unmet hard dependencies: " + "; ".join(parts),
            details={"missing": {name: list(deps) for name, deps in missing.items()}},
        )
        self.missing = missing


class ProvisionerFailure(LabError):
    """Raised when the infrastructure provisioner exits non-zero."""

    category = "provisioner"


class ProvisionerLockError(ProvisionerFailure):
    """Raised when the provisioner cannot acquire its state lock."""

    category = "provisioner-lock"


class ProvisionerThrottled(ProvisionerFailure):
    """Raised when the cloud API rejects a call because of rate limiting."""

    category = "provisioner-throttled"


class DeploymentFailure(LabError):
    """Raised when a package install/uninstall or cluster operation fails."""

    category = "deployment"


class ClusterUnreachable(DeploymentFailure):
    """Raised when the cluster API endpoint cannot be reached."""

    category = "cluster-unreachable"


class ReadinessTimeout(LabError):
    """Raised when a readiness condition does not hold within its bound."""

    category = "timeout"

    def __init__(self, description: str, elapsed: float, last_detail: str | None):
        message = f"Timed out after {elapsed:.0f}s waiting for {description}"
        if last_detail:
            message = f"{message} (last status: {last_detail})"
        super().__init__(
            message,
            details={"elapsed_seconds": round(elapsed, 1), "last_detail": last_detail},
        )
        self.elapsed = elapsed
        self.last_detail = last_detail


class ReadinessFatal(LabError):
    """Raised when a polled resource reaches an unrecoverable state."""

    category = "readiness"


class ReadinessCancelled(LabError):
    """Raised when polling is stopped by a cancellation signal."""

    category = "cancelled"
    exit_code = ExitCode.INTERRUPTED


class StateCorruption(LabError):
    """Raised when the persisted state file cannot be parsed or validated."""

    category = "state"


class StateInvariantViolation(LabError):
    """Raised when a state record would break the phase ordering."""

    category = "state"
    show_traceback = True


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI command functions that provides unified error handling.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - LabError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 1
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            from labctl.cli.ux import error as print_error

            try:
                return func(*args, **kwargs)
            except LabError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
                        **e.details,
                    )
                print_error(format_error_message(e))
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                print_error("Interrupted")
                return ExitCode.INTERRUPTED
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=int(ExitCode.ERROR),
                    )
                print_error(f"unexpected: {e}")
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: LabError) -> str:
    """Format an error message for display to users."""
    return f"{error.category}: {error.message}"
