"""Core modules for labctl - centralized definitions and utilities."""

from labctl.core.errors import (
    ConfigurationError,
    DeploymentFailure,
    ExitCode,
    LabError,
    PreflightError,
    ProvisionerFailure,
    ProvisionerLockError,
    ReadinessCancelled,
    ReadinessFatal,
    ReadinessTimeout,
    StateCorruption,
    StateInvariantViolation,
    UnmetHardDependency,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ConfigurationError",
    "DeploymentFailure",
    "ExitCode",
    "LabError",
    "PreflightError",
    "ProvisionerFailure",
    "ProvisionerLockError",
    "ReadinessCancelled",
    "ReadinessFatal",
    "ReadinessTimeout",
    "StateCorruption",
    "StateInvariantViolation",
    "UnmetHardDependency",
    "format_error_message",
    "main_with_error_handling",
]
