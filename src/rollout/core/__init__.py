"""Core primitives shared by the rollout packages: errors, logging, secrets."""

from rollout.core.errors import (
    ConfigError,
    ContainerError,
    DependencyTimeout,
    DeployLockError,
    ErrorCategory,
    MissingSecretError,
    RegistryAuthError,
    RolloutError,
    RouteConflict,
)

__all__ = [
    "ConfigError",
    "ContainerError",
    "DependencyTimeout",
    "DeployLockError",
    "ErrorCategory",
    "MissingSecretError",
    "RegistryAuthError",
    "RolloutError",
    "RouteConflict",
]
