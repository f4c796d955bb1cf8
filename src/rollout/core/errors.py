"""
Structured error types for rollout-spine.

Every failure the rollout can surface is a ``RolloutError`` subclass carrying
a category, a retry flag, structured context and an optional chained cause.
The CLI renders ``to_dict()``; the sequencer records ``str(error)`` on the
failing service outcome.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        RolloutError                           │
        │       (category, retryable, context, cause)                   │
        ├──────────────────────────────────────────────────────────────┤
        │  ConfigError          OrchestrationError    AuthError         │
        │  (CONFIG)             (ORCHESTRATION)       (AUTH)            │
        │     │                    │                     │              │
        │  RouteConflict        DependencyTimeout     RegistryAuthError │
        │  MissingSecretError   DeployLockError                         │
        │  SecretsFormatError                                           │
        │                                                               │
        │  ContainerError (RUNTIME, retryable)                          │
        └──────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: Raise bare ``RuntimeError`` from deploy code
    ✅ DO: Raise the matching subclass so the CLI can report it

    ❌ DON'T: Put secret values into error context
    ✅ DO: Report secret *names* only

Tags:
    error-handling, exception-hierarchy, rollout, validation
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    CONFIG = "CONFIG"  # Descriptor, routing, secrets problems
    AUTH = "AUTH"  # Registry authentication
    ORCHESTRATION = "ORCHESTRATION"  # Readiness, locking, sequencing
    RUNTIME = "RUNTIME"  # Container runtime failures
    NETWORK = "NETWORK"  # DNS, SSH transport
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only non-None fields are emitted by ``to_dict()``; anything that does not
    fit a named field goes into ``metadata``.
    """

    target: str | None = None
    service: str | None = None
    accessory: str | None = None
    host: str | None = None
    run_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ["target", "service", "accessory", "host", "run_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RolloutError(Exception):
    """
    Base exception for all rollout-spine errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers may
    override both per instance.

    Examples:
        >>> error = RolloutError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(service="api").context.service
        'api'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RolloutError:
        """Add context to this error (fluent API).

        Usage:
            raise ConfigError("Unknown accessory").with_context(
                service="api", accessory="db"
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS (caught before anything starts)
# =============================================================================


class ConfigError(RolloutError):
    """
    Configuration error.
    Never retryable - the descriptors or secrets must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class RouteConflict(ConfigError):
    """Two services claim overlapping routes on the same host."""

    def __init__(
        self,
        host: str,
        services: tuple[str, str],
        message: str | None = None,
        **kwargs: Any,
    ):
        self.host = host
        self.services = services
        super().__init__(
            message or f"Route conflict on {host}: {services[0]!r} and {services[1]!r}",
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["host"] = self.host
        result["services"] = list(self.services)
        return result


class MissingSecretError(ConfigError):
    """A declared secret has no value in the secrets file or environment."""

    def __init__(self, names: list[str], tried: list[str] | None = None):
        self.names = names
        self.tried = tried or []

        msg = f"Missing secret(s): {', '.join(names)}"
        if self.tried:
            msg += f" (tried: {', '.join(self.tried)})"
        super().__init__(msg)


class SecretsFormatError(ConfigError):
    """A line of the secrets file is not ``KEY=VALUE``."""

    def __init__(self, path: str, line_no: int, reason: str):
        self.path = path
        self.line_no = line_no
        super().__init__(f"{path}:{line_no}: {reason}")


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class OrchestrationError(RolloutError):
    """Sequencing or coordination error."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


class DependencyTimeout(OrchestrationError):
    """An accessory did not report ready within the polling bound."""

    def __init__(self, accessory: str, attempts: int, interval: float):
        self.accessory = accessory
        self.attempts = attempts
        self.interval = interval
        super().__init__(
            f"Accessory {accessory!r} not ready after {attempts} attempts "
            f"({interval:g}s interval)",
            context=ErrorContext(accessory=accessory),
        )


class DeployLockError(OrchestrationError):
    """The deploy lock for a target is held by another deployment."""

    def __init__(self, target: str, holder: dict[str, Any] | None = None):
        self.target = target
        self.holder = holder or {}
        msg = f"Deploy lock for {target!r} is held"
        if self.holder:
            by = self.holder.get("holder", "unknown")
            when = self.holder.get("acquired_at", "unknown time")
            msg += f" by {by} since {when}"
            if self.holder.get("message"):
                msg += f": {self.holder['message']}"
        super().__init__(msg, context=ErrorContext(target=target))


# =============================================================================
# AUTH / RUNTIME ERRORS
# =============================================================================


class AuthError(RolloutError):
    """Authentication error. Never retryable."""

    default_category = ErrorCategory.AUTH
    default_retryable = False


class RegistryAuthError(AuthError):
    """Registry login was rejected on a target host."""

    def __init__(self, server: str, host: str, detail: str = ""):
        self.server = server
        self.host = host
        msg = f"Registry login to {server} failed on {host}"
        if detail:
            msg += f": {detail.strip()}"
        super().__init__(msg, context=ErrorContext(host=host))


class ContainerError(RolloutError):
    """A container runtime command failed or timed out."""

    default_category = ErrorCategory.RUNTIME
    default_retryable = True


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, RolloutError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


__all__ = [
    "AuthError",
    "ConfigError",
    "ContainerError",
    "DependencyTimeout",
    "DeployLockError",
    "ErrorCategory",
    "ErrorContext",
    "MissingSecretError",
    "OrchestrationError",
    "RegistryAuthError",
    "RolloutError",
    "RouteConflict",
    "SecretsFormatError",
    "is_retryable",
]
