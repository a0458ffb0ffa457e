"""
Structured error types for insight360-deploy.

Every failure the deployment pipeline can surface is a ``DeployError``
subclass. Each carries a category for routing, the pipeline stage it belongs
to, a process exit code, optional structured context and the chained cause.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        DeployError                            │
        │          (category, stage, exit_code, context, cause)         │
        ├──────────────────────────────────────────────────────────────┤
        │  ConfigurationError   BackupWarning     FetchError            │
        │  (CONFIG, exit 2)     (BACKUP, logged)  (FETCH, exit 3)       │
        │        │                                                      │
        │  RuntimeUnavailableError                                      │
        │                                                               │
        │  OrchestrationTimeout HealthCheckError  ContainerRuntimeError │
        │  (ORCHESTRATION, 4)   (HEALTH, 5)       (RUNTIME, 1)          │
        └──────────────────────────────────────────────────────────────┘

Propagation:
    - ``ConfigurationError`` and ``FetchError`` happen before any container
      is touched; the driver aborts without rollback.
    - ``OrchestrationTimeout``, ``HealthCheckError`` and a
      ``ContainerRuntimeError`` raised after mutation began always trigger
      the rollback handler.
    - ``BackupWarning`` is never raised out of the backup agent; it is
      logged and attached to the ``NoOp`` result.

Examples:
    >>> err = ConfigurationError(["JWT_SECRET", "MONGO_ROOT_PASSWORD"])
    >>> err.missing_keys
    ['JWT_SECRET', 'MONGO_ROOT_PASSWORD']
    >>> err.exit_code
    2

Tags:
    error-handling, exception-hierarchy, exit-codes, deployment
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Classification used for logging and exit-code routing."""

    CONFIG = "CONFIG"
    BACKUP = "BACKUP"
    FETCH = "FETCH"
    ORCHESTRATION = "ORCHESTRATION"
    HEALTH = "HEALTH"
    RUNTIME = "RUNTIME"
    INTERNAL = "INTERNAL"


class DeployError(Exception):
    """Base exception for every deployment failure.

    Subclasses set ``default_category``, ``stage`` and ``exit_code``.
    ``context`` holds free-form structured metadata which is merged into
    the ``to_dict()`` payload used for logging and the attempt summary.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    stage: str = "unknown"
    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: Mapping[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> DeployError:
        """Attach extra context (fluent API)."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "stage": self.stage,
        }
        if self.context:
            data["context"] = self.context
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Pre-flight
# ---------------------------------------------------------------------------


class ConfigurationError(DeployError):
    """Required configuration is missing or unusable."""

    default_category = ErrorCategory.CONFIG
    stage = "validate"
    exit_code = 2

    def __init__(
        self,
        missing_keys: Iterable[str] = (),
        message: str | None = None,
        **kwargs: Any,
    ):
        self.missing_keys = list(missing_keys)
        if message is None:
            message = "Missing required configuration: " + ", ".join(self.missing_keys)
        super().__init__(message, **kwargs)
        if self.missing_keys:
            self.context.setdefault("missing_keys", self.missing_keys)


class RuntimeUnavailableError(ConfigurationError):
    """Docker daemon or compose command is not available on this host."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__((), message=message, **kwargs)


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------


class BackupWarning(DeployError):
    """A backup step failed. Logged only; deployment continues."""

    default_category = ErrorCategory.BACKUP
    stage = "backup"
    exit_code = 0


# ---------------------------------------------------------------------------
# Image pull
# ---------------------------------------------------------------------------


class FetchError(DeployError):
    """One or more release images could not be pulled."""

    default_category = ErrorCategory.FETCH
    stage = "pull"
    exit_code = 3

    def __init__(self, failed_images: Mapping[str, str], **kwargs: Any):
        self.failed_images = dict(failed_images)
        message = "Failed to pull images: " + ", ".join(sorted(self.failed_images))
        super().__init__(message, **kwargs)
        self.context.setdefault("failed_images", self.failed_images)


# ---------------------------------------------------------------------------
# After mutation
# ---------------------------------------------------------------------------


class ContainerRuntimeError(DeployError):
    """A docker / docker compose command failed or timed out."""

    default_category = ErrorCategory.RUNTIME
    stage = "runtime"
    exit_code = 1


class OrchestrationTimeout(DeployError):
    """Services did not all report healthy within the polling ceiling."""

    default_category = ErrorCategory.ORCHESTRATION
    stage = "orchestrate"
    exit_code = 4

    def __init__(self, attempts: int, statuses: Mapping[str, str], **kwargs: Any):
        self.attempts = attempts
        self.statuses = dict(statuses)
        healthy = sum(1 for s in self.statuses.values() if s == "healthy")
        message = (
            f"Services failed to become healthy after {attempts} attempts "
            f"({healthy}/{len(self.statuses)} healthy)"
        )
        super().__init__(message, **kwargs)
        self.context.setdefault("statuses", self.statuses)


class HealthCheckError(DeployError):
    """An external probe failed after internal health passed."""

    default_category = ErrorCategory.HEALTH
    stage = "verify"
    exit_code = 5

    def __init__(self, failed_probes: Mapping[str, str], **kwargs: Any):
        self.failed_probes = dict(failed_probes)
        message = "External health checks failed: " + ", ".join(
            f"{name} ({detail})" for name, detail in self.failed_probes.items()
        )
        super().__init__(message, **kwargs)
        self.context.setdefault("failed_probes", self.failed_probes)


class AttemptFinalizedError(DeployError):
    """A completed DeploymentAttempt was modified."""


def exit_code_for(error: BaseException) -> int:
    """Map an exception to the process exit code."""
    if isinstance(error, DeployError):
        return error.exit_code
    return 1


__all__ = [
    "AttemptFinalizedError",
    "BackupWarning",
    "ConfigurationError",
    "ContainerRuntimeError",
    "DeployError",
    "ErrorCategory",
    "FetchError",
    "HealthCheckError",
    "OrchestrationTimeout",
    "RuntimeUnavailableError",
    "exit_code_for",
]
