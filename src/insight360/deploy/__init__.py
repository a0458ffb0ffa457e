"""Health-gated redeploy of the Insight360 stack.

Key Concepts:
    DeploySettings: Pydantic model built from the environment; carries
        credentials, the release tag and orchestration tunables.
    ReleaseDescriptor: Immutable set of services and images for one release.
    ComposeRuntime: Subprocess wrapper around ``docker`` / ``docker compose``.
    BackupAgent: Best-effort ``mongodump`` snapshot and retention.
    ImageFetcher: Pulls every release image; all or nothing.
    ReleaseOrchestrator: Stop -> start -> poll state machine.
    HealthVerifier: External probes once containers report healthy.
    RollbackHandler: Stops a failed release and surfaces diagnostics.
    DeploymentRunner: The driver tying the stages together.

Related Modules:
    - :mod:`insight360.cli.deploy` - CLI commands (``insight360-deploy``)
    - :mod:`insight360.core.errors` - error hierarchy and exit codes

Tags:
    deploy, compose, health-gate, rollback, mongodb
"""

from insight360.deploy.backup import BackupAgent, NoOp
from insight360.deploy.config import REQUIRED_ENV_VARS, DeploySettings, validate_environment
from insight360.deploy.container import ComposeRuntime, ContainerRuntime
from insight360.deploy.fetcher import ImageFetcher, ImageSet
from insight360.deploy.orchestrator import ReleaseOrchestrator
from insight360.deploy.results import (
    AttemptOutcome,
    BackupRecord,
    DeploymentAttempt,
    DeploymentStage,
    DiagnosticBundle,
    OrchestrationOutcome,
    OrchestratorState,
    ProbeResult,
)
from insight360.deploy.rollback import RollbackHandler
from insight360.deploy.services import (
    SERVICES,
    HealthStatus,
    ReleaseDescriptor,
    ServiceSpec,
    get_service,
)
from insight360.deploy.verifier import HealthVerifier
from insight360.deploy.workflow import DeploymentRunner, run_deployment

__all__ = [
    # Config
    "REQUIRED_ENV_VARS",
    "DeploySettings",
    "validate_environment",
    # Services
    "SERVICES",
    "HealthStatus",
    "ReleaseDescriptor",
    "ServiceSpec",
    "get_service",
    # Runtime
    "ComposeRuntime",
    "ContainerRuntime",
    # Stages
    "BackupAgent",
    "NoOp",
    "ImageFetcher",
    "ImageSet",
    "ReleaseOrchestrator",
    "HealthVerifier",
    "RollbackHandler",
    # Results
    "AttemptOutcome",
    "BackupRecord",
    "DeploymentAttempt",
    "DeploymentStage",
    "DiagnosticBundle",
    "OrchestrationOutcome",
    "OrchestratorState",
    "ProbeResult",
    # Workflow
    "DeploymentRunner",
    "run_deployment",
]
