"""Result models for insight360-deploy.

Pydantic v2 models that capture structured outcomes of each stage and of the
deployment attempt as a whole. The attempt is the audit record: it is filled
in as stages run, finalised with ``mark_complete()``, appended to the
deployment log, and rejects any assignment afterwards.

Key Concepts:
    BackupRecord: One database snapshot archive on disk.
    ProbeResult: Outcome of a single external health probe.
    OrchestrationOutcome: Terminal state of the release orchestrator, with
        the final per-service statuses and captured log tails.
    DiagnosticBundle: What the rollback handler surfaces.
    DeploymentAttempt: One per invocation; outcome success / failure /
        rolled_back.

Tags:
    results, models, pydantic, deployment, audit
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from insight360.core.errors import AttemptFinalizedError
from insight360.deploy.services import HealthStatus


def utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------


class BackupRecord(BaseModel):
    """A database snapshot archive."""

    timestamp: datetime
    source: str
    path: Path
    size_bytes: int = 0


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class ProbeResult(BaseModel):
    """Result of one external probe."""

    service: str
    kind: str
    target: str
    success: bool = False
    status_code: int | None = None
    latency_ms: float | None = None
    detail: str = ""


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


class OrchestratorState(str, Enum):
    """Release orchestrator state machine."""

    IDLE = "idle"
    STOPPING = "stopping"
    STARTING = "starting"
    POLLING = "polling"
    ALL_HEALTHY = "all_healthy"
    TIMED_OUT = "timed_out"


class OrchestrationOutcome(BaseModel):
    """Terminal result of one orchestrator run."""

    state: OrchestratorState = OrchestratorState.IDLE
    attempts: int = 0
    stop_was_noop: bool = True
    statuses: dict[str, HealthStatus] = Field(default_factory=dict)
    log_tails: dict[str, str] = Field(default_factory=dict)
    full_logs: str = ""

    @property
    def all_healthy(self) -> bool:
        return self.state == OrchestratorState.ALL_HEALTHY

    @property
    def healthy_count(self) -> int:
        return sum(1 for s in self.statuses.values() if s == HealthStatus.HEALTHY)


class DiagnosticBundle(BaseModel):
    """Diagnostics surfaced by the rollback handler."""

    attempt_id: str
    failure_stage: str
    error: str | None = None
    services_stopped: list[str] = Field(default_factory=list)
    teardown_error: str | None = None
    logs: str = ""
    statuses: dict[str, HealthStatus] = Field(default_factory=dict)
    created_at: str = Field(default_factory=utcnow_iso)


# ---------------------------------------------------------------------------
# Deployment attempt
# ---------------------------------------------------------------------------


class AttemptOutcome(str, Enum):
    """Final outcome of a deployment attempt."""

    SUCCESS = "success"
    FAILURE = "failure"
    ROLLED_BACK = "rolled_back"
    PENDING = "pending"


class DeploymentStage(str, Enum):
    """Pipeline stages, in execution order."""

    VALIDATE = "validate"
    BACKUP = "backup"
    PULL = "pull"
    ORCHESTRATE = "orchestrate"
    VERIFY = "verify"
    COMPLETE = "complete"


# Stages after which a failure leaves containers in an unknown state
MUTATING_STAGES = frozenset({DeploymentStage.ORCHESTRATE, DeploymentStage.VERIFY})


class DeploymentAttempt(BaseModel):
    """Audit record of one deployment invocation."""

    attempt_id: str
    tag: str
    started_at: str = Field(default_factory=utcnow_iso)
    completed_at: str | None = None
    duration_seconds: float = 0.0
    stage: DeploymentStage = DeploymentStage.VALIDATE
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    statuses: dict[str, HealthStatus] = Field(default_factory=dict)
    log_excerpt: str = ""
    error: str | None = None
    error_detail: dict[str, Any] | None = None
    exit_code: int | None = None
    backup: BackupRecord | None = None
    probes: list[ProbeResult] = Field(default_factory=list)
    rollbacks: int = 0
    pruned_backups: int = 0

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("completed_at") is not None:
            raise AttemptFinalizedError(
                f"Deployment attempt {self.attempt_id} is complete; cannot set {name!r}"
            )
        super().__setattr__(name, value)

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None

    @property
    def mutation_started(self) -> bool:
        return self.stage in MUTATING_STAGES

    def mark_complete(self, outcome: AttemptOutcome, exit_code: int = 0) -> None:
        """Finalise the attempt; no field may change afterwards."""
        completed_at = utcnow_iso()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(completed_at)
        self.duration_seconds = (end - start).total_seconds()
        self.outcome = outcome
        self.exit_code = exit_code
        if outcome == AttemptOutcome.SUCCESS:
            self.stage = DeploymentStage.COMPLETE
        self.completed_at = completed_at

    @property
    def summary(self) -> str:
        healthy = sum(1 for s in self.statuses.values() if s == HealthStatus.HEALTHY)
        return (
            f"{self.outcome.value} at stage {self.stage.value}: "
            f"{healthy}/{len(self.statuses)} services healthy, "
            f"{self.rollbacks} rollback(s) in {self.duration_seconds:.1f}s"
        )
