"""Deployment driver for insight360-deploy.

Runs one deployment attempt through its stages, strictly in order::

    validate ──► backup ──► pull ──► orchestrate ──► verify ──► complete
                                        │               │
                                        └──── failure ──┴──► rollback (once)

Key Concepts:
    DeploymentRunner: ``DeploySettings`` -> ``DeploymentAttempt``. Every
        stage outcome is a typed value or a ``DeployError``; the runner
        matches on them instead of trapping errors globally.
    run_deployment(): Validates the environment, builds settings and runs
        the driver. Configuration errors become a failed attempt with exit
        code 2 rather than an exception.

Architecture Decisions:
    - Failures before container mutation (validate, backup, pull) abort
      without touching the running release.
    - Failures at or after orchestration trigger exactly one rollback.
    - The attempt is finalised with ``mark_complete()`` before it is
      written out, so the persisted summary is the final one.
    - External cancellation (``KeyboardInterrupt``) is not intercepted; no
      extra cleanup runs.

Tags:
    workflow, orchestration, deployment, runner, rollback
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import httpx

from insight360.core.errors import (
    ConfigurationError,
    DeployError,
    HealthCheckError,
    OrchestrationTimeout,
    RuntimeUnavailableError,
    exit_code_for,
)
from insight360.core.logging import LogContext, get_logger
from insight360.core.result import Err, Ok
from insight360.deploy.backup import BackupAgent, NoOp
from insight360.deploy.compose import load_manifest
from insight360.deploy.config import DeploySettings
from insight360.deploy.container import ComposeRuntime, ContainerRuntime
from insight360.deploy.fetcher import ImageFetcher
from insight360.deploy.log_collector import AttemptRecorder
from insight360.deploy.orchestrator import ReleaseOrchestrator
from insight360.deploy.results import (
    AttemptOutcome,
    DeploymentAttempt,
    DeploymentStage,
    DiagnosticBundle,
)
from insight360.deploy.rollback import RollbackHandler
from insight360.deploy.services import DEFAULT_TAG, ReleaseDescriptor
from insight360.deploy.verifier import HealthVerifier

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Deployment Runner
# ---------------------------------------------------------------------------


class DeploymentRunner:
    """Runs a full redeploy of the Insight360 stack.

    Parameters
    ----------
    settings
        Validated deployment settings.
    runtime
        Container runtime; a ``ComposeRuntime`` is built (and the host
        checked) during the validate stage when omitted.
    release
        Release to deploy; defaults to all three services at
        ``settings.image_tag``.
    sleep
        Sleep used between health polls.
    http_client
        ``httpx.Client`` for external probes.
    check_manifest
        Parse the compose manifest during validation.
    """

    def __init__(
        self,
        settings: DeploySettings,
        runtime: ContainerRuntime | None = None,
        *,
        release: ReleaseDescriptor | None = None,
        sleep: Callable[[float], None] = time.sleep,
        http_client: httpx.Client | None = None,
        check_manifest: bool = True,
    ) -> None:
        self.settings = settings
        self.runtime = runtime
        self.release = release or ReleaseDescriptor.create(
            tag=settings.image_tag,
            registry=settings.registry_username,
        )
        self._sleep = sleep
        self._http_client = http_client
        self.check_manifest = check_manifest
        self.recorder = AttemptRecorder(settings.output_dir, settings.attempt_id, settings.log_file)
        self.bundle: DiagnosticBundle | None = None
        self._log_tails: dict[str, str] = {}

    def run(self) -> DeploymentAttempt:
        """Execute one deployment attempt and return its finalised record."""
        attempt = DeploymentAttempt(attempt_id=self.settings.attempt_id, tag=self.release.tag)

        with LogContext(attempt_id=attempt.attempt_id, tag=attempt.tag):
            self.recorder.record_start(attempt)
            logger.info(
                "deploy.started",
                services=self.release.service_names,
                images=self.release.image_refs(),
            )
            try:
                self._execute(attempt)
            except DeployError as exc:
                self._fail(attempt, exc)
            except Exception as exc:
                self._fail(attempt, DeployError(f"Unexpected error: {exc}", cause=exc))
            else:
                attempt.mark_complete(AttemptOutcome.SUCCESS, exit_code=0)
                logger.info(
                    "deploy.succeeded",
                    duration_seconds=round(attempt.duration_seconds, 1),
                    summary=attempt.summary,
                )

            self._persist(attempt)
        return attempt

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _execute(self, attempt: DeploymentAttempt) -> None:
        attempt.stage = DeploymentStage.VALIDATE
        runtime = self._preflight()

        attempt.stage = DeploymentStage.BACKUP
        agent = BackupAgent(runtime, self.settings)
        match agent.backup():
            case NoOp(reason=reason):
                logger.info("backup.noop", reason=reason)
            case record:
                attempt.backup = record

        attempt.stage = DeploymentStage.PULL
        match ImageFetcher(runtime).pull(self.release):
            case Ok(images):
                logger.debug("images.ready", images=images.images)
            case Err(error):
                raise error

        attempt.stage = DeploymentStage.ORCHESTRATE
        outcome = ReleaseOrchestrator(runtime, self.settings, sleep=self._sleep).run(self.release)
        attempt.statuses = dict(outcome.statuses)
        self._log_tails = dict(outcome.log_tails)
        if not outcome.all_healthy:
            attempt.log_excerpt = outcome.full_logs
            raise OrchestrationTimeout(
                outcome.attempts,
                {name: status.value for name, status in outcome.statuses.items()},
            )

        attempt.stage = DeploymentStage.VERIFY
        verifier = HealthVerifier(self.settings, client=self._http_client)
        try:
            attempt.probes = verifier.verify(self.release)
        except HealthCheckError:
            attempt.probes = verifier.last_results
            raise

        try:
            attempt.pruned_backups = len(agent.prune())
        except OSError as exc:
            logger.warning("backup.prune_failed", error=str(exc))

    def _preflight(self) -> ContainerRuntime:
        if self.check_manifest:
            load_manifest(self.settings.compose_file, self.release.services)
        if self.runtime is None:
            if not ComposeRuntime.is_docker_available():
                raise RuntimeUnavailableError(
                    "Docker daemon is not reachable. Start Docker and retry."
                )
            self.runtime = ComposeRuntime.from_settings(self.settings)
        logger.info("validate.passed", compose_file=str(self.settings.compose_file))
        return self.runtime

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _fail(self, attempt: DeploymentAttempt, error: DeployError) -> None:
        attempt.error = error.message
        attempt.error_detail = error.to_dict()
        logger.error("deploy.failed", failure_stage=attempt.stage.value, **error.to_dict())

        if attempt.mutation_started and self.runtime is not None:
            self.bundle = RollbackHandler(self.runtime, self.settings).rollback(attempt)
            attempt.rollbacks += 1
            if not attempt.log_excerpt:
                attempt.log_excerpt = self.bundle.logs
            outcome = AttemptOutcome.ROLLED_BACK
        else:
            self.bundle = DiagnosticBundle(
                attempt_id=attempt.attempt_id,
                failure_stage=attempt.stage.value,
                error=attempt.error,
                statuses=dict(attempt.statuses),
            )
            outcome = AttemptOutcome.FAILURE

        attempt.mark_complete(outcome, exit_code=exit_code_for(error))

    def _persist(self, attempt: DeploymentAttempt) -> None:
        try:
            self.recorder.write_summary(attempt)
            if self.bundle is not None:
                self.recorder.write_diagnostics(self.bundle, self._log_tails)
            self.recorder.record_finish(attempt)
        except OSError as exc:
            logger.error("attempt.persist_failed", error=str(exc))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_deployment(
    env: Mapping[str, str] | None = None,
    *,
    runtime: ContainerRuntime | None = None,
    sleep: Callable[[float], None] = time.sleep,
    http_client: httpx.Client | None = None,
    check_manifest: bool = True,
    **overrides: Any,
) -> DeploymentAttempt:
    """Validate the environment and run one deployment attempt.

    A ``ConfigurationError`` raised while building settings is returned as
    a failed attempt (exit code 2) without touching any container; it is
    still written to the deployment log and the attempt directory.
    """
    try:
        settings = DeploySettings.from_env(env, **overrides)
    except ConfigurationError as exc:
        source = os.environ if env is None else env
        return _record_config_failure(exc, source, overrides)

    runner = DeploymentRunner(
        settings,
        runtime,
        sleep=sleep,
        http_client=http_client,
        check_manifest=check_manifest,
    )
    return runner.run()


def _record_config_failure(
    error: ConfigurationError,
    source: Mapping[str, str],
    overrides: Mapping[str, Any],
) -> DeploymentAttempt:
    """Finalise and record an attempt that failed before settings existed."""
    attempt = DeploymentAttempt(
        attempt_id=uuid.uuid4().hex[:12],
        tag=(source.get("IMAGE_TAG") or DEFAULT_TAG),
    )
    output_dir = overrides.get("output_dir") or source.get("DEPLOY_OUTPUT_DIR") or "deploy-results"
    log_file = overrides.get("log_file") or source.get("DEPLOY_LOG_FILE") or "deploy.log"
    recorder = AttemptRecorder(Path(output_dir), attempt.attempt_id, Path(log_file))

    with LogContext(attempt_id=attempt.attempt_id, tag=attempt.tag):
        logger.error("deploy.failed", failure_stage=attempt.stage.value, **error.to_dict())
        attempt.error = error.message
        attempt.error_detail = error.to_dict()
        attempt.mark_complete(AttemptOutcome.FAILURE, exit_code=error.exit_code)
        try:
            recorder.record_start(attempt)
            recorder.write_summary(attempt)
            recorder.record_finish(attempt)
        except OSError as exc:
            logger.error("attempt.persist_failed", error=str(exc))
    return attempt
