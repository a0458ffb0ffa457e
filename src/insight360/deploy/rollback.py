"""Rollback handler: stop the partially deployed release and surface diagnostics.

Invoked by the driver, exactly once, when a failure happens after container
mutation began (orchestration or verification). The handler does not restore
the previous release; it tears the stack down with the usual grace period,
collects the combined log tail and returns a ``DiagnosticBundle`` for the
operator. Teardown failures are recorded in the bundle rather than raised so
the original failure stays the reported one.
"""

from __future__ import annotations

from insight360.core.errors import ContainerRuntimeError
from insight360.core.logging import get_logger
from insight360.deploy.config import DeploySettings
from insight360.deploy.container import ContainerRuntime
from insight360.deploy.results import DeploymentAttempt, DiagnosticBundle

logger = get_logger(__name__)


class RollbackHandler:
    def __init__(self, runtime: ContainerRuntime, settings: DeploySettings) -> None:
        self.runtime = runtime
        self.settings = settings

    def rollback(self, attempt: DeploymentAttempt) -> DiagnosticBundle:
        """Stop all services and collect diagnostics for ``attempt``."""
        logger.warning(
            "rollback.started",
            failure_stage=attempt.stage.value,
            error=attempt.error,
        )
        bundle = DiagnosticBundle(
            attempt_id=attempt.attempt_id,
            failure_stage=attempt.stage.value,
            error=attempt.error,
            statuses=dict(attempt.statuses),
        )

        try:
            bundle.services_stopped = self.runtime.running_services()
        except ContainerRuntimeError as exc:
            logger.warning("rollback.status_failed", error=exc.message)

        try:
            self.runtime.down(timeout=self.settings.stop_timeout)
        except ContainerRuntimeError as exc:
            bundle.teardown_error = exc.message
            logger.error("rollback.teardown_failed", error=exc.message)

        try:
            bundle.logs = self.runtime.logs(None, tail=self.settings.diagnostic_tail_lines)
        except ContainerRuntimeError as exc:
            bundle.logs = f"Failed to collect logs: {exc.message}"

        logger.error(
            "rollback.completed",
            stopped=bundle.services_stopped,
            teardown_error=bundle.teardown_error,
        )
        logger.warning(
            "rollback.manual_intervention",
            hint="previous release was not restored; inspect diagnostics and redeploy",
        )
        return bundle
