"""Release orchestrator: stop the old release, start the new one, poll health.

State machine per deployment attempt::

    Idle ──► Stopping ──► Starting ──► Polling ──┬──► AllHealthy
                                                  └──► TimedOut

- Stopping: if a container of the project was created from an image other
  than the release's (compared by image ID, so a re-pulled ``latest`` counts
  as new), ``down`` with the configured grace period (30 s by default).
  Blocking. Nothing running, or the same release already running, makes this
  a no-op, so a repeated run is idempotent; ``up`` then recreates only
  containers whose image changed.
- Starting: opportunistic image prune (failures are logged and ignored),
  then ``up`` of the full service set.
- Polling: up to ``max_attempts`` structured status queries,
  ``poll_interval`` seconds apart. ``AllHealthy`` requires every service to
  be healthy. Log tails are captured for unhealthy services, for every
  not-yet-healthy service on the attempt before the ceiling, and for the
  whole project when the ceiling is reached.

Runtime failures while stopping or starting propagate as
``ContainerRuntimeError``; the driver treats them like a timeout and rolls
back.

Tags:
    orchestration, state-machine, health-polling, compose
"""

from __future__ import annotations

import time
from collections.abc import Callable

from insight360.core.errors import ContainerRuntimeError
from insight360.core.logging import get_logger
from insight360.deploy.config import DeploySettings
from insight360.deploy.container import ContainerRuntime
from insight360.deploy.results import OrchestrationOutcome, OrchestratorState
from insight360.deploy.services import HealthStatus, ReleaseDescriptor

logger = get_logger(__name__)


class ReleaseOrchestrator:
    """Drives one release from whatever is running to ``AllHealthy`` or ``TimedOut``.

    Parameters
    ----------
    runtime
        Container runtime.
    settings
        Grace period, poll interval, attempt ceiling and log tail sizes.
    sleep
        Blocking sleep between polls (``time.sleep``); injectable for tests.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        settings: DeploySettings,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.runtime = runtime
        self.settings = settings
        self._sleep = sleep
        self.state = OrchestratorState.IDLE
        self.history: list[OrchestratorState] = [OrchestratorState.IDLE]

    def run(self, release: ReleaseDescriptor) -> OrchestrationOutcome:
        """Run the state machine to a terminal state."""
        outcome = OrchestrationOutcome()

        self._enter(OrchestratorState.STOPPING)
        outcome.stop_was_noop = not self._stop_previous(release)

        self._enter(OrchestratorState.STARTING)
        self._start()

        self._enter(OrchestratorState.POLLING)
        self._poll(release, outcome)
        return outcome

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _enter(self, state: OrchestratorState) -> None:
        logger.debug("orchestrator.transition", from_state=self.state.value, to_state=state.value)
        self.state = state
        self.history.append(state)

    def _stop_previous(self, release: ReleaseDescriptor) -> bool:
        """Stop the running release. Returns False when there was nothing to stop."""
        running = self.runtime.running_images()
        if not running:
            logger.info("release.stop_skipped", reason="no running containers")
            return False
        wanted = {name: self.runtime.image_id(ref) for name, ref in release.image_refs().items()}
        stale = sorted(name for name, image_id in running.items() if wanted.get(name) != image_id)
        if not stale:
            logger.info("release.stop_skipped", reason="release already running", services=sorted(running))
            return False
        logger.info(
            "release.stopping",
            services=sorted(running),
            stale=stale,
            grace_seconds=self.settings.stop_timeout,
        )
        self.runtime.down(timeout=self.settings.stop_timeout)
        return True

    def _start(self) -> None:
        try:
            self.runtime.prune_images()
        except ContainerRuntimeError as exc:
            logger.warning("images.prune_failed", error=exc.message)
        logger.info("release.starting", tag=self.settings.image_tag)
        self.runtime.up()

    def _poll(self, release: ReleaseDescriptor, outcome: OrchestrationOutcome) -> None:
        names = release.service_names
        max_attempts = self.settings.max_attempts

        for attempt in range(1, max_attempts + 1):
            statuses = self.runtime.service_health(names)
            outcome.attempts = attempt
            outcome.statuses = statuses
            healthy = sum(1 for s in statuses.values() if s == HealthStatus.HEALTHY)

            logger.info(
                "poll.attempt",
                attempt=attempt,
                max_attempts=max_attempts,
                healthy=healthy,
                total=len(names),
                statuses={name: status.value for name, status in statuses.items()},
            )

            if healthy == release.required_healthy == len(names):
                self._enter(OrchestratorState.ALL_HEALTHY)
                outcome.state = OrchestratorState.ALL_HEALTHY
                logger.info("release.healthy", healthy=healthy, total=len(names), attempts=attempt)
                return

            for name, status in statuses.items():
                if status == HealthStatus.UNHEALTHY:
                    logger.warning("service.unhealthy", service=name, attempt=attempt)
                    self._capture_tail(outcome, name)
                elif attempt == max_attempts - 1 and status != HealthStatus.HEALTHY:
                    self._capture_tail(outcome, name)

            if attempt < max_attempts:
                self._sleep(self.settings.poll_interval)

        self._enter(OrchestratorState.TIMED_OUT)
        outcome.state = OrchestratorState.TIMED_OUT
        outcome.full_logs = self._safe_logs(None, self.settings.diagnostic_tail_lines)
        logger.error(
            "release.timed_out",
            attempts=outcome.attempts,
            healthy=outcome.healthy_count,
            total=len(names),
            statuses={name: status.value for name, status in outcome.statuses.items()},
        )

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def _capture_tail(self, outcome: OrchestrationOutcome, service: str) -> None:
        outcome.log_tails[service] = self._safe_logs(service, self.settings.log_tail_lines)

    def _safe_logs(self, service: str | None, tail: int) -> str:
        try:
            return self.runtime.logs(service, tail=tail)
        except ContainerRuntimeError as exc:
            return f"Failed to collect logs: {exc.message}"
