"""Tests for the rollback handler."""

from __future__ import annotations


def _failed_attempt(stage):
    from insight360.deploy.results import DeploymentAttempt
    from insight360.deploy.services import HealthStatus

    attempt = DeploymentAttempt(attempt_id="abc123", tag="v1")
    attempt.stage = stage
    attempt.error = "Services failed to become healthy after 40 attempts (2/3 healthy)"
    attempt.statuses = {"mongodb": HealthStatus.HEALTHY, "backend": HealthStatus.UNHEALTHY}
    return attempt


class TestRollbackHandler:
    def test_stops_services_and_collects_logs(self, make_runtime, settings):
        from insight360.deploy.results import DeploymentStage
        from insight360.deploy.rollback import RollbackHandler

        runtime = make_runtime(running=["mongodb", "backend", "frontend"])
        bundle = RollbackHandler(runtime, settings).rollback(_failed_attempt(DeploymentStage.ORCHESTRATE))

        assert runtime.called("down") == [(30,)]
        assert runtime.called("logs") == [(None, 50)]
        assert bundle.attempt_id == "abc123"
        assert bundle.failure_stage == "orchestrate"
        assert bundle.services_stopped == ["mongodb", "backend", "frontend"]
        assert bundle.logs == "<all last 50 lines>"
        assert bundle.teardown_error is None
        assert "2/3 healthy" in bundle.error
        assert runtime.running == []

    def test_does_not_restart_anything(self, make_runtime, settings):
        from insight360.deploy.results import DeploymentStage
        from insight360.deploy.rollback import RollbackHandler

        runtime = make_runtime(running=["mongodb"])
        RollbackHandler(runtime, settings).rollback(_failed_attempt(DeploymentStage.VERIFY))

        assert runtime.called("up") == []
        assert runtime.called("pull_image") == []

    def test_teardown_failure_is_recorded(self, make_runtime, settings):
        from insight360.deploy.results import DeploymentStage
        from insight360.deploy.rollback import RollbackHandler

        runtime = make_runtime(running=["backend"])
        runtime.fail_down = True
        bundle = RollbackHandler(runtime, settings).rollback(_failed_attempt(DeploymentStage.VERIFY))

        assert "down" in bundle.teardown_error
        assert bundle.logs == "<all last 50 lines>"

    def test_stops_services_even_when_status_listing_fails(self, make_runtime, settings):
        from insight360.deploy.results import DeploymentStage
        from insight360.deploy.rollback import RollbackHandler

        runtime = make_runtime(running=["mongodb", "backend", "frontend"])
        runtime.fail_status = True
        bundle = RollbackHandler(runtime, settings).rollback(_failed_attempt(DeploymentStage.ORCHESTRATE))

        assert runtime.called("down") == [(30,)]
        assert runtime.running == []
        assert bundle.services_stopped == []
        assert bundle.teardown_error is None
