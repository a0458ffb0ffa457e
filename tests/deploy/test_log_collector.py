"""Tests for the attempt recorder (deploy.log lines, summary.json, diagnostics.log)."""

from __future__ import annotations

import json


def _complete_attempt(outcome, exit_code=0, **fields):
    from insight360.deploy.results import DeploymentAttempt

    attempt = DeploymentAttempt(attempt_id="abc123", tag="v1", **fields)
    attempt.mark_complete(outcome, exit_code=exit_code)
    return attempt


class TestAttemptRecorder:
    def test_log_lines_are_appended(self, tmp_path):
        from insight360.deploy.log_collector import AttemptRecorder
        from insight360.deploy.results import AttemptOutcome, DeploymentAttempt

        log_file = tmp_path / "deploy.log"
        log_file.write_text("previous run\n")
        recorder = AttemptRecorder(tmp_path / "out", "abc123", log_file)

        recorder.record_start(DeploymentAttempt(attempt_id="abc123", tag="v1"))
        recorder.record_finish(_complete_attempt(AttemptOutcome.FAILURE, 3, error="Failed to pull images: x"))

        lines = log_file.read_text().splitlines()
        assert lines[0] == "previous run"
        assert lines[1].startswith("Deployment started at ")
        assert "attempt abc123, tag v1" in lines[1]
        assert lines[2].startswith("Deployment completed at ")
        assert "failure at stage validate" in lines[2]
        assert lines[3] == "  error: Failed to pull images: x"

    def test_no_log_file(self, tmp_path):
        from insight360.deploy.log_collector import AttemptRecorder
        from insight360.deploy.results import DeploymentAttempt

        recorder = AttemptRecorder(tmp_path / "out", "abc123", None)
        recorder.record_start(DeploymentAttempt(attempt_id="abc123", tag="v1"))
        assert list(tmp_path.iterdir()) == []

    def test_write_summary(self, tmp_path):
        from insight360.deploy.log_collector import AttemptRecorder
        from insight360.deploy.results import AttemptOutcome

        path = AttemptRecorder(tmp_path, "abc123").write_summary(_complete_attempt(AttemptOutcome.SUCCESS))

        assert path == tmp_path / "abc123" / "summary.json"
        data = json.loads(path.read_text())
        assert data["attempt_id"] == "abc123"
        assert data["outcome"] == "success"
        assert data["stage"] == "complete"
        assert data["completed_at"] is not None

    def test_write_diagnostics(self, tmp_path):
        from insight360.deploy.log_collector import AttemptRecorder
        from insight360.deploy.results import DiagnosticBundle
        from insight360.deploy.services import HealthStatus

        bundle = DiagnosticBundle(
            attempt_id="abc123",
            failure_stage="orchestrate",
            error="Services failed to become healthy after 40 attempts (2/3 healthy)",
            services_stopped=["mongodb", "backend", "frontend"],
            logs="backend | Error: connect ECONNREFUSED",
            statuses={"mongodb": HealthStatus.HEALTHY, "backend": HealthStatus.UNHEALTHY},
        )
        path = AttemptRecorder(tmp_path, "abc123").write_diagnostics(
            bundle, {"backend": "MongoServerError: auth failed"}
        )

        text = path.read_text()
        assert "failure stage: orchestrate" in text
        assert "services stopped: mongodb, backend, frontend" in text
        assert "statuses: mongodb=healthy, backend=unhealthy" in text
        assert "===== backend (tail) =====\nMongoServerError: auth failed" in text
        assert text.index("(tail)") < text.index("===== combined logs =====")
