"""Tests for the insight360-deploy CLI (typer CliRunner)."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

runner = CliRunner()


@pytest.fixture(autouse=True)
def _no_log_handlers():
    with patch("insight360.cli.app.configure_logging") as mock_configure:
        yield mock_configure


def _attempt(outcome, exit_code, **fields):
    from insight360.deploy.results import DeploymentAttempt

    attempt = DeploymentAttempt(attempt_id="a1b2c3d4e5f6", tag="v1", **fields)
    attempt.mark_complete(outcome, exit_code=exit_code)
    return attempt


class TestDeployCommand:
    def test_success_exits_zero(self, _no_log_handlers):
        from insight360.cli.app import app
        from insight360.deploy.results import AttemptOutcome
        from insight360.deploy.services import HealthStatus

        attempt = _attempt(
            AttemptOutcome.SUCCESS,
            0,
            statuses={"mongodb": HealthStatus.HEALTHY, "backend": HealthStatus.HEALTHY},
        )
        with patch("insight360.cli.deploy.run_deployment", return_value=attempt) as mock_run:
            result = runner.invoke(app, [])

        assert result.exit_code == 0
        mock_run.assert_called_once_with()
        assert "success" in result.output
        kwargs = _no_log_handlers.call_args.kwargs
        assert kwargs["log_file"] is not None

    @pytest.mark.parametrize("code", [2, 3, 4, 5, 1])
    def test_exit_code_follows_attempt(self, code):
        from insight360.cli.app import app
        from insight360.deploy.results import AttemptOutcome

        outcome = AttemptOutcome.ROLLED_BACK if code in (4, 5) else AttemptOutcome.FAILURE
        attempt = _attempt(outcome, code, error="something failed", rollbacks=1 if code in (4, 5) else 0)
        with patch("insight360.cli.deploy.run_deployment", return_value=attempt):
            result = runner.invoke(app, [])

        assert result.exit_code == code

    def test_log_options(self, _no_log_handlers):
        from insight360.cli.app import app
        from insight360.deploy.results import AttemptOutcome

        with patch("insight360.cli.deploy.run_deployment", return_value=_attempt(AttemptOutcome.SUCCESS, 0)):
            runner.invoke(app, ["--log-level", "DEBUG", "--json-logs"])

        kwargs = _no_log_handlers.call_args.kwargs
        assert kwargs["level"] == "DEBUG"
        assert kwargs["json_format"] is True

    def test_version(self):
        from insight360.cli.app import app

        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "insight360-deploy" in result.output


class TestCheckEnv:
    def test_complete_env(self, valid_env, monkeypatch):
        from insight360.cli.app import app

        for key, value in valid_env.items():
            monkeypatch.setenv(key, value)
        result = runner.invoke(app, ["check-env"])

        assert result.exit_code == 0
        assert "Environment is complete" in result.output

    def test_missing_keys_exit_2(self, valid_env, monkeypatch):
        from insight360.cli.app import app

        for key, value in valid_env.items():
            monkeypatch.setenv(key, value)
        monkeypatch.delenv("REACT_APP_NEWS_API_KEY")
        with patch("insight360.cli.deploy.run_deployment") as mock_run:
            result = runner.invoke(app, ["check-env"])

        assert result.exit_code == 2
        assert "REACT_APP_NEWS_API_KEY" in result.output
        mock_run.assert_not_called()


class TestBackupsCommand:
    def test_lists_backups_as_json(self, tmp_path):
        from insight360.cli.app import app

        (tmp_path / "mongodb_backup_20261017_083005.tar.gz").write_bytes(b"x" * 100)
        (tmp_path / "mongodb_backup_20261016_083005.tar.gz").write_bytes(b"x" * 50)

        result = runner.invoke(app, ["backups", "--dir", str(tmp_path), "--json"])

        assert result.exit_code == 0
        rows = json.loads(result.output)
        assert [r["size_bytes"] for r in rows] == [100, 50]

    def test_empty_directory(self, tmp_path):
        from insight360.cli.app import app

        result = runner.invoke(app, ["backups", "--dir", str(tmp_path / "none")])
        assert result.exit_code == 0
        assert "No backups" in result.output


class TestStatusCommand:
    def test_json_rows(self):
        from insight360.cli.app import app

        rows = [{"Service": "backend", "Name": "insight360-backend", "State": "running", "Health": "healthy"}]
        with patch("insight360.cli.deploy.discover_compose_command", return_value=["docker", "compose"]), patch(
            "insight360.cli.deploy.ComposeRuntime"
        ) as mock_runtime:
            mock_runtime.return_value.status_rows.return_value = rows
            result = runner.invoke(app, ["status", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.output) == rows

    def test_project_name_from_environment(self):
        from insight360.cli.app import app

        with patch("insight360.cli.deploy.discover_compose_command", return_value=["docker", "compose"]), patch(
            "insight360.cli.deploy.ComposeRuntime"
        ) as mock_runtime:
            mock_runtime.return_value.status_rows.return_value = []
            result = runner.invoke(app, ["status"], env={"DEPLOY_PROJECT_NAME": "insight360-staging"})

        assert result.exit_code == 0
        assert mock_runtime.call_args[1]["project_name"] == "insight360-staging"

    def test_project_name_flag_wins(self, monkeypatch):
        from insight360.cli.app import app

        monkeypatch.setenv("DEPLOY_PROJECT_NAME", "insight360-staging")
        with patch("insight360.cli.deploy.discover_compose_command", return_value=["docker", "compose"]), patch(
            "insight360.cli.deploy.ComposeRuntime"
        ) as mock_runtime:
            mock_runtime.return_value.status_rows.return_value = []
            runner.invoke(app, ["status", "--project-name", "other"])

        assert mock_runtime.call_args[1]["project_name"] == "other"

    def test_default_project_name(self, monkeypatch):
        from insight360.cli.app import app

        monkeypatch.delenv("DEPLOY_PROJECT_NAME", raising=False)
        with patch("insight360.cli.deploy.discover_compose_command", return_value=["docker", "compose"]), patch(
            "insight360.cli.deploy.ComposeRuntime"
        ) as mock_runtime:
            mock_runtime.return_value.status_rows.return_value = []
            runner.invoke(app, ["status"])

        assert mock_runtime.call_args[1]["project_name"] == "insight360"

    def test_compose_missing_exits_2(self):
        from insight360.cli.app import app
        from insight360.core.errors import RuntimeUnavailableError

        with patch(
            "insight360.cli.deploy.discover_compose_command",
            side_effect=RuntimeUnavailableError("Docker Compose not found."),
        ):
            result = runner.invoke(app, ["status"])

        assert result.exit_code == 2
