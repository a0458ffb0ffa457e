"""
Root Typer application for insight360-deploy.

Invoked without a sub-command it runs a deployment; the process exit code
is the attempt's exit code (0 success, 2 configuration, 3 image pull,
4 health timeout, 5 external health check, 1 anything else).
"""

from __future__ import annotations

import os
from pathlib import Path

import typer
from typer import Typer

from insight360.cli import deploy as deploy_cmds
from insight360.core.logging import configure_logging

app = Typer(
    name="insight360-deploy",
    help="insight360-deploy: health-gated redeploys of the Insight360 stack.",
    invoke_without_command=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from insight360 import __version__

        typer.echo(f"insight360-deploy {__version__}")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="DEBUG, INFO, WARNING or ERROR."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Render console logs as JSON."),
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Run a deployment (no sub-command) or inspect the stack."""
    deploying = ctx.invoked_subcommand is None
    configure_logging(
        level=log_level,
        json_format=True if json_logs else None,
        log_file=Path(os.environ.get("DEPLOY_LOG_FILE") or "deploy.log") if deploying else None,
    )
    if deploying:
        raise typer.Exit(code=deploy_cmds.deploy())


# ── Sub-commands ─────────────────────────────────────────────────────────

app.command("status")(deploy_cmds.status)
app.command("backups")(deploy_cmds.backups)
app.command("check-env")(deploy_cmds.check_env)


def main() -> None:
    app()
