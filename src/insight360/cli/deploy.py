"""
CLI commands for ``insight360-deploy``.

Usage::

    insight360-deploy                       # run a full redeploy
    insight360-deploy status                # compose service table
    insight360-deploy backups               # list database backups
    insight360-deploy check-env             # validate the environment only
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from insight360.core.errors import ConfigurationError, ContainerRuntimeError
from insight360.deploy.backup import list_backups
from insight360.deploy.compose import discover_compose_command
from insight360.deploy.config import REQUIRED_ENV_VARS, missing_keys
from insight360.deploy.container import ComposeRuntime, map_health
from insight360.deploy.results import AttemptOutcome, DeploymentAttempt
from insight360.deploy.services import HealthStatus
from insight360.deploy.workflow import run_deployment

console = Console()
err_console = Console(stderr=True)

_STATUS_STYLE = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.STARTING: "yellow",
    HealthStatus.UNHEALTHY: "red bold",
    HealthStatus.UNKNOWN: "dim",
}


def _env_path(var: str, default: str) -> Path:
    return Path(os.environ.get(var) or default)


# ── Deploy ───────────────────────────────────────────────────────────────


def deploy() -> int:
    """Run one deployment attempt; returns the process exit code."""
    attempt = run_deployment()
    _print_attempt(attempt)
    return attempt.exit_code or 0


def _print_attempt(attempt: DeploymentAttempt) -> None:
    if attempt.statuses:
        table = Table(title=f"Deployment {attempt.attempt_id} ({attempt.tag})")
        table.add_column("Service", style="bold")
        table.add_column("Health")
        table.add_column("Probe")
        probes = {p.service: p for p in attempt.probes}
        for name, status in attempt.statuses.items():
            style = _STATUS_STYLE.get(status, "white")
            probe = probes.get(name)
            probe_str = "—"
            if probe is not None:
                probe_str = "[green]ok[/]" if probe.success else f"[red]{probe.detail}[/]"
            table.add_row(name, f"[{style}]{status.value}[/{style}]", probe_str)
        console.print(table)

    if attempt.outcome == AttemptOutcome.SUCCESS:
        console.print(f"[bold green]✓ {attempt.summary}[/]")
        return

    err_console.print(f"[bold red]✗ {attempt.summary}[/]")
    if attempt.error:
        err_console.print(f"[red]{attempt.error}[/]")
    if attempt.rollbacks:
        err_console.print(
            "[yellow]Services were stopped. The previous release was not restored; "
            "manual intervention may be required.[/]"
        )


# ── Status ───────────────────────────────────────────────────────────────


def status(
    compose_file: Path | None = typer.Option(
        None, "--file", "-f", help="Compose manifest (default: DEPLOY_COMPOSE_FILE or docker-compose.prod.yml).",
    ),
    project: str | None = typer.Option(
        None, "--project-name", help="Compose project name (default: DEPLOY_PROJECT_NAME or insight360).",
    ),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show the state and health of each compose service."""
    manifest = compose_file or _env_path("DEPLOY_COMPOSE_FILE", "docker-compose.prod.yml")
    project = project or os.environ.get("DEPLOY_PROJECT_NAME") or "insight360"
    try:
        runtime = ComposeRuntime(discover_compose_command(), manifest, project_name=project)
        rows = runtime.status_rows()
    except ConfigurationError as exc:
        err_console.print(f"[red]✗ {exc.message}[/]")
        raise typer.Exit(code=exc.exit_code) from exc
    except ContainerRuntimeError as exc:
        err_console.print(f"[red]✗ {exc.message}[/]")
        raise typer.Exit(code=exc.exit_code) from exc

    if json_out:
        typer.echo(json.dumps(rows, indent=2))
        return

    if not rows:
        console.print("[dim]No containers for this project.[/]")
        return

    table = Table(title="Service Status")
    table.add_column("Service", style="bold")
    table.add_column("Container")
    table.add_column("State")
    table.add_column("Health")
    table.add_column("Image")
    for row in rows:
        health = map_health(row.get("State", ""), row.get("Health", ""))
        style = _STATUS_STYLE.get(health, "white")
        table.add_row(
            row.get("Service", "—"),
            row.get("Name", "—"),
            row.get("State", "—"),
            f"[{style}]{health.value}[/{style}]",
            row.get("Image", "—"),
        )
    console.print(table)


# ── Backups ──────────────────────────────────────────────────────────────


def backups(
    backup_dir: Path | None = typer.Option(
        None, "--dir", "-d", help="Backup directory (default: DEPLOY_BACKUP_DIR or ./backups).",
    ),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List database backups, newest first."""
    directory = backup_dir or _env_path("DEPLOY_BACKUP_DIR", "backups")
    records = list_backups(directory)

    if json_out:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    if not records:
        console.print(f"[dim]No backups in {directory}[/]")
        return

    table = Table(title=f"Backups in {directory}")
    table.add_column("Timestamp (UTC)", style="bold")
    table.add_column("Path")
    table.add_column("Size", justify="right")
    for record in records:
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            record.path.name,
            f"{record.size_bytes / 1024:.1f} KiB",
        )
    console.print(table)


# ── Check env ────────────────────────────────────────────────────────────


def check_env() -> None:
    """Validate required environment variables without deploying."""
    missing = missing_keys(os.environ, REQUIRED_ENV_VARS)
    for key in REQUIRED_ENV_VARS:
        mark = "[red]✗ missing[/]" if key in missing else "[green]✓ set[/]"
        console.print(f"  {key:<24} {mark}")
    if missing:
        error = ConfigurationError(missing)
        err_console.print(f"[red]{error.message}[/]")
        raise typer.Exit(code=error.exit_code)
    console.print("[green]✓ Environment is complete[/]")
