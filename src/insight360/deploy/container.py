"""Container runtime access for insight360-deploy.

Wraps the ``docker`` and ``docker compose`` CLIs (subprocess). Every stage
talks to the runtime through the ``ContainerRuntime`` protocol, so tests can
substitute an in-memory fake and the stages never parse CLI text themselves.

Status queries use ``docker compose ps --all --format json`` and map each
service's ``State`` / ``Health`` pair onto ``HealthStatus``.

Key Concepts:
    ContainerRuntime: Protocol consumed by the backup agent, image fetcher,
        orchestrator, verifier and rollback handler.
    ComposeRuntime: Subprocess implementation bound to one compose file and
        project.
    map_health(): ``(state, health)`` -> ``HealthStatus``.

Architecture Decisions:
    - subprocess, not docker-py: works with any runtime exposing the docker
      CLI and keeps the dependency surface small.
    - Failing commands raise ``ContainerRuntimeError`` when ``check=True``;
      callers that treat failures as data pass ``check=False``.

Tags:
    container, docker, compose, subprocess, health, lifecycle
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from insight360.core.errors import ContainerRuntimeError, RuntimeUnavailableError
from insight360.core.logging import get_logger
from insight360.deploy.services import HealthStatus

logger = get_logger(__name__)


class ContainerRuntime(Protocol):
    """Operations the deployment stages need from the container runtime."""

    def is_container_running(self, container_name: str) -> bool: ...

    def running_services(self) -> list[str]: ...

    def running_images(self) -> dict[str, str]: ...

    def image_id(self, image: str) -> str: ...

    def service_health(self, services: list[str]) -> dict[str, HealthStatus]: ...

    def pull_image(self, image: str) -> None: ...

    def up(self) -> None: ...

    def down(self, timeout: int) -> None: ...

    def prune_images(self) -> None: ...

    def logs(self, service: str | None = None, tail: int = 50) -> str: ...

    def exec(
        self,
        container_name: str,
        command: str,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]: ...

    def copy_from(self, container_name: str, source: str, destination: Path) -> None: ...


def map_health(state: str, health: str = "") -> HealthStatus:
    """Map a compose ``State`` / ``Health`` pair to ``HealthStatus``."""
    health = (health or "").strip().lower()
    state = (state or "").strip().lower()
    if health == "healthy":
        return HealthStatus.HEALTHY
    if health == "unhealthy":
        return HealthStatus.UNHEALTHY
    if health == "starting":
        return HealthStatus.STARTING
    if state in ("exited", "dead", "removing"):
        return HealthStatus.UNHEALTHY
    if state in ("created", "restarting"):
        return HealthStatus.STARTING
    return HealthStatus.UNKNOWN


def parse_ps_json(output: str) -> list[dict[str, Any]]:
    """Parse ``compose ps --format json`` output.

    Compose >= 2.21 prints one object per line; earlier releases print a
    single JSON array.
    """
    text = output.strip()
    if not text:
        return []
    if text.startswith("["):
        data = json.loads(text)
        return [row for row in data if isinstance(row, dict)]
    rows = []
    for line in text.splitlines():
        line = line.strip()
        if line:
            rows.append(json.loads(line))
    return rows


class ComposeRuntime:
    """Container runtime bound to one compose manifest.

    Parameters
    ----------
    compose_cmd
        Argv prefix from ``discover_compose_command()``.
    compose_file
        Manifest path (``-f``).
    project_name
        Compose project name (``--project-name``).
    env
        Environment for compose commands (manifest interpolation).
    command_timeout
        Timeout for long-running commands (pull, up, down).

    Example::

        runtime = ComposeRuntime.from_settings(settings)
        runtime.service_health(["mongodb", "backend", "frontend"])
    """

    def __init__(
        self,
        compose_cmd: list[str],
        compose_file: Path,
        project_name: str | None = None,
        env: Mapping[str, str] | None = None,
        command_timeout: int = 600,
    ) -> None:
        self.compose_cmd = list(compose_cmd)
        self.compose_file = compose_file
        self.project_name = project_name
        self.env = dict(env) if env is not None else None
        self.command_timeout = command_timeout
        self._docker_cmd = self._find_docker()

    @classmethod
    def from_settings(cls, settings: Any, compose_cmd: list[str] | None = None) -> ComposeRuntime:
        from insight360.deploy.compose import discover_compose_command

        return cls(
            compose_cmd=compose_cmd or discover_compose_command(),
            compose_file=settings.compose_file,
            project_name=settings.project_name,
            env=settings.compose_env(),
            command_timeout=settings.command_timeout,
        )

    # ------------------------------------------------------------------
    # Docker CLI discovery
    # ------------------------------------------------------------------

    @staticmethod
    def _find_docker() -> str:
        docker = shutil.which("docker")
        if docker is None:
            raise RuntimeUnavailableError(
                "Docker CLI not found on PATH. Install Docker or add it to PATH."
            )
        return docker

    @staticmethod
    def is_docker_available() -> bool:
        """Check if Docker is installed and the daemon is running."""
        docker = shutil.which("docker")
        if docker is None:
            return False
        try:
            result = subprocess.run(
                [docker, "info"],
                capture_output=True,
                timeout=10,
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def is_container_running(self, container_name: str) -> bool:
        result = self._run_docker(
            ["inspect", "--format", "{{.State.Running}}", container_name],
            check=False,
        )
        return result.returncode == 0 and result.stdout.strip() == "true"

    def _ps(self, all_containers: bool) -> list[dict[str, Any]]:
        args = ["ps", "--format", "json"]
        if all_containers:
            args.insert(1, "--all")
        result = self._run_compose(args, timeout=60)
        try:
            return parse_ps_json(result.stdout)
        except json.JSONDecodeError as exc:
            raise ContainerRuntimeError(
                f"Unparsable compose ps output: {result.stdout[:200]!r}", cause=exc
            ) from exc

    def running_services(self) -> list[str]:
        """Services of this project with a running container."""
        return [
            row.get("Service", row.get("Name", ""))
            for row in self._ps(all_containers=False)
            if str(row.get("State", "")).lower() == "running"
        ]

    def running_images(self) -> dict[str, str]:
        """Image ID each running service's container was created from."""
        rows = [
            row
            for row in self._ps(all_containers=False)
            if str(row.get("State", "")).lower() == "running" and row.get("ID")
        ]
        if not rows:
            return {}
        result = self._run_docker(
            ["inspect", "--format", "{{.Image}}", *(row["ID"] for row in rows)],
            timeout=60,
        )
        image_ids = result.stdout.split()
        return {row.get("Service", ""): image_id for row, image_id in zip(rows, image_ids)}

    def image_id(self, image: str) -> str:
        """Local ID of ``image``; empty when it is not present."""
        result = self._run_docker(["image", "inspect", "--format", "{{.Id}}", image], check=False)
        return result.stdout.strip() if result.returncode == 0 else ""

    def service_health(self, services: list[str]) -> dict[str, HealthStatus]:
        """Structured per-service health; services without a container are UNKNOWN."""
        statuses = {name: HealthStatus.UNKNOWN for name in services}
        for row in self._ps(all_containers=True):
            name = row.get("Service", "")
            if name in statuses:
                statuses[name] = map_health(row.get("State", ""), row.get("Health", ""))
        return statuses

    def status_rows(self) -> list[dict[str, Any]]:
        """Raw compose ps rows (for status display)."""
        return self._ps(all_containers=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def pull_image(self, image: str) -> None:
        self._run_docker(["pull", image], timeout=self.command_timeout)
        logger.info("image.pulled", image=image)

    def up(self) -> None:
        self._run_compose(["up", "--detach", "--remove-orphans"], timeout=self.command_timeout)
        logger.info("compose.up", project=self.project_name)

    def down(self, timeout: int) -> None:
        self._run_compose(
            ["down", "--timeout", str(timeout)],
            timeout=timeout + self.command_timeout,
        )
        logger.info("compose.down", project=self.project_name, grace_seconds=timeout)

    def prune_images(self) -> None:
        self._run_docker(["image", "prune", "--force"], timeout=self.command_timeout)
        logger.debug("images.pruned")

    # ------------------------------------------------------------------
    # Logs / exec / copy
    # ------------------------------------------------------------------

    def logs(self, service: str | None = None, tail: int = 50) -> str:
        args = ["logs", "--no-color", f"--tail={tail}"]
        if service:
            args.append(service)
        result = self._run_compose(args, check=False, timeout=60)
        return result.stdout + result.stderr

    def exec(
        self,
        container_name: str,
        command: str,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``command`` in the container.

        ``env`` values reach the container by name only (``--env KEY``), so
        they never appear in the argv that is logged or put in errors.
        """
        args = ["exec"]
        for key in env or {}:
            args += ["--env", key]
        return self._run_docker(
            [*args, container_name, "sh", "-c", command],
            check=False,
            timeout=self.command_timeout,
            extra_env=env,
        )

    def copy_from(self, container_name: str, source: str, destination: Path) -> None:
        self._run_docker(
            ["cp", f"{container_name}:{source}", str(destination)],
            timeout=self.command_timeout,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _compose_args(self) -> list[str]:
        args = [*self.compose_cmd, "-f", str(self.compose_file)]
        if self.project_name:
            args.extend(["--project-name", self.project_name])
        return args

    def _run_compose(
        self,
        args: list[str],
        check: bool = True,
        timeout: int = 60,
    ) -> subprocess.CompletedProcess[str]:
        return self._run([*self._compose_args(), *args], check=check, timeout=timeout)

    def _run_docker(
        self,
        args: list[str],
        check: bool = True,
        timeout: int = 60,
        extra_env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        return self._run([self._docker_cmd, *args], check=check, timeout=timeout, extra_env=extra_env)

    def _run(
        self,
        cmd: list[str],
        check: bool,
        timeout: int,
        extra_env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        logger.debug("runtime.exec", cmd=" ".join(cmd))
        env = self.env
        if extra_env:
            env = {**(os.environ if env is None else env), **extra_env}
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as exc:
            raise ContainerRuntimeError(
                f"Command timed out after {timeout}s: {' '.join(cmd[1:])}", cause=exc
            ) from exc
        except OSError as exc:
            raise ContainerRuntimeError(f"Command failed to start: {cmd[0]}", cause=exc) from exc
        if check and result.returncode != 0:
            raise ContainerRuntimeError(
                f"Command failed (exit {result.returncode}): "
                f"{' '.join(cmd[1:])}\n{result.stderr}"
            )
        return result
