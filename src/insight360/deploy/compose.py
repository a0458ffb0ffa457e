"""Compose command discovery and manifest loading.

The host may carry the Compose V2 plugin (``docker compose``) or the
standalone V1 binary (``docker-compose``). ``discover_compose_command()``
prefers the standalone binary when present, then the plugin, and raises
``RuntimeUnavailableError`` when neither works. No automatic installation is
attempted: that is the host provisioner's job.

``load_manifest()`` parses the compose file with PyYAML and checks that every
service of the release is declared in it, so a release never starts against
a manifest that cannot satisfy it.

Tags:
    compose, docker, manifest, yaml, discovery
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from insight360.core.errors import ConfigurationError, RuntimeUnavailableError
from insight360.core.logging import get_logger
from insight360.deploy.services import ServiceSpec

logger = get_logger(__name__)


def discover_compose_command() -> list[str]:
    """Return the argv prefix for Docker Compose on this host."""
    standalone = shutil.which("docker-compose")
    if standalone is not None:
        logger.info("compose.discovered", command="docker-compose", variant="standalone")
        return [standalone]

    docker = shutil.which("docker")
    if docker is not None:
        try:
            result = subprocess.run(
                [docker, "compose", "version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (subprocess.TimeoutExpired, OSError):
            result = None
        if result is not None and result.returncode == 0:
            logger.info("compose.discovered", command="docker compose", variant="plugin")
            return [docker, "compose"]

    raise RuntimeUnavailableError(
        "Docker Compose not found. Install the docker-compose-plugin package "
        "or the standalone docker-compose binary."
    )


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


@dataclass
class ComposeManifest:
    """Parsed view of a compose file."""

    path: Path
    services: dict[str, dict[str, Any]] = field(default_factory=dict)

    def container_name(self, service: str) -> str | None:
        return self.services.get(service, {}).get("container_name")

    def has_healthcheck(self, service: str) -> bool:
        return "healthcheck" in self.services.get(service, {})


def load_manifest(path: Path, expected: list[ServiceSpec] | tuple[ServiceSpec, ...] = ()) -> ComposeManifest:
    """Parse a compose file and check it declares the expected services.

    Raises
    ------
    ConfigurationError
        If the file is missing, unparsable, or lacks an expected service.
    """
    if not path.is_file():
        raise ConfigurationError(message=f"Compose manifest not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(message=f"Invalid compose manifest {path}: {exc}", cause=exc) from exc

    services = data.get("services") if isinstance(data, dict) else None
    if not isinstance(services, dict):
        raise ConfigurationError(message=f"Compose manifest {path} declares no services")

    manifest = ComposeManifest(path=path, services=services)

    undeclared = [spec.name for spec in expected if spec.name not in services]
    if undeclared:
        raise ConfigurationError(
            message=f"Compose manifest {path} is missing services: {', '.join(undeclared)}"
        )
    for spec in expected:
        declared = manifest.container_name(spec.name)
        if declared and declared != spec.container_name:
            logger.warning(
                "manifest.container_name_mismatch",
                service=spec.name,
                declared=declared,
                expected=spec.container_name,
            )
        if not manifest.has_healthcheck(spec.name):
            logger.warning("manifest.no_healthcheck", service=spec.name)

    logger.debug("manifest.loaded", path=str(path), services=sorted(services))
    return manifest
