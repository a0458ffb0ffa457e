"""Fixtures for the deploy stages: a fake container runtime and settings."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from insight360.core.errors import ContainerRuntimeError
from insight360.deploy.config import DeploySettings
from insight360.deploy.services import HealthStatus

ALL_SERVICES = ["mongodb", "backend", "frontend"]

ALL_HEALTHY = {name: HealthStatus.HEALTHY for name in ALL_SERVICES}


def _previous_image(service: str) -> str:
    if service == "mongodb":
        return "mongo:7-jammy"
    return f"acme/insight360-{service}:previous"


def _image_id(image: str) -> str:
    return f"sha256:{image}"


def _service_of(image: str) -> str:
    if image.startswith("mongo:"):
        return "mongodb"
    return image.rsplit("/", 1)[-1].split(":")[0].removeprefix("insight360-")


class FakeRuntime:
    """In-memory ``ContainerRuntime``.

    ``health_sequence`` is consumed one entry per status query; the last
    entry repeats once the sequence is exhausted.
    """

    def __init__(
        self,
        *,
        running: list[str] | None = None,
        health_sequence: list[dict[str, HealthStatus]] | None = None,
        db_running: bool = True,
        dump_size: str = "4096",
        pull_failures: tuple[str, ...] = (),
    ) -> None:
        self.running = list(running or [])
        self.images = {name: _image_id(_previous_image(name)) for name in self.running}
        self.image_ids: dict[str, str] = {}
        self.release_images: dict[str, str] | None = None
        self.pulled: list[str] = []
        self.health_sequence = list(health_sequence or [ALL_HEALTHY])
        self.db_running = db_running
        self.dump_size = dump_size
        self.pull_failures = set(pull_failures)
        self.exec_results: dict[str, subprocess.CompletedProcess[str]] = {}
        self.fail_status = False
        self.fail_down = False
        self.fail_up = False
        self.fail_prune = False
        self.polls = 0
        self.calls: list[tuple[str, tuple]] = []

    # -- helpers ---------------------------------------------------------

    def called(self, method: str) -> list[tuple]:
        return [args for name, args in self.calls if name == method]

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    # -- ContainerRuntime ------------------------------------------------

    def is_container_running(self, container_name: str) -> bool:
        self.calls.append(("is_container_running", (container_name,)))
        return self.db_running

    def running_services(self) -> list[str]:
        self.calls.append(("running_services", ()))
        if self.fail_status:
            raise ContainerRuntimeError("Unparsable compose ps output: '{not json'")
        return list(self.running)

    def running_images(self) -> dict[str, str]:
        self.calls.append(("running_images", ()))
        return {name: self.images.get(name, "") for name in self.running}

    def image_id(self, image: str) -> str:
        self.calls.append(("image_id", (image,)))
        return self.image_ids.get(image, _image_id(image))

    def service_health(self, services: list[str]) -> dict[str, HealthStatus]:
        self.calls.append(("service_health", (tuple(services),)))
        index = min(self.polls, len(self.health_sequence) - 1)
        self.polls += 1
        snapshot = self.health_sequence[index]
        return {name: snapshot.get(name, HealthStatus.UNKNOWN) for name in services}

    def pull_image(self, image: str) -> None:
        self.calls.append(("pull_image", (image,)))
        if image in self.pull_failures:
            raise ContainerRuntimeError(f"Command failed (exit 1): pull {image}\nmanifest unknown")
        self.pulled.append(image)

    def up(self) -> None:
        self.calls.append(("up", ()))
        if self.fail_up:
            raise ContainerRuntimeError("Command failed (exit 1): up")
        self.running = list(ALL_SERVICES)
        images = self.release_images or {_service_of(image): image for image in self.pulled}
        self.images = {name: self.image_id(images.get(name, "")) for name in ALL_SERVICES}

    def down(self, timeout: int) -> None:
        self.calls.append(("down", (timeout,)))
        if self.fail_down:
            raise ContainerRuntimeError("Command failed (exit 1): down")
        self.running = []
        self.images = {}

    def prune_images(self) -> None:
        self.calls.append(("prune_images", ()))
        if self.fail_prune:
            raise ContainerRuntimeError("Command failed (exit 1): image prune")

    def logs(self, service: str | None = None, tail: int = 50) -> str:
        self.calls.append(("logs", (service, tail)))
        return f"<{service or 'all'} last {tail} lines>"

    def exec(
        self,
        container_name: str,
        command: str,
        env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        self.calls.append(("exec", (container_name, command, env)))
        for needle, result in self.exec_results.items():
            if needle in command:
                return result
        stdout = self.dump_size + "\n" if command.startswith("du ") else "1\n"
        return subprocess.CompletedProcess([container_name, command], 0, stdout=stdout, stderr="")

    def copy_from(self, container_name: str, source: str, destination: Path) -> None:
        self.calls.append(("copy_from", (container_name, source, destination)))
        dump = destination / "insight360"
        dump.mkdir(parents=True)
        (dump / "articles.bson").write_bytes(b"\x00" * 256)


def healthy_app(request: httpx.Request) -> httpx.Response:
    """Backend and frontend that both answer their probes."""
    if request.url.path == "/api/health":
        return httpx.Response(200, json={"status": "healthy", "timestamp": "2026-10-17T00:00:00Z"})
    return httpx.Response(200, text="<html>Insight360</html>")


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def settings(tmp_path: Path, valid_env: dict[str, str]) -> DeploySettings:
    return DeploySettings.from_env(
        valid_env,
        poll_interval=0,
        backup_dir=tmp_path / "backups",
        log_file=tmp_path / "deploy.log",
        output_dir=tmp_path / "deploy-results",
        compose_file=tmp_path / "docker-compose.prod.yml",
    )


@pytest.fixture
def http_client() -> httpx.Client:
    client = httpx.Client(transport=httpx.MockTransport(healthy_app))
    yield client
    client.close()


@pytest.fixture(autouse=True)
def mongo_client():
    """Database answering ``ping`` on its published port; no socket is opened."""
    with patch("insight360.deploy.verifier.MongoClient") as factory:
        factory.return_value.admin.command.return_value = {"ok": 1.0}
        yield factory


@pytest.fixture
def make_runtime():
    """Factory for runtimes with non-default behaviour."""
    return FakeRuntime
