"""Configuration for insight360-deploy.

Two layers:

- ``validate_environment()``: the pre-flight check. A pure function of the
  supplied mapping that reports *every* missing required key at once.
- ``DeploySettings``: the typed context object passed to each stage. Built
  with ``from_env()`` after validation; secrets are held as ``SecretStr`` so
  they never show up in logs or ``model_dump_json()`` output.

Environment variables:
    Required: ``MONGO_ROOT_USERNAME``, ``MONGO_ROOT_PASSWORD``, ``JWT_SECRET``,
    ``REACT_APP_NEWS_API_KEY``, ``DOCKER_HUB_USERNAME``.
    Optional: ``IMAGE_TAG`` (default ``latest``) and the ``DEPLOY_*`` tunables
    listed in ``DeploySettings.from_env``.

Override precedence: kwargs > env vars > field defaults.

Tags:
    config, settings, pydantic, environment, validation
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import quote_plus

from pydantic import BaseModel, Field, SecretStr, ValidationError, model_validator

from insight360.core.errors import ConfigurationError
from insight360.deploy.services import DEFAULT_TAG

REQUIRED_ENV_VARS: tuple[str, ...] = (
    "MONGO_ROOT_USERNAME",
    "MONGO_ROOT_PASSWORD",
    "JWT_SECRET",
    "REACT_APP_NEWS_API_KEY",
    "DOCKER_HUB_USERNAME",
)


def missing_keys(env: Mapping[str, str | None], required: tuple[str, ...] = REQUIRED_ENV_VARS) -> list[str]:
    """Return required keys that are absent, empty or whitespace-only."""
    return [key for key in required if not (env.get(key) or "").strip()]


def validate_environment(
    env: Mapping[str, str | None],
    required: tuple[str, ...] = REQUIRED_ENV_VARS,
) -> None:
    """Fail with ``ConfigurationError`` naming every missing key."""
    missing = missing_keys(env, required)
    if missing:
        raise ConfigurationError(missing)


class DeploySettings(BaseModel):
    """Context for one deployment invocation.

    Example::

        settings = DeploySettings.from_env(os.environ, poll_interval=1)
    """

    # Credentials
    mongo_username: str
    mongo_password: SecretStr
    jwt_secret: SecretStr
    news_api_key: SecretStr
    registry_username: str

    # Release
    image_tag: str = Field(default=DEFAULT_TAG, description="Release image tag (IMAGE_TAG)")

    # Compose
    compose_file: Path = Field(default=Path("docker-compose.prod.yml"))
    project_name: str = "insight360"
    database_name: str = "insight360"

    # Orchestration
    stop_timeout: int = Field(default=30, description="Grace period before forced termination")
    poll_interval: float = Field(default=15.0, description="Seconds between health polls")
    max_attempts: int = Field(default=40, description="Health poll ceiling")
    log_tail_lines: int = Field(default=20, description="Per-service log tail on unhealthy")
    diagnostic_tail_lines: int = Field(default=50, description="Combined log tail for diagnostics")
    command_timeout: int = Field(default=600, description="Timeout for pull/up/down commands")

    # External probes
    mongo_url: str = Field(default="mongodb://localhost:27017", description="Host-published database endpoint")
    backend_url: str = "http://localhost:5000"
    frontend_url: str = "http://localhost:80"
    probe_timeout: float = 10.0

    # Persisted state
    backup_dir: Path = Field(default=Path("backups"))
    backup_retention: int = 5
    log_file: Path = Field(default=Path("deploy.log"))
    output_dir: Path = Field(default=Path("deploy-results"))

    # Internal
    attempt_id: str = Field(default="", description="Unique attempt identifier (auto-generated)")

    @model_validator(mode="after")
    def _set_defaults(self) -> DeploySettings:
        if not self.attempt_id:
            self.attempt_id = uuid.uuid4().hex[:12]
        if not self.image_tag:
            self.image_tag = DEFAULT_TAG
        return self

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: Any) -> DeploySettings:
        """Validate and build settings from environment variables."""
        env = os.environ if env is None else env
        validate_environment(env)

        values: dict[str, Any] = {
            "mongo_username": env["MONGO_ROOT_USERNAME"],
            "mongo_password": env["MONGO_ROOT_PASSWORD"],
            "jwt_secret": env["JWT_SECRET"],
            "news_api_key": env["REACT_APP_NEWS_API_KEY"],
            "registry_username": env["DOCKER_HUB_USERNAME"],
        }
        env_map = {
            "image_tag": "IMAGE_TAG",
            "compose_file": "DEPLOY_COMPOSE_FILE",
            "project_name": "DEPLOY_PROJECT_NAME",
            "poll_interval": "DEPLOY_POLL_INTERVAL",
            "max_attempts": "DEPLOY_MAX_ATTEMPTS",
            "stop_timeout": "DEPLOY_STOP_TIMEOUT",
            "backup_dir": "DEPLOY_BACKUP_DIR",
            "log_file": "DEPLOY_LOG_FILE",
            "output_dir": "DEPLOY_OUTPUT_DIR",
            "mongo_url": "DEPLOY_MONGO_URL",
            "backend_url": "DEPLOY_BACKEND_URL",
            "frontend_url": "DEPLOY_FRONTEND_URL",
        }
        for field_name, env_var in env_map.items():
            env_val = env.get(env_var)
            if env_val:
                values[field_name] = env_val.strip()
        values.update(overrides)
        try:
            return cls(**values)
        except ValidationError as exc:
            fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
            raise ConfigurationError(
                message=f"Invalid deployment settings: {', '.join(fields) or exc}",
                cause=exc,
            ) from exc

    def compose_env(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Environment for ``docker compose`` (manifest interpolation)."""
        env = dict(os.environ if base is None else base)
        env.update(
            {
                "MONGO_ROOT_USERNAME": self.mongo_username,
                "MONGO_ROOT_PASSWORD": self.mongo_password.get_secret_value(),
                "JWT_SECRET": self.jwt_secret.get_secret_value(),
                "REACT_APP_NEWS_API_KEY": self.news_api_key.get_secret_value(),
                "DOCKER_HUB_USERNAME": self.registry_username,
                "IMAGE_TAG": self.image_tag,
            }
        )
        return env

    def mongo_uri(self, host: str = "localhost", port: int = 27017) -> str:
        """Admin connection URI used for ``mongodump`` inside the container.

        Contains the password; pass it through the exec environment, never argv.
        """
        user = quote_plus(self.mongo_username)
        password = quote_plus(self.mongo_password.get_secret_value())
        return (
            f"mongodb://{user}:{password}"
            f"@{host}:{port}/{self.database_name}?authSource=admin"
        )
