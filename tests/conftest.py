"""
Shared pytest fixtures for insight360-deploy tests.

No test talks to Docker or the network: container operations go through
the in-memory ``FakeRuntime`` (``tests/deploy/conftest.py``), subprocess
calls are patched, and HTTP probes use ``httpx.MockTransport``.
"""

from __future__ import annotations

import pytest
import structlog

VALID_ENV: dict[str, str] = {
    "MONGO_ROOT_USERNAME": "root",
    "MONGO_ROOT_PASSWORD": "s3cret-pw",
    "JWT_SECRET": "jwt-s3cret",
    "REACT_APP_NEWS_API_KEY": "news-key",
    "DOCKER_HUB_USERNAME": "acme",
}


@pytest.fixture
def valid_env() -> dict[str, str]:
    """A complete environment (fresh copy per test)."""
    return dict(VALID_ENV)


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Keep structlog context vars from leaking between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()
