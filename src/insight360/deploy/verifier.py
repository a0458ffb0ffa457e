"""External health verification after the orchestrator reports AllHealthy.

Container health checks run inside each container; they can pass while the
host-routed path is broken (port mapping, reverse proxy). The verifier probes
what a user would hit:

- database: ``ping`` admin command through the host-published port
  (``{mongo_url}``, pymongo), not the in-container healthcheck
- backend: ``GET {backend_url}/api/health`` -> 200 with a JSON ``status``
- frontend: ``GET {frontend_url}/`` -> 200

Every probe runs; any failure raises ``HealthCheckError`` listing all failed
probes.

Tags:
    health-checks, httpx, pymongo, verification, probes
"""

from __future__ import annotations

import time

import httpx
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from insight360.core.errors import HealthCheckError
from insight360.core.logging import get_logger
from insight360.deploy.config import DeploySettings
from insight360.deploy.results import ProbeResult
from insight360.deploy.services import ReleaseDescriptor, ServiceSpec

logger = get_logger(__name__)


class HealthVerifier:
    """Runs each service's external probe.

    Parameters
    ----------
    settings
        Endpoints, database credentials and probe timeout.
    client
        Optional ``httpx.Client``; one is created per ``verify()`` otherwise.
    """

    def __init__(
        self,
        settings: DeploySettings,
        client: httpx.Client | None = None,
    ) -> None:
        self.settings = settings
        self._client = client
        self.last_results: list[ProbeResult] = []
        self.base_urls = {
            "mongodb": settings.mongo_url,
            "backend": settings.backend_url,
            "frontend": settings.frontend_url,
        }

    def verify(self, release: ReleaseDescriptor) -> list[ProbeResult]:
        """Probe every service; raise ``HealthCheckError`` if any probe fails."""
        logger.info("verify.started", services=release.service_names)
        if self._client is not None:
            results = [self.probe(spec, self._client) for spec in release.services]
        else:
            with httpx.Client(timeout=self.settings.probe_timeout, follow_redirects=True) as client:
                results = [self.probe(spec, client) for spec in release.services]
        self.last_results = results

        failed = {r.service: r.detail for r in results if not r.success}
        if failed:
            raise HealthCheckError(failed).with_context(
                probes=[r.model_dump(mode="json") for r in results]
            )
        logger.info("verify.passed", probes=len(results))
        return results

    def probe(self, spec: ServiceSpec, client: httpx.Client) -> ProbeResult:
        start = time.monotonic()
        if spec.probe.kind == "mongo":
            result = self._probe_mongo(spec)
        else:
            result = self._probe_http(spec, client)
        result.latency_ms = (time.monotonic() - start) * 1000

        if result.success:
            logger.info("probe.passed", service=spec.name, target=result.target)
        else:
            logger.error("probe.failed", service=spec.name, target=result.target, detail=result.detail)
        return result

    def url_for(self, spec: ServiceSpec) -> str:
        base = self.base_urls.get(spec.name) or f"http://localhost:{spec.port}"
        if spec.probe.kind == "mongo":
            return base
        return base.rstrip("/") + spec.probe.target

    # ------------------------------------------------------------------
    # Probe kinds
    # ------------------------------------------------------------------

    def _probe_mongo(self, spec: ServiceSpec) -> ProbeResult:
        url = self.url_for(spec)
        result = ProbeResult(service=spec.name, kind="mongo", target=url)
        timeout_ms = int(self.settings.probe_timeout * 1000)
        client: MongoClient | None = None
        try:
            client = MongoClient(
                url,
                username=self.settings.mongo_username,
                password=self.settings.mongo_password.get_secret_value(),
                authSource="admin",
                serverSelectionTimeoutMS=timeout_ms,
                connectTimeoutMS=timeout_ms,
            )
            reply = client.admin.command(spec.probe.target)
        except PyMongoError as exc:
            result.detail = f"{type(exc).__name__}: {exc}"
            return result
        finally:
            if client is not None:
                client.close()

        if reply.get("ok") != 1:
            result.detail = f"{spec.probe.target} returned ok={reply.get('ok')!r}"
            return result
        result.success = True
        result.detail = "ok"
        return result

    def _probe_http(self, spec: ServiceSpec, client: httpx.Client) -> ProbeResult:
        url = self.url_for(spec)
        result = ProbeResult(service=spec.name, kind="http", target=url)
        try:
            response = client.get(url)
        except httpx.HTTPError as exc:
            result.detail = f"{type(exc).__name__}: {exc}"
            return result

        result.status_code = response.status_code
        if response.status_code != spec.probe.expected_status:
            result.detail = f"HTTP {response.status_code}"
            return result

        field = spec.probe.require_json_field
        if field:
            try:
                body = response.json()
            except ValueError:
                result.detail = "response body is not JSON"
                return result
            if not isinstance(body, dict) or field not in body:
                result.detail = f"JSON body has no {field!r} field"
                return result

        result.success = True
        result.detail = "ok"
        return result
