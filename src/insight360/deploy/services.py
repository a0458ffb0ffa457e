"""Service specifications and the release descriptor.

Defines what a release is made of: three ``ServiceSpec`` entries (MongoDB,
the Express API, the React/Nginx frontend), each with an image reference
template, internal and external health contracts, and a startup-order
dependency. A ``ReleaseDescriptor`` binds that set to one image tag.

Key Concepts:
    ServiceSpec: Frozen dataclass describing one deployable service.
    ProbeSpec: External probe (``mongo`` admin command against the
        host-published database port, or ``http`` GET against the host-routed
        URL).
    HealthStatus: ``unknown | starting | healthy | unhealthy``, produced only
        by mapping the container runtime's status response.
    ReleaseDescriptor: Frozen pydantic model created once per deployment.

Tags:
    services, release, health, registry, specs
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_TAG = "latest"


class HealthStatus(str, Enum):
    """Health of a single service as reported by the container runtime."""

    UNKNOWN = "unknown"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class ProbeSpec:
    """Externally observable health probe for a service."""

    kind: Literal["mongo", "http"]
    """``mongo`` connects through the published port; ``http`` hits the routed URL."""

    target: str
    """Admin command name (for ``mongo``) or URL path (for ``http``)."""

    expected_status: int = 200

    require_json_field: str | None = None
    """JSON body field that must be present (``http`` only)."""


@dataclass(frozen=True)
class ServiceSpec:
    """Specification for one deployable Insight360 service."""

    name: str
    """Compose service name (e.g., 'backend')."""

    image: str
    """Image reference template; ``{registry}`` and ``{tag}`` are substituted."""

    container_name: str
    """Fixed container name from the compose manifest."""

    probe: ProbeSpec
    """External probe run by the health verifier."""

    depends_on: tuple[str, ...] = ()
    """Services that must be healthy before this one starts."""

    port: int = 0
    """Host port the service is published on (0 = not published over HTTP)."""

    description: str = ""

    labels: dict[str, str] = field(default_factory=dict)

    def resolve_image(self, tag: str | None = None, registry: str = "") -> str:
        """Resolve the image template against a release tag and registry user."""
        return self.image.format(tag=tag or DEFAULT_TAG, registry=registry)

    @property
    def follows_release_tag(self) -> bool:
        """Whether the image changes with the release tag."""
        return "{tag}" in self.image


# ---------------------------------------------------------------------------
# Insight360 services
# ---------------------------------------------------------------------------

MONGODB = ServiceSpec(
    name="mongodb",
    image="mongo:7-jammy",
    container_name="insight360-mongodb",
    probe=ProbeSpec(kind="mongo", target="ping"),
    port=27017,
    description="MongoDB persistent store",
)

BACKEND = ServiceSpec(
    name="backend",
    image="{registry}/insight360-backend:{tag}",
    container_name="insight360-backend",
    probe=ProbeSpec(kind="http", target="/api/health", require_json_field="status"),
    depends_on=("mongodb",),
    port=5000,
    description="Express API and News-API proxy",
)

FRONTEND = ServiceSpec(
    name="frontend",
    image="{registry}/insight360-frontend:{tag}",
    container_name="insight360-frontend",
    probe=ProbeSpec(kind="http", target="/"),
    depends_on=("backend",),
    port=80,
    description="React UI served by Nginx",
)

SERVICES: dict[str, ServiceSpec] = {
    s.name: s for s in (MONGODB, BACKEND, FRONTEND)
}

DATABASE_SERVICE = MONGODB.name


def get_service(name: str) -> ServiceSpec:
    """Look up a service spec by name.

    Raises
    ------
    ValueError
        If service name is not recognized.
    """
    key = name.lower().strip()
    if key not in SERVICES:
        available = ", ".join(sorted(SERVICES.keys()))
        raise ValueError(f"Unknown service: {name!r}. Available: {available}")
    return SERVICES[key]


def startup_order(services: list[ServiceSpec] | tuple[ServiceSpec, ...]) -> list[ServiceSpec]:
    """Order services so each comes after everything it depends on."""
    by_name = {s.name: s for s in services}
    ordered: list[ServiceSpec] = []
    visiting: set[str] = set()

    def visit(spec: ServiceSpec) -> None:
        if spec in ordered:
            return
        if spec.name in visiting:
            raise ValueError(f"Dependency cycle involving {spec.name!r}")
        visiting.add(spec.name)
        for dep in spec.depends_on:
            if dep in by_name:
                visit(by_name[dep])
        visiting.discard(spec.name)
        ordered.append(spec)

    for spec in services:
        visit(spec)
    return ordered


# ---------------------------------------------------------------------------
# Release descriptor
# ---------------------------------------------------------------------------


class ReleaseDescriptor(BaseModel):
    """One versioned set of service images deployed together.

    Immutable after creation. ``required_healthy`` defaults to the number of
    services and must equal it.

    Example::

        release = ReleaseDescriptor.create(tag="3f9c2e1", registry="acme")
        release.required_healthy  # 3
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    tag: str = DEFAULT_TAG
    registry: str = ""
    services: tuple[ServiceSpec, ...] = Field(default_factory=lambda: tuple(SERVICES.values()))
    required_healthy: int = 0

    @model_validator(mode="before")
    @classmethod
    def _default_required(cls, data: object) -> object:
        if isinstance(data, dict) and not data.get("required_healthy"):
            services = data.get("services", tuple(SERVICES.values()))
            data = {**data, "required_healthy": len(services)}
        return data

    @model_validator(mode="after")
    def _check_services(self) -> ReleaseDescriptor:
        names = [s.name for s in self.services]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate service names in release: {', '.join(duplicates)}")
        if self.required_healthy != len(self.services):
            raise ValueError(
                f"required_healthy ({self.required_healthy}) must equal the "
                f"number of services ({len(self.services)})"
            )
        return self

    @classmethod
    def create(
        cls,
        tag: str | None = None,
        registry: str = "",
        services: list[ServiceSpec] | tuple[ServiceSpec, ...] | None = None,
    ) -> ReleaseDescriptor:
        """Build a descriptor, falling back to the default tag."""
        values: dict[str, object] = {"tag": tag or DEFAULT_TAG, "registry": registry}
        if services is not None:
            values["services"] = tuple(startup_order(services))
        return cls(**values)

    @property
    def service_names(self) -> list[str]:
        return [s.name for s in self.services]

    def image_refs(self) -> dict[str, str]:
        """Resolved image reference per service name."""
        return {s.name: s.resolve_image(self.tag, self.registry) for s in self.services}

    def get(self, name: str) -> ServiceSpec:
        for spec in self.services:
            if spec.name == name:
                return spec
        raise KeyError(name)
