"""Tests for service specs and the release descriptor."""

from __future__ import annotations

import pytest
from pydantic import ValidationError


class TestServiceSpec:
    def test_all_services_registered(self):
        from insight360.deploy.services import SERVICES

        assert list(SERVICES) == ["mongodb", "backend", "frontend"]

    def test_container_names_match_manifest(self):
        from insight360.deploy.services import SERVICES

        assert {s.container_name for s in SERVICES.values()} == {
            "insight360-mongodb",
            "insight360-backend",
            "insight360-frontend",
        }

    def test_resolve_image(self):
        from insight360.deploy.services import BACKEND, MONGODB

        assert BACKEND.resolve_image("abc123", "acme") == "acme/insight360-backend:abc123"
        assert BACKEND.resolve_image(None, "acme") == "acme/insight360-backend:latest"
        assert MONGODB.resolve_image("abc123", "acme") == "mongo:7-jammy"
        assert BACKEND.follows_release_tag
        assert not MONGODB.follows_release_tag

    def test_probes(self):
        from insight360.deploy.services import BACKEND, FRONTEND, MONGODB

        assert MONGODB.probe.kind == "mongo"
        assert MONGODB.probe.target == "ping"
        assert BACKEND.probe.target == "/api/health"
        assert BACKEND.probe.require_json_field == "status"
        assert FRONTEND.probe.target == "/"

    def test_get_service(self):
        from insight360.deploy.services import get_service

        assert get_service(" Backend ").port == 5000
        with pytest.raises(ValueError, match="Unknown service"):
            get_service("redis")

    def test_startup_order(self):
        from insight360.deploy.services import BACKEND, FRONTEND, MONGODB, startup_order

        assert startup_order([FRONTEND, BACKEND, MONGODB]) == [MONGODB, BACKEND, FRONTEND]

    def test_startup_order_rejects_cycles(self):
        from insight360.deploy.services import ProbeSpec, ServiceSpec, startup_order

        probe = ProbeSpec(kind="http", target="/")
        a = ServiceSpec(name="a", image="a", container_name="a", probe=probe, depends_on=("b",))
        b = ServiceSpec(name="b", image="b", container_name="b", probe=probe, depends_on=("a",))
        with pytest.raises(ValueError, match="cycle"):
            startup_order([a, b])


class TestReleaseDescriptor:
    def test_defaults(self):
        from insight360.deploy.services import ReleaseDescriptor

        release = ReleaseDescriptor.create()
        assert release.tag == "latest"
        assert release.service_names == ["mongodb", "backend", "frontend"]
        assert release.required_healthy == 3

    def test_image_refs(self):
        from insight360.deploy.services import ReleaseDescriptor

        refs = ReleaseDescriptor.create(tag="3f9c2e1", registry="acme").image_refs()
        assert refs == {
            "mongodb": "mongo:7-jammy",
            "backend": "acme/insight360-backend:3f9c2e1",
            "frontend": "acme/insight360-frontend:3f9c2e1",
        }

    def test_required_healthy_must_equal_service_count(self):
        from insight360.deploy.services import ReleaseDescriptor

        with pytest.raises(ValidationError, match="required_healthy"):
            ReleaseDescriptor(required_healthy=2)

    def test_immutable(self):
        from insight360.deploy.services import ReleaseDescriptor

        release = ReleaseDescriptor.create(tag="v1")
        with pytest.raises(ValidationError):
            release.tag = "v2"

    def test_get(self):
        from insight360.deploy.services import ReleaseDescriptor

        release = ReleaseDescriptor.create()
        assert release.get("frontend").port == 80
        with pytest.raises(KeyError):
            release.get("redis")
