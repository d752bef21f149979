"""Tests for the launch API routes.

Tests the endpoints in scalezero/routes/launch.py and scalezero/main.py:
- GET /{workload_name} (launch or report ready)
- GET /{workload_name}?status=true (read-only readiness)
- GET /health and GET /status

Uses FastAPI TestClient with a LaunchOrchestrator wired to in-memory fakes.
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from scalezero.coordination.launch_orchestrator import LaunchOrchestrator
from scalezero.coordination.lease_store import LEASE_IN_PROGRESS_REASON, LeaseResult
from scalezero.core.models import EndpointRole
from scalezero.routes.launch import reset_orchestrator, router, set_orchestrator

FRONTEND_POOL = "proxy-cluster"
BACKEND_POOL = "service-cluster"


class HeldLeases:
    """Lease store where every key is held by someone else."""

    async def acquire(self, key: str) -> LeaseResult:
        return LeaseResult(granted=False, reason=LEASE_IN_PROGRESS_REASON)

    async def release(self, key: str) -> None:
        pass


class StaticProbe:
    def __init__(self, reachable: bool = True):
        self.reachable = reachable

    async def __call__(self, url: str) -> bool:
        return self.reachable


@pytest.fixture
def orchestrator(config, provisioning, fleet, launch_leases, clock):
    provisioning.add_host(BACKEND_POOL, "i-1")
    orch = LaunchOrchestrator(
        config, provisioning, fleet, launch_leases, probe=StaticProbe(), clock=clock
    )
    set_orchestrator(orch)
    yield orch
    reset_orchestrator()


@pytest.fixture
def client(orchestrator):
    """Test client for an app carrying only the launch router."""
    app = FastAPI()
    app.include_router(router)
    return TestClient(app)


class TestLaunchEndpoint:
    """Tests for GET /{workload_name}."""

    def test_cold_start_returns_ready(self, client, provisioning):
        response = client.get("/demo")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["serviceUrl"] == "http://demo.example.com:9060"
        assert data["backend"]["role"] == "backend"
        assert data["frontend"]["unitRef"]
        assert len(provisioning.created) == 2

    def test_ready_workload_creates_nothing(self, client, provisioning):
        provisioning.add_unit(FRONTEND_POOL, "demo", EndpointRole.FRONTEND)
        provisioning.add_unit(BACKEND_POOL, "demo", EndpointRole.BACKEND)

        response = client.get("/demo")

        assert response.status_code == 200
        assert provisioning.created == []

    def test_launch_in_progress_is_409(self, client, orchestrator):
        orchestrator.leases = HeldLeases()

        response = client.get("/demo")

        assert response.status_code == 409
        data = response.json()
        assert data["status"] == "starting"
        assert data["serviceUrl"] == "http://demo.example.com:9060"

    def test_invalid_name_is_400(self, client, provisioning):
        response = client.get("/bad_name")

        assert response.status_code == 400
        assert response.json()["status"] == "error"
        assert provisioning.calls == []

    def test_failure_is_500_with_generic_message(self, client, provisioning):
        provisioning.create_failures = ["AGENT"]

        response = client.get("/demo")

        assert response.status_code == 500
        data = response.json()
        assert data["status"] == "error"
        assert data["message"] == "Failed to start workload"
        assert "AGENT" not in response.text


class TestStatusQuery:
    """Tests for GET /{workload_name}?status=true."""

    def test_missing_workload_is_starting_with_200(self, client, provisioning):
        response = client.get("/demo", params={"status": "true"})

        assert response.status_code == 200
        assert response.json()["status"] == "starting"
        assert provisioning.created == []

    def test_running_workload_is_ready(self, client, provisioning):
        provisioning.add_unit(FRONTEND_POOL, "demo", EndpointRole.FRONTEND)
        provisioning.add_unit(BACKEND_POOL, "demo", EndpointRole.BACKEND, address="10.0.0.42")

        response = client.get("/demo?status=true")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["backend"]["address"] == "10.0.0.42"

    def test_invalid_name_is_400(self, client):
        assert client.get("/bad_name?status=true").status_code == 400


class TestAppEndpoints:
    """Tests for the application-level routes."""

    def test_health(self, orchestrator):
        from scalezero.main import app

        response = TestClient(app).get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_status(self, orchestrator):
        from scalezero.main import app

        client = TestClient(app)
        client.get("/demo")
        response = client.get("/status")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "launch_orchestrator"
        assert data["launches"] == 1
        assert data["ready"] == 1
        assert data["recent_errors"] == []
