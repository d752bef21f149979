"""Tests for the event handler entry points."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from scalezero import handlers
from scalezero.coordination.fleet_controller import FleetController
from scalezero.coordination.name_registration import NameRegistrar
from scalezero.core.models import EndpointRole

BACKEND_POOL = "service-cluster"


@pytest.fixture(autouse=True)
def _reset():
    handlers.reset_handlers()
    yield
    handlers.reset_handlers()


@pytest.fixture
def controller(config, provisioning, fleet, fleet_leases, clock):
    controller = FleetController(config, provisioning, fleet, fleet_leases, clock=clock)
    with patch.object(handlers, "build_fleet_controller", return_value=controller), \
         patch.object(handlers, "get_config", return_value=config):
        yield controller


class TestFleetHandler:
    def test_scheduled_event_evaluates(self, controller, provisioning, fleet):
        provisioning.add_unit(BACKEND_POOL, "demo", EndpointRole.BACKEND, status="PENDING")

        result = handlers.fleet_handler({"detail-type": "Scheduled Event", "detail": {}})

        assert result["desired_capacity"] == 1
        assert fleet.desired_calls == [1]

    def test_state_change_event(self, controller, provisioning, fleet):
        provisioning.add_unit(BACKEND_POOL, "demo", EndpointRole.BACKEND, status="PENDING")
        event = {
            "detail-type": "ECS Task State Change",
            "detail": {
                "clusterArn": f"arn:aws:ecs:us-east-1:123:cluster/{BACKEND_POOL}",
                "launchType": "EC2",
                "lastStatus": "PENDING",
            },
        }

        assert handlers.fleet_handler(event)["changed"]

    def test_ignored_event(self, controller, fleet):
        event = {"detail-type": "ECS Task State Change", "detail": {"launchType": "FARGATE"}}
        assert handlers.fleet_handler(event) is None
        assert fleet.log == []

    def test_controller_is_reused(self, controller):
        assert handlers.get_fleet_controller() is handlers.get_fleet_controller()


class TestRegistrationHandler:
    def test_registers_running_unit(self, config, registry):
        registrar = NameRegistrar(config, registry)
        event = {
            "detail": {
                "taskArn": "arn:aws:ecs:us-east-1:123:task/proxy-cluster/f00",
                "lastStatus": "RUNNING",
                "launchType": "FARGATE",
                "clusterArn": "arn:aws:ecs:us-east-1:123:cluster/proxy-cluster",
                "overrides": {"containerOverrides": [{
                    "environment": [{"name": "WORKLOAD_NAME", "value": "demo"}],
                }]},
                "attachments": [{
                    "type": "eni",
                    "details": [{"name": "privateIPv4Address", "value": "10.0.0.8"}],
                }],
            },
        }
        with patch.object(handlers, "build_name_registrar", return_value=registrar), \
             patch.object(handlers, "get_config", return_value=config):
            assert handlers.registration_handler(event) == {"outcome": "registered"}

        assert "demo.frontend" in registry.services
