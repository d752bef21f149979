"""Shared pytest fixtures for scalezero unit tests.

Provides in-memory fakes of the three provider interfaces, a fake clock that
advances instantly, and a fully populated ScaleZeroConfig.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable, Sequence
from typing import Any

import pytest

from scalezero.config.settings import ScaleZeroConfig
from scalezero.coordination.lease_store import InMemoryLeaseStore
from scalezero.core.models import (
    WORKLOAD_METADATA_KEY,
    EndpointRole,
    FleetDescription,
    FleetInstance,
    HostDetail,
    UnitDetail,
)
from scalezero.providers.base import FleetSizingAPI, NameRegistryAPI, ProvisioningAPI
from scalezero.utils.async_utils import Clock
from scalezero.utils.exceptions import ProvisioningError

FRONTEND_POOL = "proxy-cluster"
BACKEND_POOL = "service-cluster"
FLEET_NAME = "service-asg"


# =============================================================================
# CLOCK
# =============================================================================


class FakeClock(Clock):
    """Clock whose sleep() advances time instantly."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.wall = start
        self.mono = 0.0
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.wall

    def monotonic(self) -> float:
        return self.mono

    def advance(self, seconds: float) -> None:
        self.wall += seconds
        self.mono += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(max(0.0, seconds))
        await asyncio.sleep(0)


# =============================================================================
# PROVISIONING
# =============================================================================


class FakeProvisioning(ProvisioningAPI):
    """In-memory pools of units and hosts.

    Created units start RUNNING with an address unless ``auto_run`` is off,
    in which case they stay PENDING until promote() is called.
    """

    def __init__(self):
        self.units: dict[str, dict[str, UnitDetail]] = {}
        self.hosts: dict[str, dict[str, HostDetail]] = {}
        self.created: list[dict[str, Any]] = []
        self.create_failures: list[str] = []
        self.auto_run = True
        self.calls: list[str] = []
        self._ids = itertools.count(1)

    # -- helpers -----------------------------------------------------------

    def add_unit(
        self,
        pool: str,
        workload: str,
        role: EndpointRole,
        status: str = "RUNNING",
        address: str | None = "10.0.0.10",
        host_ref: str | None = None,
        ref: str | None = None,
    ) -> UnitDetail:
        ref = ref or f"arn:aws:ecs:task/{pool}/{next(self._ids):04d}"
        unit = UnitDetail(
            ref=ref,
            status=status,
            launch_type=role.launch_type,
            address=address,
            started_by=f"wrapper-{workload}",
            metadata={WORKLOAD_METADATA_KEY: workload},
            host_ref=host_ref,
        )
        self.units.setdefault(pool, {})[ref] = unit
        return unit

    def add_host(
        self,
        pool: str,
        instance_id: str,
        remaining_cpu: int = 2048,
        remaining_memory: int = 4096,
        connected: bool = True,
    ) -> HostDetail:
        ref = f"arn:aws:ecs:container-instance/{pool}/{instance_id}"
        host = HostDetail(
            ref=ref,
            instance_id=instance_id,
            connected=connected,
            remaining_cpu=remaining_cpu,
            remaining_memory=remaining_memory,
        )
        self.hosts.setdefault(pool, {})[ref] = host
        return host

    def promote(self, ref: str, address: str = "10.0.0.20") -> None:
        for pool_units in self.units.values():
            if ref in pool_units:
                pool_units[ref].status = "RUNNING"
                pool_units[ref].address = address

    # -- ProvisioningAPI ---------------------------------------------------

    async def list_units(self, pool: str, desired_status: str = "RUNNING") -> list[str]:
        self.calls.append(f"list_units:{pool}:{desired_status}")
        return [
            ref for ref, unit in self.units.get(pool, {}).items()
            if unit.status.upper() == desired_status
        ]

    async def describe_units(self, pool: str, refs: Sequence[str]) -> list[UnitDetail]:
        pool_units = self.units.get(pool, {})
        return [pool_units[ref] for ref in refs if ref in pool_units]

    async def create_unit(
        self,
        pool: str,
        template: str,
        role: EndpointRole,
        workload: str,
        overrides: dict[str, str],
    ) -> str:
        self.calls.append(f"create_unit:{role.value}")
        if self.create_failures:
            reason = self.create_failures.pop(0)
            raise ProvisioningError(f"Failed to launch {role.value}: {reason}", reason=reason)

        self.created.append({
            "pool": pool,
            "template": template,
            "role": role,
            "workload": workload,
            "overrides": dict(overrides),
        })
        n = next(self._ids)
        unit = self.add_unit(
            pool,
            workload,
            role,
            status="RUNNING" if self.auto_run else "PENDING",
            address=f"10.0.1.{n}" if self.auto_run else None,
        )
        unit.metadata.update(overrides)
        return unit.ref

    async def list_hosts(self, pool: str) -> list[str]:
        return list(self.hosts.get(pool, {}))

    async def describe_hosts(self, pool: str, refs: Sequence[str]) -> list[HostDetail]:
        pool_hosts = self.hosts.get(pool, {})
        return [pool_hosts[ref] for ref in refs if ref in pool_hosts]


# =============================================================================
# FLEET
# =============================================================================


class FakeFleet(FleetSizingAPI):
    """In-memory Auto Scaling groups with an ordered call log."""

    def __init__(self):
        self.fleets: dict[str, FleetDescription] = {}
        self.tags: dict[tuple[str, str], str] = {}
        self.log: list[tuple] = []
        self.on_set_desired: Callable[[str, int], None] | None = None

    def add_fleet(self, fleet_id: str, desired: int = 0, max_size: int = 10) -> FleetDescription:
        fleet = FleetDescription(fleet_id=fleet_id, desired=desired, max_size=max_size)
        self.fleets[fleet_id] = fleet
        return fleet

    async def describe_fleet(self, fleet_id: str) -> FleetDescription | None:
        return self.fleets.get(fleet_id)

    async def set_desired_capacity(self, fleet_id: str, desired: int) -> None:
        self.log.append(("desired", fleet_id, desired))
        if fleet_id in self.fleets:
            self.fleets[fleet_id].desired = desired
        if self.on_set_desired is not None:
            self.on_set_desired(fleet_id, desired)

    async def set_instance_protection(
        self, fleet_id: str, instance_ids: Sequence[str], protected: bool
    ) -> None:
        self.log.append(("protect", fleet_id, sorted(instance_ids), protected))

    async def find_fleet_for_instance(self, instance_id: str) -> str | None:
        for fleet in self.fleets.values():
            if any(i.instance_id == instance_id for i in fleet.instances):
                return fleet.fleet_id
        return None

    async def find_fleet_by_tag(self, key: str, value: str) -> str | None:
        return self.tags.get((key, value))

    def attach(self, fleet_id: str, instance_id: str) -> None:
        self.fleets[fleet_id].instances.append(FleetInstance(instance_id=instance_id))

    @property
    def desired_calls(self) -> list[int]:
        return [entry[2] for entry in self.log if entry[0] == "desired"]

    @property
    def protection_calls(self) -> list[tuple]:
        return [entry for entry in self.log if entry[0] == "protect"]


# =============================================================================
# NAME REGISTRY
# =============================================================================


class FakeRegistry(NameRegistryAPI):
    """In-memory private registry and public zone."""

    def __init__(self):
        self.services: dict[str, str] = {}
        self.instances: dict[str, dict[str, tuple[str, int]]] = {}
        self.public: dict[str, tuple[str, int]] = {}

    async def get_or_create_service(self, name: str) -> str:
        if name not in self.services:
            self.services[name] = f"srv-{len(self.services) + 1}"
        return self.services[name]

    async def find_service(self, name: str) -> str | None:
        return self.services.get(name)

    async def register_instance(
        self, service_id: str, instance_id: str, ipv4: str, port: int
    ) -> None:
        self.instances.setdefault(service_id, {})[instance_id] = (ipv4, port)

    async def deregister_instance(self, service_id: str, instance_id: str) -> None:
        self.instances.get(service_id, {}).pop(instance_id, None)

    async def upsert_public_record(self, name: str, ipv4: str, ttl: int = 60) -> None:
        self.public[name] = (ipv4, ttl)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def config() -> ScaleZeroConfig:
    """Fully populated settings for the test pools."""
    return ScaleZeroConfig(
        region="us-east-1",
        frontend_pool=FRONTEND_POOL,
        backend_pool=BACKEND_POOL,
        frontend_template="proxy-td",
        backend_template="service-td",
        frontend_subnets=["subnet-public"],
        backend_subnets=["subnet-private"],
        security_group="sg-123",
        fleet_name=FLEET_NAME,
        domain="example.com",
        lease_table="launch-locks",
        namespace_id="ns-123",
        hosted_zone_id="Z123",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provisioning() -> FakeProvisioning:
    return FakeProvisioning()


@pytest.fixture
def fleet() -> FakeFleet:
    fake = FakeFleet()
    fake.add_fleet(FLEET_NAME, desired=0, max_size=5)
    return fake


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def launch_leases(clock) -> InMemoryLeaseStore:
    return InMemoryLeaseStore(ttl_seconds=900, clock=clock)


@pytest.fixture
def fleet_leases(clock) -> InMemoryLeaseStore:
    return InMemoryLeaseStore(ttl_seconds=300, clock=clock)
