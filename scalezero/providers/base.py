"""Provider interfaces used by scalezero coordination.

scalezero talks to three external systems, each behind an abstract class so
the coordination logic never touches an SDK directly:

- ProvisioningAPI: starts work units and reports units and hosts
- FleetSizingAPI: sizes the backing fleet and sets scale-in protection
- NameRegistryAPI: private service discovery plus the public DNS zone

The AWS implementations live in aws_ecs.py, aws_autoscaling.py and
aws_dns.py.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from scalezero.core.models import (
    EndpointRole,
    FleetDescription,
    HostDetail,
    UnitDetail,
)


class ProvisioningAPI(ABC):
    """Creates work units and reports on units and hosts in a pool."""

    @abstractmethod
    async def list_units(self, pool: str, desired_status: str = "RUNNING") -> list[str]:
        """Return refs of units in ``pool`` whose desired status matches."""

    @abstractmethod
    async def describe_units(self, pool: str, refs: Sequence[str]) -> list[UnitDetail]:
        """Describe units by ref. Unknown refs are omitted from the result."""

    @abstractmethod
    async def create_unit(
        self,
        pool: str,
        template: str,
        role: EndpointRole,
        workload: str,
        overrides: dict[str, str],
    ) -> str:
        """Start one unit and return its ref.

        Args:
            pool: Pool (cluster) to start the unit in
            template: Unit template (task definition)
            role: Endpoint role, selects the launch type
            workload: Workload name, written as started-by tag and metadata
            overrides: Extra environment passed to the unit

        Raises:
            ProvisioningError: The provider refused to place the unit.
                ``reason`` carries the provider's failure reason.
        """

    @abstractmethod
    async def list_hosts(self, pool: str) -> list[str]:
        """Return refs of the hosts registered in ``pool``."""

    @abstractmethod
    async def describe_hosts(self, pool: str, refs: Sequence[str]) -> list[HostDetail]:
        """Describe hosts by ref."""

    async def describe_all_units(
        self, pool: str, desired_status: str = "RUNNING"
    ) -> list[UnitDetail]:
        """list_units() followed by describe_units()."""
        refs = await self.list_units(pool, desired_status)
        if not refs:
            return []
        return await self.describe_units(pool, refs)

    async def describe_all_hosts(self, pool: str) -> list[HostDetail]:
        refs = await self.list_hosts(pool)
        if not refs:
            return []
        return await self.describe_hosts(pool, refs)


class FleetSizingAPI(ABC):
    """Sizes the fleet of hosts backing the backend pool."""

    @abstractmethod
    async def describe_fleet(self, fleet_id: str) -> FleetDescription | None:
        """Current desired/max size and members, or None if the fleet is unknown."""

    @abstractmethod
    async def set_desired_capacity(self, fleet_id: str, desired: int) -> None:
        ...

    @abstractmethod
    async def set_instance_protection(
        self, fleet_id: str, instance_ids: Sequence[str], protected: bool
    ) -> None:
        """Set scale-in protection on the given fleet members."""

    @abstractmethod
    async def find_fleet_for_instance(self, instance_id: str) -> str | None:
        """Return the id of the fleet that owns ``instance_id``."""

    @abstractmethod
    async def find_fleet_by_tag(self, key: str, value: str) -> str | None:
        """Return the id of the first fleet tagged ``key=value``."""


class NameRegistryAPI(ABC):
    """Private name registry and public DNS records."""

    @abstractmethod
    async def get_or_create_service(self, name: str) -> str:
        """Return the service id for ``name``, creating it if needed."""

    @abstractmethod
    async def find_service(self, name: str) -> str | None:
        """Return the service id for ``name`` or None."""

    @abstractmethod
    async def register_instance(
        self, service_id: str, instance_id: str, ipv4: str, port: int
    ) -> None:
        """Register an instance. Registering an existing instance is not an error."""

    @abstractmethod
    async def deregister_instance(self, service_id: str, instance_id: str) -> None:
        """Deregister an instance. Unknown instances are not an error."""

    @abstractmethod
    async def upsert_public_record(self, name: str, ipv4: str, ttl: int = 60) -> None:
        """Create or replace the public A record ``name`` -> ``ipv4``."""
