"""Compute fleet controller: keeps the backend fleet sized to the placed units.

On every backend unit state change (and on a slow schedule as a safety net)
the controller:

1. Counts backend units that are RUNNING or PENDING.
2. Counts the hosts registered in the backend pool and the units on each.
3. Protects busy hosts from scale-in and unprotects empty ones.
4. Only then computes and applies a new desired capacity.

Step 3 always precedes step 4 so a scale-in can only ever pick an empty host.
Evaluations are serialized across processes by a short fleet lease; an
evaluation that cannot take the lease is skipped, because the one holding it
will see the same state.

Usage:
    from scalezero.coordination.fleet_controller import FleetController

    controller = FleetController(config, provisioning, fleet, leases)
    decision = await controller.evaluate()

Created: 2026-10-19
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any

from scalezero.config.settings import ScaleZeroConfig
from scalezero.coordination.base_orchestrator import BaseOrchestrator
from scalezero.coordination.lease_store import LeaseStore, fleet_lease_key
from scalezero.core.models import ComputeHost, EndpointRole, HostDetail, UnitDetail
from scalezero.providers.base import FleetSizingAPI, ProvisioningAPI
from scalezero.utils.async_utils import SYSTEM_CLOCK, Clock
from scalezero.utils.exceptions import AWS_ERRORS

logger = logging.getLogger(__name__)

# Tag put on the fleet by the infrastructure so it can be found with no hosts
FLEET_POOL_TAG = "ECSCluster"

# Unit statuses that hold (or are about to hold) a slot on a host
COUNTED_UNIT_STATUSES = ("RUNNING", "PENDING")


def calculate_desired_capacity(
    total_units: int,
    current_hosts: int,
    empty_hosts: int,
    max_units_per_host: int = 3,
) -> int:
    """Number of hosts the fleet should have.

    - No units: scale to zero.
    - More units than current hosts can carry: grow to the required count.
    - Some hosts empty and the busy ones can carry every unit: shrink by the
      empty hosts (never below the required count).
    - Otherwise keep the current size.
    """
    if total_units == 0:
        return 0

    required = math.ceil(total_units / max_units_per_host)
    if required > current_hosts:
        return required

    busy_hosts = current_hosts - empty_hosts
    if empty_hosts > 0 and total_units <= busy_hosts * max_units_per_host:
        return max(required, busy_hosts)

    return current_hosts


@dataclass
class FleetDecision:
    """What one evaluation observed and did."""

    fleet_id: str
    total_units: int
    total_hosts: int
    empty_hosts: int = 0
    protected: list[str] = field(default_factory=list)
    unprotected: list[str] = field(default_factory=list)
    desired_capacity: int = 0
    changed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "fleet_id": self.fleet_id,
            "total_units": self.total_units,
            "total_hosts": self.total_hosts,
            "empty_hosts": self.empty_hosts,
            "protected": list(self.protected),
            "unprotected": list(self.unprotected),
            "desired_capacity": self.desired_capacity,
            "changed": self.changed,
        }


class FleetController(BaseOrchestrator):
    """Sizes the backend fleet and maintains per-host scale-in protection."""

    def __init__(
        self,
        config: ScaleZeroConfig,
        provisioning: ProvisioningAPI,
        fleet: FleetSizingAPI,
        leases: LeaseStore,
        clock: Clock | None = None,
    ):
        super().__init__(name="fleet_controller")
        self.config = config
        self.provisioning = provisioning
        self.fleet = fleet
        self.leases = leases
        self.clock = clock or SYSTEM_CLOCK
        self._running = False
        self._evaluations = 0
        self._skipped = 0
        self._last_decision: FleetDecision | None = None

    @property
    def pool(self) -> str:
        return self.config.backend_pool

    # =========================================================================
    # Triggers
    # =========================================================================

    async def handle_unit_state_change(self, event: dict[str, Any]) -> FleetDecision | None:
        """Evaluate in response to a unit state-change event.

        Only backend-type units in the backend pool trigger an evaluation;
        anything else (including malformed events) is ignored.
        """
        detail = event.get("detail") or {}
        pool_ref = detail.get("clusterArn")
        launch_type = detail.get("launchType")
        last_status = detail.get("lastStatus")

        if not pool_ref or not launch_type or not last_status:
            logger.debug(f"[{self.name}] Ignoring incomplete event")
            return None
        if launch_type != EndpointRole.BACKEND.launch_type:
            return None

        pool_name = pool_ref.rsplit("/", 1)[-1]
        if pool_name != self.pool:
            logger.debug(f"[{self.name}] Ignoring event from pool {pool_name}")
            return None

        return await self.evaluate()

    async def run_periodic(self, interval: float | None = None) -> None:
        """Evaluate on a fixed schedule until stop() is called."""
        interval = interval if interval is not None else self.config.fleet_schedule_interval
        self._running = True
        logger.info(f"[{self.name}] Periodic evaluation every {interval:.0f}s")

        while self._running:
            try:
                await self.evaluate()
            except AWS_ERRORS as e:
                self._record_error(f"Scheduled evaluation failed: {e}", "evaluation")
            if not self._running:
                break
            await self.clock.sleep(interval)

    def stop(self) -> None:
        self._running = False

    # =========================================================================
    # Evaluation
    # =========================================================================

    async def evaluate(self) -> FleetDecision | None:
        """Run one lease-protected evaluation.

        Returns:
            The decision, or None if the lease was held elsewhere or the
            fleet could not be identified.
        """
        lease_key = fleet_lease_key(self.config.fleet_name or self.pool)
        lease = await self.leases.acquire(lease_key)
        if not lease.granted:
            self._skipped += 1
            logger.debug(f"[{self.name}] Evaluation already running elsewhere, skipping")
            return None

        try:
            decision = await self._evaluate()
        finally:
            await self.leases.release(lease_key)

        self._evaluations += 1
        self._last_decision = decision
        self._touch()
        return decision

    async def _evaluate(self) -> FleetDecision | None:
        units, hosts = await asyncio.gather(
            self._list_counted_units(),
            self.provisioning.describe_all_hosts(self.pool),
        )

        fleet_id = await self._resolve_fleet_id(hosts)
        if not fleet_id:
            logger.warning(f"[{self.name}] No fleet found for pool {self.pool}")
            return None

        if not hosts:
            return await self._scale_from_zero(fleet_id, len(units))

        compute_hosts = self._count_units_per_host(hosts, units)
        decision = FleetDecision(
            fleet_id=fleet_id,
            total_units=len(units),
            total_hosts=len(compute_hosts),
            empty_hosts=sum(1 for h in compute_hosts if h.is_empty),
        )

        # Protection strictly before any capacity change
        await self._update_protection(fleet_id, compute_hosts, decision)

        decision.desired_capacity = calculate_desired_capacity(
            decision.total_units,
            decision.total_hosts,
            decision.empty_hosts,
            self.config.max_units_per_host,
        )

        if decision.desired_capacity != decision.total_hosts:
            logger.info(
                f"[{self.name}] Scaling {fleet_id}: {decision.total_hosts} -> "
                f"{decision.desired_capacity} hosts ({decision.total_units} units, "
                f"{decision.empty_hosts} empty)"
            )
            await self.fleet.set_desired_capacity(fleet_id, decision.desired_capacity)
            decision.changed = True

        return decision

    async def _scale_from_zero(self, fleet_id: str, total_units: int) -> FleetDecision:
        required = math.ceil(total_units / self.config.max_units_per_host)
        decision = FleetDecision(
            fleet_id=fleet_id,
            total_units=total_units,
            total_hosts=0,
            desired_capacity=required,
        )
        if required > 0:
            logger.info(f"[{self.name}] No hosts, {total_units} unit(s) waiting: scaling to {required}")
            await self.fleet.set_desired_capacity(fleet_id, required)
            decision.changed = True
        return decision

    async def _list_counted_units(self) -> list[UnitDetail]:
        """Backend units holding or awaiting a host slot, deduplicated by ref."""
        seen: dict[str, UnitDetail] = {}
        for status in COUNTED_UNIT_STATUSES:
            for unit in await self.provisioning.describe_all_units(self.pool, status):
                seen.setdefault(unit.ref, unit)
        return list(seen.values())

    @staticmethod
    def _count_units_per_host(
        hosts: list[HostDetail], units: list[UnitDetail]
    ) -> list[ComputeHost]:
        counts = {host.ref: 0 for host in hosts}
        for unit in units:
            if unit.host_ref in counts:
                counts[unit.host_ref] += 1
        return [
            ComputeHost(
                ref=host.ref,
                instance_id=host.instance_id,
                unit_count=counts[host.ref],
                active=host.active,
                connected=host.connected,
            )
            for host in hosts
        ]

    async def _update_protection(
        self,
        fleet_id: str,
        hosts: list[ComputeHost],
        decision: FleetDecision,
    ) -> None:
        for host in hosts:
            if not host.instance_id:
                continue
            if host.should_protect:
                decision.protected.append(host.instance_id)
            else:
                decision.unprotected.append(host.instance_id)

        if decision.protected:
            await self.fleet.set_instance_protection(fleet_id, decision.protected, True)
        if decision.unprotected:
            await self.fleet.set_instance_protection(fleet_id, decision.unprotected, False)

    async def _resolve_fleet_id(self, hosts: list[HostDetail]) -> str | None:
        if self.config.fleet_name:
            return self.config.fleet_name

        if not hosts:
            return await self.fleet.find_fleet_by_tag(FLEET_POOL_TAG, self.pool)

        instance_id = next((h.instance_id for h in hosts if h.instance_id), None)
        if not instance_id:
            return None
        return await self.fleet.find_fleet_for_instance(instance_id)

    def get_status(self) -> dict[str, Any]:
        status = super().get_status()
        status.update({
            "pool": self.pool,
            "evaluations": self._evaluations,
            "skipped": self._skipped,
            "last_decision": self._last_decision.to_dict() if self._last_decision else None,
        })
        return status
