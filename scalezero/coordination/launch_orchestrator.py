"""Launch orchestrator: brings a workload's endpoint pair up on demand.

A launch request for workload ``name`` goes through:

1. Fast path: if both endpoints are running, the backend has an address and
   the frontend answers its public health URL, return ready at once.
2. Take the workload lease. If someone else holds it, return starting.
3. Re-check under the lease (the holder before us may have finished). Only
   a running pair that answers its health URL is ready; units found still
   pending are waited on, never duplicated.
4. Start the backend if missing: make sure the fleet has room, create the
   unit, and on each capacity-class refusal add one host and retry.
5. Wait for the backend to run with a private address.
6. Start the frontend if missing, pointing it at the backend address, and
   wait for it to run.
7. Release the lease.
8. Wait (bounded) for the public name to answer; a timeout here is logged
   and the launch still reports ready.

Any failure releases the lease and yields an error result whose message is
generic; details stay in the logs.

Usage:
    from scalezero.coordination.launch_orchestrator import LaunchOrchestrator

    orchestrator = LaunchOrchestrator(config, provisioning, fleet, leases)
    result = await orchestrator.launch("demo")
    if result.status is LaunchStatus.READY:
        redirect(result.service_url)

Created: 2026-10-19
"""

from __future__ import annotations

import asyncio
import functools
import ipaddress
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from scalezero.config.settings import ScaleZeroConfig
from scalezero.coordination.base_orchestrator import BaseOrchestrator
from scalezero.coordination.fleet_controller import FLEET_POOL_TAG
from scalezero.coordination.lease_store import LeaseStore
from scalezero.coordination.retry_strategies import FixedDelayStrategy, RetryContext
from scalezero.core.models import Endpoint, EndpointRole, HealthStatus
from scalezero.core.names import match_by_metadata, validate_workload_name
from scalezero.providers.base import FleetSizingAPI, ProvisioningAPI
from scalezero.utils.async_utils import SYSTEM_CLOCK, Clock, poll_until
from scalezero.utils.exceptions import (
    CapacityExhaustedError,
    LaunchTimeoutError,
    PollTimeoutError,
    ProvisioningError,
)
from scalezero.utils.http import Probe, probe_url

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Failed to start workload"


class LaunchStatus(str, Enum):
    READY = "ready"
    STARTING = "starting"
    ERROR = "error"


@dataclass
class LaunchResult:
    """Outcome of a launch or status request."""

    status: LaunchStatus
    workload: str
    service_url: str
    frontend: Endpoint | None = None
    backend: Endpoint | None = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status.value,
            "serviceUrl": self.service_url,
        }
        if self.frontend is not None:
            payload["frontend"] = self.frontend.to_dict()
        if self.backend is not None:
            payload["backend"] = self.backend.to_dict()
        if self.message:
            payload["message"] = self.message
        return payload


class LaunchOrchestrator(BaseOrchestrator):
    """Coalesces launch requests and starts missing endpoints in order."""

    def __init__(
        self,
        config: ScaleZeroConfig,
        provisioning: ProvisioningAPI,
        fleet: FleetSizingAPI,
        leases: LeaseStore,
        probe: Probe | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(name="launch_orchestrator")
        self.config = config
        self.provisioning = provisioning
        self.fleet = fleet
        self.leases = leases
        self.probe = probe or functools.partial(
            probe_url, timeout=config.reachability_probe_timeout
        )
        self.clock = clock or SYSTEM_CLOCK
        self._capacity_strategy = FixedDelayStrategy(
            max_retries=config.capacity_retry_limit,
            delay=config.capacity_retry_delay,
        )
        self._stats = {"launches": 0, "ready": 0, "starting": 0, "errors": 0, "created": 0}

    # =========================================================================
    # Public API
    # =========================================================================

    async def launch(self, name: str) -> LaunchResult:
        """Bring up the endpoint pair for ``name`` (idempotent).

        Raises:
            InvalidWorkloadNameError: ``name`` is not a valid workload name.
                Nothing is looked up or created for an invalid name.
        """
        validate_workload_name(name)
        self._stats["launches"] += 1

        try:
            result = await asyncio.wait_for(
                self._launch(name), timeout=self.config.request_timeout
            )
        except asyncio.TimeoutError:
            # _launch releases its own lease on cancellation; never release here
            self._record_error(
                f"[{name}] Launch exceeded {self.config.request_timeout:.0f}s", "timeout"
            )
            result = self._result(name, LaunchStatus.ERROR, message=GENERIC_ERROR_MESSAGE)

        self._stats[self._stat_key(result.status)] += 1
        self._touch()
        return result

    async def check_status(self, name: str) -> LaunchResult:
        """Read-only readiness check: never takes the lease or creates units."""
        validate_workload_name(name)

        frontend, backend = await self.find_pair(name)
        if self._pair_running(frontend, backend) and await self._probe_frontend(name, frontend):
            return self._result(name, LaunchStatus.READY, frontend, backend)
        return self._result(name, LaunchStatus.STARTING, frontend, backend)

    async def find_endpoint(self, name: str, role: EndpointRole) -> Endpoint | None:
        """Look up the live unit of ``role`` belonging to workload ``name``."""
        pool = self.config.pool_for(role)
        running, pending = await asyncio.gather(
            self.provisioning.describe_all_units(pool, "RUNNING"),
            self.provisioning.describe_all_units(pool, "PENDING"),
        )
        unit = match_by_metadata(
            running + pending, name, role, self.config.started_by_prefix
        )
        if unit is None:
            return None
        return Endpoint.from_unit(unit, role, name)

    async def find_pair(self, name: str) -> tuple[Endpoint | None, Endpoint | None]:
        """(frontend, backend) for ``name``, looked up concurrently."""
        frontend, backend = await asyncio.gather(
            self.find_endpoint(name, EndpointRole.FRONTEND),
            self.find_endpoint(name, EndpointRole.BACKEND),
        )
        return frontend, backend

    # =========================================================================
    # Launch flow
    # =========================================================================

    async def _launch(self, name: str) -> LaunchResult:
        try:
            frontend, backend = await self.find_pair(name)
            if self._pair_running(frontend, backend) and await self._probe_frontend(name, frontend):
                logger.info(f"[{name}] Already running")
                return self._result(name, LaunchStatus.READY, frontend, backend)

            lease = await self.leases.acquire(name)
        except Exception as e:
            return self._failed(name, e)

        if not lease.granted:
            logger.info(f"[{name}] Launch already in progress")
            return self._result(name, LaunchStatus.STARTING, message=lease.reason)

        released = False
        try:
            frontend, backend = await self.find_pair(name)
            if self._pair_running(frontend, backend) and await self._probe_frontend(name, frontend):
                released = True
                await self.leases.release(name)
                logger.info(f"[{name}] Launched by a concurrent request")
                return self._result(name, LaunchStatus.READY, frontend, backend)

            if backend is None or not backend.is_placed:
                backend = await self._start_backend(name, backend)

            if frontend is None:
                frontend = await self._start_frontend(name, backend.address or "")
            elif not frontend.is_running:
                logger.info(f"[{name}] Frontend {frontend.unit_ref} already starting")
                frontend = await self._wait_for_unit(name, EndpointRole.FRONTEND, frontend.unit_ref)

            released = True
            await self.leases.release(name)

            reachable = await self._wait_until_reachable(name)
            frontend.health = HealthStatus.HEALTHY if reachable else HealthStatus.UNHEALTHY
            return self._result(name, LaunchStatus.READY, frontend, backend)

        except Exception as e:
            return self._failed(name, e)
        finally:
            if not released:
                await self.leases.release(name)

    async def _start_backend(self, name: str, existing: Endpoint | None) -> Endpoint:
        if existing is None:
            unit_ref = await self._create_backend(name)
        else:
            logger.info(f"[{name}] Backend {existing.unit_ref} already starting")
            unit_ref = existing.unit_ref

        return await self._wait_for_unit(name, EndpointRole.BACKEND, unit_ref, require_address=True)

    async def _create_backend(self, name: str) -> str:
        """Create the backend unit, growing the fleet on capacity refusals."""
        ctx = RetryContext(target=name, operation="create_backend")

        await self.ensure_capacity()
        while True:
            try:
                unit_ref = await self.provisioning.create_unit(
                    self.config.backend_pool,
                    self.config.backend_template,
                    EndpointRole.BACKEND,
                    name,
                    {"DOMAIN": self.config.domain},
                )
            except ProvisioningError as e:
                if not e.is_capacity_error:
                    raise
                ctx.record_failure(e)
                if not self._capacity_strategy.should_retry(ctx):
                    raise CapacityExhaustedError(name, ctx.attempt, e.reason) from e

                logger.warning(f"[{name}] No room for backend ({e.reason}), adding a host")
                await self.request_additional_host()
                delay = self._capacity_strategy.get_delay(ctx)
                self._capacity_strategy.on_retry(ctx, delay)
                ctx.record_delay(delay)
                await self.clock.sleep(delay)
                continue

            self._stats["created"] += 1
            logger.info(f"[{name}] Created backend {unit_ref}")
            return unit_ref

    async def _start_frontend(self, name: str, backend_address: str) -> Endpoint:
        if not _is_ipv4(backend_address):
            raise ValueError(f"Backend address {backend_address!r} is not an IPv4 address")

        unit_ref = await self.provisioning.create_unit(
            self.config.frontend_pool,
            self.config.frontend_template,
            EndpointRole.FRONTEND,
            name,
            {
                "UPSTREAM_HOST": backend_address,
                "UPSTREAM_PORT": str(self.config.backend_port),
            },
        )
        self._stats["created"] += 1
        logger.info(f"[{name}] Created frontend {unit_ref} -> {backend_address}")

        return await self._wait_for_unit(name, EndpointRole.FRONTEND, unit_ref)

    async def _wait_for_unit(
        self,
        name: str,
        role: EndpointRole,
        unit_ref: str,
        require_address: bool = False,
    ) -> Endpoint:
        pool = self.config.pool_for(role)

        async def running_unit() -> Endpoint | None:
            for unit in await self.provisioning.describe_units(pool, [unit_ref]):
                endpoint = Endpoint.from_unit(unit, role, name)
                if endpoint.is_running and (endpoint.address or not require_address):
                    return endpoint
            return None

        try:
            return await poll_until(
                running_unit,
                interval=self.config.task_poll_interval,
                timeout=self.config.task_running_timeout,
                description=f"{role.value} {unit_ref} to run",
                clock=self.clock,
            )
        except PollTimeoutError as e:
            raise LaunchTimeoutError(
                f"{role.value} unit {unit_ref} for {name} not running after "
                f"{self.config.task_running_timeout:.0f}s"
            ) from e

    async def _wait_until_reachable(self, name: str) -> bool:
        try:
            await poll_until(
                lambda: self._is_reachable(name),
                interval=self.config.reachability_poll_interval,
                timeout=self.config.reachability_timeout,
                description=f"{self.config.health_url(name)} to answer",
                clock=self.clock,
            )
        except PollTimeoutError:
            logger.warning(
                f"[{name}] Frontend not reachable via DNS after "
                f"{self.config.reachability_timeout:.0f}s"
            )
            return False
        return True

    async def _is_reachable(self, name: str) -> bool:
        return await self.probe(self.config.health_url(name))

    async def _probe_frontend(self, name: str, frontend: Endpoint) -> bool:
        reachable = await self._is_reachable(name)
        frontend.health = HealthStatus.HEALTHY if reachable else HealthStatus.UNHEALTHY
        return reachable

    # =========================================================================
    # Capacity
    # =========================================================================

    async def ensure_capacity(self) -> None:
        """Make sure at least one backend host can take another unit.

        A connected host with enough free CPU and memory is sufficient.
        Otherwise one more host is requested and we wait for any host to be
        registered in the pool.

        Raises:
            LaunchTimeoutError: No host joined within capacity_join_timeout.
        """
        pool = self.config.backend_pool
        hosts = await self.provisioning.describe_all_hosts(pool)
        if any(
            host.connected
            and host.remaining_cpu >= self.config.min_free_cpu
            and host.remaining_memory >= self.config.min_free_memory
            for host in hosts
        ):
            return

        await self.request_additional_host()

        try:
            await poll_until(
                lambda: self.provisioning.list_hosts(pool),
                interval=self.config.capacity_poll_interval,
                timeout=self.config.capacity_join_timeout,
                description=f"a host to join {pool}",
                clock=self.clock,
            )
        except PollTimeoutError as e:
            raise LaunchTimeoutError(
                f"No host joined {pool} within {self.config.capacity_join_timeout:.0f}s"
            ) from e

    async def request_additional_host(self) -> int | None:
        """Raise the fleet's desired capacity by one, capped at its max size.

        Returns:
            The desired capacity after the call, or None if the fleet is unknown
        """
        fleet_id = self.config.fleet_name or await self.fleet.find_fleet_by_tag(
            FLEET_POOL_TAG, self.config.backend_pool
        )
        if not fleet_id:
            logger.warning(f"[{self.name}] No fleet found for {self.config.backend_pool}")
            return None

        fleet = await self.fleet.describe_fleet(fleet_id)
        if fleet is None:
            logger.warning(f"[{self.name}] Fleet {fleet_id} not found")
            return None

        desired = min(fleet.desired + 1, fleet.max_size)
        if desired > fleet.desired:
            logger.info(f"[{self.name}] Growing {fleet_id} to {desired} host(s)")
            await self.fleet.set_desired_capacity(fleet_id, desired)
        return desired

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _pair_running(frontend: Endpoint | None, backend: Endpoint | None) -> bool:
        return (
            frontend is not None
            and frontend.is_running
            and backend is not None
            and backend.is_placed
        )

    def _result(
        self,
        name: str,
        status: LaunchStatus,
        frontend: Endpoint | None = None,
        backend: Endpoint | None = None,
        message: str = "",
    ) -> LaunchResult:
        return LaunchResult(
            status=status,
            workload=name,
            service_url=self.config.service_url(name),
            frontend=frontend,
            backend=backend,
            message=message,
        )

    def _failed(self, name: str, error: Exception) -> LaunchResult:
        self._record_error(f"[{name}] {type(error).__name__}: {error}", "launch")
        logger.debug(f"[{name}] Launch failure details", exc_info=error)
        return self._result(name, LaunchStatus.ERROR, message=GENERIC_ERROR_MESSAGE)

    @staticmethod
    def _stat_key(status: LaunchStatus) -> str:
        return "errors" if status is LaunchStatus.ERROR else status.value

    def get_status(self) -> dict[str, Any]:
        status = super().get_status()
        status.update(self._stats)
        return status


def _is_ipv4(address: str) -> bool:
    try:
        ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return True
