"""Name registration for workload endpoints.

Two registrars:

NameRegistrar (event-driven, runs centrally)
    Consumes unit state-change events and keeps the private registry in sync:
    ``<workload>.frontend`` / ``<workload>.backend`` get the unit's private
    IPv4 on RUNNING and lose it on STOPPED. This is how each endpoint's
    health monitor finds its peer.

PublicRecordRegistrar (runs inside the frontend at start)
    Discovers the frontend's public IPv4 and UPSERTs ``<workload>.<domain>``
    so callers can reach the service URL. Never fatal: the frontend keeps
    running without a public name.

Usage:
    registrar = NameRegistrar(config, registry)
    await registrar.handle_event(event)

Created: 2026-10-19
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from scalezero.config.settings import ScaleZeroConfig
from scalezero.core.models import WORKLOAD_METADATA_KEY, EndpointRole
from scalezero.core.names import is_valid_workload_name
from scalezero.providers.base import NameRegistryAPI
from scalezero.utils.exceptions import (
    AWS_ERRORS,
    NETWORK_ERRORS,
    RegistrationError,
    log_and_continue,
)
from scalezero.utils.http import fetch_text

logger = logging.getLogger(__name__)

RECORD_TTL = 60

# Tried in order; first success wins
PUBLIC_IP_ENDPOINTS = (
    "http://checkip.amazonaws.com",
    "http://169.254.169.254/latest/meta-data/public-ipv4",
    "http://icanhazip.com",
)


def record_name(workload: str, role: EndpointRole) -> str:
    """Private registry name of one endpoint."""
    return f"{workload}.{role.value}"


@dataclass
class UnitStateChange:
    """The fields of a unit state-change event that registration needs."""

    unit_ref: str
    last_status: str
    launch_type: str
    pool_ref: str
    metadata: dict[str, str] = field(default_factory=dict)
    attachments: list[dict[str, Any]] = field(default_factory=list)
    containers: list[dict[str, Any]] = field(default_factory=list)

    @property
    def unit_id(self) -> str:
        """Short id (last path segment of the unit ref)."""
        return self.unit_ref.rsplit("/", 1)[-1] or self.unit_ref

    @property
    def role(self) -> EndpointRole | None:
        return EndpointRole.from_launch_type(self.launch_type)

    @property
    def workload(self) -> str | None:
        return self.metadata.get(WORKLOAD_METADATA_KEY)

    @classmethod
    def from_event(cls, event: dict[str, Any]) -> UnitStateChange | None:
        """Parse an event envelope; None if a required field is missing."""
        detail = event.get("detail") or {}
        unit_ref = detail.get("taskArn")
        last_status = detail.get("lastStatus")
        launch_type = detail.get("launchType")
        pool_ref = detail.get("clusterArn")
        if not unit_ref or not last_status or not launch_type or not pool_ref:
            return None

        metadata: dict[str, str] = {}
        for override in (detail.get("overrides") or {}).get("containerOverrides") or []:
            for env in override.get("environment") or []:
                if env.get("name") and env.get("value") is not None:
                    metadata.setdefault(env["name"], env["value"])

        return cls(
            unit_ref=unit_ref,
            last_status=last_status,
            launch_type=launch_type,
            pool_ref=pool_ref,
            metadata=metadata,
            attachments=detail.get("attachments") or [],
            containers=detail.get("containers") or [],
        )

    def private_ipv4(self) -> str | None:
        """Address from the network attachment, else from a container interface."""
        for attachment in self.attachments:
            if attachment.get("type") != "eni":
                continue
            for item in attachment.get("details") or []:
                if item.get("name") == "privateIPv4Address" and item.get("value"):
                    return item["value"]

        for container in self.containers:
            interfaces = container.get("networkInterfaces") or []
            if interfaces and interfaces[0].get("privateIpv4Address"):
                return interfaces[0]["privateIpv4Address"]
        return None


class NameRegistrar:
    """Keeps ``<workload>.<role>`` records in the private registry current."""

    def __init__(self, config: ScaleZeroConfig, registry: NameRegistryAPI):
        self.config = config
        self.registry = registry

    def _pool_allowed(self, pool_ref: str) -> bool:
        allowed = self.config.allowed_pools
        if not allowed:
            return True
        pool_name = pool_ref.rsplit("/", 1)[-1]
        return pool_ref in allowed or pool_name in allowed

    async def handle_event(self, event: dict[str, Any]) -> str | None:
        """Apply one state-change event.

        Returns:
            "registered", "deregistered", or None when the event was ignored

        Raises:
            RegistrationError: A RUNNING unit has no private address.
        """
        change = UnitStateChange.from_event(event)
        if change is None:
            logger.debug("Ignoring incomplete unit state-change event")
            return None
        if not self._pool_allowed(change.pool_ref):
            logger.debug(f"Ignoring event from pool {change.pool_ref}")
            return None

        role = change.role
        workload = change.workload
        if role is None or not workload:
            return None
        if not is_valid_workload_name(workload):
            logger.warning(f"Ignoring unit {change.unit_id} with invalid workload name {workload!r}")
            return None

        name = record_name(workload, role)
        status = change.last_status.upper()

        if status == "RUNNING":
            await self._register(name, change, role)
            return "registered"
        if status == "STOPPED":
            await self._deregister(name, change)
            return "deregistered"
        return None

    async def _register(self, name: str, change: UnitStateChange, role: EndpointRole) -> None:
        ipv4 = change.private_ipv4()
        if not ipv4:
            raise RegistrationError(f"No private address for unit {change.unit_ref}")

        port = self.config.port_for(role)
        service_id = await self.registry.get_or_create_service(name)
        await self.registry.register_instance(service_id, change.unit_id, ipv4, port)
        logger.info(f"[{name}] Registered {change.unit_id} -> {ipv4}:{port}")

    async def _deregister(self, name: str, change: UnitStateChange) -> None:
        """Best-effort: registry errors are logged, never raised."""
        try:
            service_id = await self.registry.find_service(name)
            if not service_id:
                logger.debug(f"[{name}] No registry service, nothing to deregister")
                return
            await self.registry.deregister_instance(service_id, change.unit_id)
        except AWS_ERRORS as e:
            log_and_continue(e, f"{name}:deregister", logger)
            return
        logger.info(f"[{name}] Deregistered {change.unit_id}")


# =============================================================================
# Public record
# =============================================================================


class PublicRecordRegistrar:
    """Points ``<workload>.<domain>`` at this frontend's public address."""

    def __init__(
        self,
        config: ScaleZeroConfig,
        registry: NameRegistryAPI,
        endpoints: Sequence[str] = PUBLIC_IP_ENDPOINTS,
        fetch: Callable[[str], Awaitable[str | None]] | None = None,
    ):
        self.config = config
        self.registry = registry
        self.endpoints = tuple(endpoints)
        self.fetch = fetch or (lambda url: fetch_text(url, timeout=5.0))

    async def discover_public_ip(self) -> str | None:
        for endpoint in self.endpoints:
            ip = await self.fetch(endpoint)
            if ip:
                logger.info(f"Got public IP from {endpoint}: {ip}")
                return ip
            logger.debug(f"No public IP from {endpoint}")
        return None

    async def register(self, workload: str) -> bool:
        """Discover the public IP and UPSERT the public record.

        Returns:
            True if the record was written. Every failure is logged and
            reported as False.
        """
        if not self.config.register_public_record:
            logger.info("Public record registration disabled")
            return False
        if not workload or not self.config.domain or not self.config.hosted_zone_id:
            logger.error(
                "Missing workload, domain or hosted zone id, continuing without public record"
            )
            return False

        record = self.config.public_hostname(workload)
        try:
            ip = await self.discover_public_ip()
            if not ip:
                logger.error(f"[{record}] Could not determine public IP from any endpoint")
                return False
            await self.registry.upsert_public_record(record, ip, RECORD_TTL)
        except (*AWS_ERRORS, *NETWORK_ERRORS) as e:
            logger.error(f"[{record}] Failed to register public record: {e}")
            return False

        logger.info(f"[{record}] Public record -> {ip}")
        return True
