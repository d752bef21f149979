"""Data model shared by every scalezero component.

Provider-facing records (UnitDetail, HostDetail, FleetDescription) are plain
dataclasses filled in by the provider adapters; Endpoint and ComputeHost are
the views the orchestrator and fleet controller reason about.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Metadata key carrying the workload name on every unit we create
WORKLOAD_METADATA_KEY = "WORKLOAD_NAME"


class EndpointRole(str, Enum):
    """The two roles of a workload pair."""

    FRONTEND = "frontend"  # Public-reachable relay (serverless)
    BACKEND = "backend"    # Private compute unit (placed on fleet hosts)

    @property
    def launch_type(self) -> str:
        """Provider launch type used by units of this role."""
        return "FARGATE" if self is EndpointRole.FRONTEND else "EC2"

    @property
    def peer(self) -> EndpointRole:
        """The role this role health-checks."""
        return EndpointRole.BACKEND if self is EndpointRole.FRONTEND else EndpointRole.FRONTEND

    @classmethod
    def from_launch_type(cls, launch_type: str) -> EndpointRole | None:
        for role in cls:
            if role.launch_type == launch_type:
                return role
        return None


class LifecycleStatus(str, Enum):
    """Canonical lifecycle status of an endpoint."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


class HealthStatus(str, Enum):
    """Observed health of an endpoint."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


# Provider status strings -> canonical lifecycle status
_STATUS_MAP: dict[str, LifecycleStatus] = {
    "PROVISIONING": LifecycleStatus.PENDING,
    "PENDING": LifecycleStatus.PENDING,
    "ACTIVATING": LifecycleStatus.PENDING,
    "RUNNING": LifecycleStatus.RUNNING,
    "DEACTIVATING": LifecycleStatus.STOPPED,
    "STOPPING": LifecycleStatus.STOPPED,
    "DEPROVISIONING": LifecycleStatus.STOPPED,
    "STOPPED": LifecycleStatus.STOPPED,
}

# Statuses that mean the unit is on its way out and must never be matched
TERMINAL_STATUSES = frozenset({"STOPPED", "DEPROVISIONING"})


def parse_lifecycle_status(status: str | None) -> LifecycleStatus:
    """Map a provider status string to LifecycleStatus."""
    return _STATUS_MAP.get((status or "").upper(), LifecycleStatus.UNKNOWN)


@dataclass
class UnitDetail:
    """A work unit as reported by the provisioning API."""

    ref: str
    status: str
    launch_type: str = ""
    address: str | None = None
    started_by: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    host_ref: str | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)

    @property
    def lifecycle(self) -> LifecycleStatus:
        return parse_lifecycle_status(self.status)

    @property
    def workload_name(self) -> str | None:
        return self.metadata.get(WORKLOAD_METADATA_KEY)


@dataclass
class HostDetail:
    """A compute host registered in the backend pool."""

    ref: str
    instance_id: str | None = None
    active: bool = True
    connected: bool = True
    remaining_cpu: int = 0
    remaining_memory: int = 0


@dataclass
class FleetInstance:
    """One member of the backing fleet as seen by the fleet sizing API."""

    instance_id: str
    lifecycle_state: str = "InService"
    protected_from_scale_in: bool = False


@dataclass
class FleetDescription:
    """Current sizing of the backing fleet."""

    fleet_id: str
    desired: int
    max_size: int
    min_size: int = 0
    instances: list[FleetInstance] = field(default_factory=list)


@dataclass
class Endpoint:
    """One side of a workload pair."""

    role: EndpointRole
    workload: str
    unit_ref: str
    lifecycle: LifecycleStatus = LifecycleStatus.UNKNOWN
    health: HealthStatus = HealthStatus.UNKNOWN
    address: str | None = None

    @classmethod
    def from_unit(cls, unit: UnitDetail, role: EndpointRole, workload: str) -> Endpoint:
        return cls(
            role=role,
            workload=workload,
            unit_ref=unit.ref,
            lifecycle=unit.lifecycle,
            address=unit.address,
        )

    @property
    def is_running(self) -> bool:
        return self.lifecycle == LifecycleStatus.RUNNING

    @property
    def is_placed(self) -> bool:
        """Running with an assigned address."""
        return self.is_running and bool(self.address)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "unitRef": self.unit_ref,
            "status": self.lifecycle.value,
            "health": self.health.value,
            "address": self.address,
        }


@dataclass
class ComputeHost:
    """A fleet host annotated with placement information."""

    ref: str
    instance_id: str | None
    unit_count: int = 0
    active: bool = True
    connected: bool = True

    @property
    def is_empty(self) -> bool:
        return self.unit_count == 0

    @property
    def should_protect(self) -> bool:
        """Hosts carrying at least one unit are protected from scale-in."""
        return self.unit_count > 0


@dataclass
class LeaseRecord:
    """A stored lease: key plus acquisition and expiry timestamps (epoch s)."""

    key: str
    acquired_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at < now


@dataclass
class HealthProbeState:
    """In-memory state of one peer health monitor."""

    consecutive_failures: int = 0
    shutting_down: bool = False
    total_probes: int = 0
    total_failures: int = 0
