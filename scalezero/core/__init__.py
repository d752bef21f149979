"""Core data model and workload-name handling."""

from scalezero.core.models import (
    ComputeHost,
    Endpoint,
    EndpointRole,
    FleetDescription,
    FleetInstance,
    HealthProbeState,
    HealthStatus,
    HostDetail,
    LeaseRecord,
    LifecycleStatus,
    UnitDetail,
    WORKLOAD_METADATA_KEY,
    parse_lifecycle_status,
)
from scalezero.core.names import (
    is_valid_workload_name,
    match_by_metadata,
    started_by_tag,
    validate_workload_name,
)

__all__ = [
    "ComputeHost",
    "Endpoint",
    "EndpointRole",
    "FleetDescription",
    "FleetInstance",
    "HealthProbeState",
    "HealthStatus",
    "HostDetail",
    "LeaseRecord",
    "LifecycleStatus",
    "UnitDetail",
    "WORKLOAD_METADATA_KEY",
    "parse_lifecycle_status",
    "is_valid_workload_name",
    "match_by_metadata",
    "started_by_tag",
    "validate_workload_name",
]
