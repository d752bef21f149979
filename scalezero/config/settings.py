"""Runtime settings for the scalezero orchestrator and its event handlers.

Settings are read once at process start and passed into every component
constructor; no component reads the environment on its own.

Resolution order (last wins):
    1. Dataclass defaults
    2. YAML overlay file named by SCALEZERO_CONFIG_FILE
    3. SCALEZERO_* environment variables

Usage:
    from scalezero.config.settings import get_config

    config = get_config()
    missing = config.validate()
    if missing:
        raise ConfigurationError(f"Missing settings: {missing}")

Created: 2026-10-19
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar

from scalezero.config.base_config import BaseSettings, load_yaml_overlay
from scalezero.core.models import EndpointRole
from scalezero.core.names import DEFAULT_STARTED_BY_PREFIX
from scalezero.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "SCALEZERO_CONFIG_FILE"

# Fixed ports of the endpoint pair
FRONTEND_PORT = 9060
BACKEND_PORT = 9050

# Lease TTLs (seconds)
LAUNCH_LEASE_TTL = 900
FLEET_LEASE_TTL = 300

# Minimum free capacity on a host before we ask the fleet for another one
MIN_FREE_CPU_UNITS = 256
MIN_FREE_MEMORY_MIB = 512


@dataclass
class ScaleZeroConfig(BaseSettings):
    """All tunables for launch orchestration, fleet control and registration."""

    _env_prefix: ClassVar[str] = "SCALEZERO"

    # Provider wiring
    region: str = ""
    frontend_pool: str = ""
    backend_pool: str = ""
    frontend_template: str = ""
    backend_template: str = ""
    frontend_subnets: list[str] = field(default_factory=list)
    backend_subnets: list[str] = field(default_factory=list)
    security_group: str = ""
    fleet_name: str = ""
    frontend_container: str = "proxy"
    backend_container: str = "service"

    # Naming
    domain: str = ""
    frontend_port: int = FRONTEND_PORT
    backend_port: int = BACKEND_PORT
    started_by_prefix: str = DEFAULT_STARTED_BY_PREFIX
    namespace_id: str = ""
    hosted_zone_id: str = ""
    allowed_pools: list[str] = field(default_factory=list)
    register_public_record: bool = True

    # Leases
    lease_table: str = ""
    launch_lease_ttl: int = LAUNCH_LEASE_TTL
    fleet_lease_ttl: int = FLEET_LEASE_TTL

    # Fleet sizing
    max_units_per_host: int = 3
    min_free_cpu: int = MIN_FREE_CPU_UNITS
    min_free_memory: int = MIN_FREE_MEMORY_MIB
    fleet_schedule_interval: float = 6 * 3600.0

    # Launch waits (seconds)
    task_poll_interval: float = 3.0
    task_running_timeout: float = 300.0
    capacity_poll_interval: float = 5.0
    capacity_join_timeout: float = 180.0
    capacity_retry_limit: int = 3
    capacity_retry_delay: float = 10.0
    reachability_poll_interval: float = 2.0
    reachability_timeout: float = 90.0
    reachability_probe_timeout: float = 3.0
    request_timeout: float = 900.0

    # Required for the AWS wiring of the launch path
    _REQUIRED: ClassVar[tuple[str, ...]] = (
        "frontend_pool",
        "backend_pool",
        "frontend_template",
        "backend_template",
        "domain",
        "lease_table",
    )

    @classmethod
    def from_env(cls, overlay: dict[str, Any] | None = None) -> ScaleZeroConfig:
        """Build settings from defaults, the YAML overlay and the environment.

        Args:
            overlay: Pre-loaded overlay mapping. When None, the file named by
                SCALEZERO_CONFIG_FILE is loaded (if set).
        """
        if overlay is None:
            overlay = load_yaml_overlay(os.environ.get(CONFIG_FILE_ENV))

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(overlay) - known)
        if unknown:
            raise ConfigurationError(f"Unknown setting(s) in config file: {', '.join(unknown)}")

        base = cls(**overlay)

        return cls(
            region=cls._get_env_str("REGION", base.region or os.environ.get("AWS_REGION", "")),
            frontend_pool=cls._get_env_str("FRONTEND_POOL", base.frontend_pool),
            backend_pool=cls._get_env_str("BACKEND_POOL", base.backend_pool),
            frontend_template=cls._get_env_str("FRONTEND_TEMPLATE", base.frontend_template),
            backend_template=cls._get_env_str("BACKEND_TEMPLATE", base.backend_template),
            frontend_subnets=cls._get_env_list("FRONTEND_SUBNETS", base.frontend_subnets),
            backend_subnets=cls._get_env_list("BACKEND_SUBNETS", base.backend_subnets),
            security_group=cls._get_env_str("SECURITY_GROUP", base.security_group),
            fleet_name=cls._get_env_str("FLEET_NAME", base.fleet_name),
            frontend_container=cls._get_env_str("FRONTEND_CONTAINER", base.frontend_container),
            backend_container=cls._get_env_str("BACKEND_CONTAINER", base.backend_container),
            domain=cls._get_env_str("DOMAIN", base.domain),
            frontend_port=cls._get_env_int("FRONTEND_PORT", base.frontend_port),
            backend_port=cls._get_env_int("BACKEND_PORT", base.backend_port),
            started_by_prefix=cls._get_env_str("STARTED_BY_PREFIX", base.started_by_prefix),
            namespace_id=cls._get_env_str("NAMESPACE_ID", base.namespace_id),
            hosted_zone_id=cls._get_env_str("HOSTED_ZONE_ID", base.hosted_zone_id),
            allowed_pools=cls._get_env_list("ALLOWED_POOLS", base.allowed_pools),
            register_public_record=cls._get_env_bool(
                "REGISTER_PUBLIC_RECORD", base.register_public_record
            ),
            lease_table=cls._get_env_str("LEASE_TABLE", base.lease_table),
            launch_lease_ttl=cls._get_env_int("LAUNCH_LEASE_TTL", base.launch_lease_ttl),
            fleet_lease_ttl=cls._get_env_int("FLEET_LEASE_TTL", base.fleet_lease_ttl),
            max_units_per_host=cls._get_env_int("MAX_UNITS_PER_HOST", base.max_units_per_host),
            min_free_cpu=cls._get_env_int("MIN_FREE_CPU", base.min_free_cpu),
            min_free_memory=cls._get_env_int("MIN_FREE_MEMORY", base.min_free_memory),
            fleet_schedule_interval=cls._get_env_float(
                "FLEET_SCHEDULE_INTERVAL", base.fleet_schedule_interval
            ),
            task_poll_interval=cls._get_env_float("TASK_POLL_INTERVAL", base.task_poll_interval),
            task_running_timeout=cls._get_env_float(
                "TASK_RUNNING_TIMEOUT", base.task_running_timeout
            ),
            capacity_poll_interval=cls._get_env_float(
                "CAPACITY_POLL_INTERVAL", base.capacity_poll_interval
            ),
            capacity_join_timeout=cls._get_env_float(
                "CAPACITY_JOIN_TIMEOUT", base.capacity_join_timeout
            ),
            capacity_retry_limit=cls._get_env_int(
                "CAPACITY_RETRY_LIMIT", base.capacity_retry_limit
            ),
            capacity_retry_delay=cls._get_env_float(
                "CAPACITY_RETRY_DELAY", base.capacity_retry_delay
            ),
            reachability_poll_interval=cls._get_env_float(
                "REACHABILITY_POLL_INTERVAL", base.reachability_poll_interval
            ),
            reachability_timeout=cls._get_env_float(
                "REACHABILITY_TIMEOUT", base.reachability_timeout
            ),
            reachability_probe_timeout=cls._get_env_float(
                "REACHABILITY_PROBE_TIMEOUT", base.reachability_probe_timeout
            ),
            request_timeout=cls._get_env_float("REQUEST_TIMEOUT", base.request_timeout),
        )

    def validate(self) -> list[str]:
        """Return the names of required settings that are empty."""
        missing = [name for name in self._REQUIRED if not getattr(self, name)]
        if self.max_units_per_host < 1:
            missing.append("max_units_per_host")
        return missing

    def require_valid(self) -> None:
        """Raise ConfigurationError if validate() reports anything."""
        missing = self.validate()
        if missing:
            raise ConfigurationError(f"Missing or invalid settings: {', '.join(missing)}")

    # -------------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------------

    def pool_for(self, role: EndpointRole) -> str:
        return self.frontend_pool if role is EndpointRole.FRONTEND else self.backend_pool

    def template_for(self, role: EndpointRole) -> str:
        return self.frontend_template if role is EndpointRole.FRONTEND else self.backend_template

    def subnets_for(self, role: EndpointRole) -> list[str]:
        return self.frontend_subnets if role is EndpointRole.FRONTEND else self.backend_subnets

    def container_for(self, role: EndpointRole) -> str:
        return self.frontend_container if role is EndpointRole.FRONTEND else self.backend_container

    def port_for(self, role: EndpointRole) -> int:
        return self.frontend_port if role is EndpointRole.FRONTEND else self.backend_port

    def public_hostname(self, workload: str) -> str:
        return f"{workload}.{self.domain}"

    def service_url(self, workload: str) -> str:
        """Public URL handed back to callers."""
        return f"http://{self.public_hostname(workload)}:{self.frontend_port}"

    def health_url(self, workload: str) -> str:
        return f"{self.service_url(workload)}/health"


# =============================================================================
# Singleton Access
# =============================================================================

_config: ScaleZeroConfig | None = None


def get_config() -> ScaleZeroConfig:
    """Get the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = ScaleZeroConfig.from_env()
    return _config


def reset_config() -> None:
    """Reset the cached settings (for testing)."""
    global _config
    _config = None
