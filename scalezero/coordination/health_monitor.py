"""Peer health monitor: each endpoint watches the other and stops itself.

Both endpoints of a workload run a PeerHealthMonitor pointed at the other
endpoint. When the peer stays unreachable for ``failure_threshold``
consecutive cycles the monitor terminates its own container (via the
process supervisor), so a half-dead pair always collapses to nothing and
the fleet can scale to zero.

Each cycle is a small probe batch (``probe_attempts`` GETs spaced
``probe_attempt_delay`` apart); the cycle succeeds if any attempt answers
2xx/3xx. Monitoring starts only after a grace period, which is long on the
frontend (its backend may be waiting for a host to boot from zero) and
short on the backend.

Also here:
- SupervisorTerminator: SIGTERM to the supervisor pid, pkill as fallback
- ShutdownFileWatcher: terminate when an operator drops /tmp/shutdown

Usage:
    from scalezero.coordination.health_monitor import MonitorConfig, PeerHealthMonitor

    config = MonitorConfig.from_env(EndpointRole.FRONTEND)
    if config.enabled:
        monitor = PeerHealthMonitor(config)
        terminated = await monitor.run()

Created: 2026-10-19
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar

from scalezero.config.base_config import BaseSettings
from scalezero.config.settings import BACKEND_PORT, FRONTEND_PORT
from scalezero.coordination.retry_strategies import (
    ExponentialBackoffStrategy,
    FixedDelayStrategy,
    RetryContext,
    RetryStrategy,
)
from scalezero.core.models import WORKLOAD_METADATA_KEY, EndpointRole, HealthProbeState
from scalezero.utils.async_utils import SYSTEM_CLOCK, Clock, SubprocessError, async_subprocess_run
from scalezero.utils.exceptions import ConfigurationError
from scalezero.utils.http import Probe, probe_url

logger = logging.getLogger(__name__)

SUPERVISOR_PID_FILE = Path("/var/run/supervisord.pid")
SUPERVISOR_PROCESS_NAME = "supervisord"
SHUTDOWN_FILE = Path("/tmp/shutdown")

# Grace periods (seconds): the frontend may wait on a host booting from zero
FRONTEND_GRACE_PERIOD = 600.0
BACKEND_GRACE_PERIOD = 60.0

# Private namespace the registrar publishes peer names into
DEFAULT_PRIVATE_NAMESPACE = "local"


class BackoffMode(str, Enum):
    """How cycles are spaced while the peer is failing."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass
class MonitorConfig(BaseSettings):
    """Settings of one peer monitor, read from the container environment."""

    _env_prefix: ClassVar[str] = ""

    role: EndpointRole = EndpointRole.FRONTEND
    peer_url: str = ""
    grace_period: float = FRONTEND_GRACE_PERIOD
    failure_threshold: int = 5
    base_interval: float = 5.0
    max_interval: float = 30.0
    probe_attempts: int = 5
    probe_attempt_delay: float = 1.0
    probe_timeout: float = 3.0
    connect_timeout: float = 2.0
    backoff: BackoffMode = BackoffMode.FIXED

    @property
    def enabled(self) -> bool:
        """A monitor without a peer to watch does nothing."""
        return bool(self.peer_url)

    @classmethod
    def from_env(cls, role: EndpointRole) -> MonitorConfig:
        """Build the monitor settings for the endpoint running ``role``.

        Frontend: watches http://UPSTREAM_HOST:UPSTREAM_PORT. No UPSTREAM_HOST
        means the monitor is disabled.
        Backend: watches http://PROXY_HOST:PROXY_PORT, where PROXY_HOST
        defaults to the frontend's private name for WORKLOAD_NAME.

        Raises:
            ConfigurationError: A backend monitor has neither PROXY_HOST nor
                WORKLOAD_NAME.
        """
        if role is EndpointRole.FRONTEND:
            host = cls._get_env_str("UPSTREAM_HOST", "")
            port = cls._get_env_int("UPSTREAM_PORT", BACKEND_PORT)
            default_grace = FRONTEND_GRACE_PERIOD
            default_backoff = BackoffMode.FIXED
        else:
            workload = cls._get_env_str(WORKLOAD_METADATA_KEY, "")
            namespace = cls._get_env_str("PRIVATE_NAMESPACE", DEFAULT_PRIVATE_NAMESPACE)
            default_host = f"{workload}.frontend.{namespace}" if workload else ""
            host = cls._get_env_str("PROXY_HOST", default_host)
            if not host:
                raise ConfigurationError(f"{WORKLOAD_METADATA_KEY} or PROXY_HOST is required")
            port = cls._get_env_int("PROXY_PORT", FRONTEND_PORT)
            default_grace = BACKEND_GRACE_PERIOD
            default_backoff = BackoffMode.EXPONENTIAL

        backoff_value = cls._get_env_str("HEALTH_CHECK_BACKOFF", default_backoff.value).lower()
        try:
            backoff = BackoffMode(backoff_value)
        except ValueError as e:
            raise ConfigurationError(f"Unknown HEALTH_CHECK_BACKOFF {backoff_value!r}") from e

        return cls(
            role=role,
            peer_url=f"http://{host}:{port}" if host else "",
            grace_period=cls._get_env_float("HEALTH_CHECK_INITIAL_GRACE_PERIOD", default_grace),
            failure_threshold=cls._get_env_int("MAX_HEALTH_CHECK_FAILURES", 5),
            base_interval=cls._get_env_float("HEALTH_CHECK_BASE_INTERVAL", 5.0),
            max_interval=cls._get_env_float("HEALTH_CHECK_MAX_DELAY", 30.0),
            backoff=backoff,
        )


# =============================================================================
# Termination
# =============================================================================


class SupervisorTerminator:
    """Stops the container by signalling its process supervisor. Fires once."""

    def __init__(
        self,
        pid_file: Path = SUPERVISOR_PID_FILE,
        process_name: str = SUPERVISOR_PROCESS_NAME,
    ):
        self.pid_file = pid_file
        self.process_name = process_name
        self.fired = False

    def _read_pid(self) -> int | None:
        if not self.pid_file.exists():
            return None
        try:
            return int(self.pid_file.read_text(encoding="utf-8").strip())
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable pid file {self.pid_file}: {e}")
            return None

    async def terminate(self, reason: str = "") -> bool:
        """Send SIGTERM to the supervisor.

        Returns:
            True if the signal was sent; False if it failed or this
            terminator already fired.
        """
        if self.fired:
            return False
        self.fired = True
        logger.error(f"Terminating container: {reason or 'requested'}")

        pid = self._read_pid()
        try:
            if pid is not None:
                os.kill(pid, signal.SIGTERM)
            else:
                await async_subprocess_run(
                    ["pkill", "-TERM", self.process_name], timeout=10.0, check=True
                )
        except (OSError, SubprocessError) as e:
            logger.error(f"Error stopping {self.process_name}: {e}")
            return False
        return True


class _Stoppable:
    """Interruptible sleeping shared by the monitor and the file watcher."""

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or SYSTEM_CLOCK
        self._stop_event = asyncio.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Make run() return before its next probe. Safe from signal handlers."""
        self._stop_event.set()

    async def _sleep(self, seconds: float) -> None:
        if self.stopped or seconds <= 0:
            return
        sleeper = asyncio.ensure_future(self.clock.sleep(seconds))
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, stopper):
                task.cancel()


# =============================================================================
# Peer Monitor
# =============================================================================


class PeerHealthMonitor(_Stoppable):
    """Probes the peer endpoint and terminates the container when it is gone."""

    def __init__(
        self,
        config: MonitorConfig,
        probe: Probe | None = None,
        terminator: SupervisorTerminator | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(clock)
        self.config = config
        self.name = f"{config.role.value}_monitor"
        self.probe = probe or functools.partial(
            probe_url,
            timeout=config.probe_timeout,
            connect_timeout=config.connect_timeout,
        )
        self.terminator = terminator or SupervisorTerminator()
        self.state = HealthProbeState()
        self.terminated = False
        self._strategy = self._build_strategy(config)

    @staticmethod
    def _build_strategy(config: MonitorConfig) -> RetryStrategy:
        if config.backoff is BackoffMode.EXPONENTIAL:
            return ExponentialBackoffStrategy(
                max_retries=config.failure_threshold,
                base_delay=config.base_interval,
                multiplier=2.0,
                max_delay=config.max_interval,
            )
        return FixedDelayStrategy(max_retries=config.failure_threshold, delay=config.base_interval)

    def stop(self) -> None:
        self.state.shutting_down = True
        super().stop()

    async def run(self) -> bool:
        """Monitor until terminated or stopped.

        Returns:
            True if the peer was declared dead and termination was triggered
        """
        logger.info(
            f"[{self.name}] Watching {self.config.peer_url} "
            f"(threshold {self.config.failure_threshold}, grace {self.config.grace_period:.0f}s, "
            f"{self.config.backoff.value} backoff)"
        )

        await self._sleep(self.config.grace_period)
        if not self.state.shutting_down:
            logger.info(f"[{self.name}] Grace period over, starting health checks")

        while not self.state.shutting_down:
            await self.run_cycle()
            if self.state.shutting_down:
                break
            await self._sleep(self.next_interval())

        return self.terminated

    async def run_cycle(self) -> bool:
        """Run one probe batch and update the failure counter.

        Returns:
            True if the peer answered
        """
        healthy = await self.probe_peer()
        if self.state.shutting_down:
            # Stopped mid-batch: the batch result does not count
            return healthy
        self.state.total_probes += 1

        if healthy:
            if self.state.consecutive_failures > 0:
                logger.info(
                    f"[{self.name}] Peer healthy again "
                    f"(was {self.state.consecutive_failures} consecutive failures)"
                )
            self.state.consecutive_failures = 0
            return True

        self.state.consecutive_failures += 1
        self.state.total_failures += 1
        logger.warning(
            f"[{self.name}] Health check failed "
            f"({self.state.consecutive_failures}/{self.config.failure_threshold} consecutive failures)"
        )

        if self.state.consecutive_failures >= self.config.failure_threshold:
            await self._terminate()
        return False

    async def probe_peer(self) -> bool:
        """Up to probe_attempts GETs; True on the first success.

        Stops early, returning False, once the monitor is shutting down.
        """
        for attempt in range(self.config.probe_attempts):
            if self.state.shutting_down:
                return False
            if await self.probe(self.config.peer_url):
                return True
            if attempt < self.config.probe_attempts - 1:
                await self._sleep(self.config.probe_attempt_delay)
        return False

    def next_interval(self) -> float:
        """Seconds to wait before the next cycle."""
        ctx = RetryContext(
            target=self.config.peer_url,
            operation="peer_health",
            attempt=self.state.consecutive_failures,
        )
        return self._strategy.get_delay(ctx)

    async def _terminate(self) -> None:
        if self.terminated:
            return
        self.terminated = True
        self.stop()
        await self.terminator.terminate(
            f"peer {self.config.peer_url} failed {self.state.consecutive_failures} "
            f"consecutive health checks"
        )

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "peer_url": self.config.peer_url,
            "consecutive_failures": self.state.consecutive_failures,
            "total_probes": self.state.total_probes,
            "total_failures": self.state.total_failures,
            "shutting_down": self.state.shutting_down,
            "terminated": self.terminated,
        }


# =============================================================================
# Shutdown File
# =============================================================================


class ShutdownFileWatcher(_Stoppable):
    """Terminates the container once ``path`` exists."""

    def __init__(
        self,
        path: Path = SHUTDOWN_FILE,
        terminator: SupervisorTerminator | None = None,
        interval: float = 1.0,
        clock: Clock | None = None,
    ):
        super().__init__(clock)
        self.path = path
        self.terminator = terminator or SupervisorTerminator()
        self.interval = interval

    async def run(self) -> bool:
        """Poll until the file appears (True) or stop() is called (False)."""
        logger.info(f"Watching for shutdown file: {self.path}")
        while not self.stopped:
            if self.path.exists():
                logger.info(f"Shutdown file {self.path} detected")
                await self.terminator.terminate("shutdown file present")
                return True
            await self._sleep(self.interval)
        return False
