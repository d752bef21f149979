"""Base Orchestrator Class for scalezero coordination.

Captures common patterns across the launch orchestrator and the fleet
controller:
- Status reporting
- Bounded error log
- Activity timestamps

Usage:
    from scalezero.coordination.base_orchestrator import BaseOrchestrator

    class MyOrchestrator(BaseOrchestrator):
        def __init__(self):
            super().__init__(name="my_orchestrator")
            self._runs = 0

        def get_status(self) -> dict:
            base_status = super().get_status()
            base_status.update({"runs": self._runs})
            return base_status
"""

from __future__ import annotations

import logging
import time
from abc import ABC
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorStatus:
    """Base status information for all orchestrators."""

    name: str
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    error_count: int = 0
    last_error: str | None = None


class BaseOrchestrator(ABC):
    """Abstract base class for scalezero orchestrators.

    Subclasses should:
    1. Call super().__init__(name=...) in __init__
    2. Call self._touch() whenever they complete a unit of work
    3. Override get_status() to add custom status fields
    4. Use self._record_error() for error tracking
    """

    def __init__(self, name: str, max_error_log: int = 100):
        """Initialize base orchestrator.

        Args:
            name: Orchestrator name (used for logging/identification)
            max_error_log: Number of error entries kept in memory
        """
        self._name = name
        self._status = OrchestratorStatus(name=name)
        self._error_log: list[dict[str, Any]] = []
        self._max_error_log = max_error_log

    @property
    def name(self) -> str:
        return self._name

    def _touch(self) -> None:
        self._status.last_activity = time.time()

    # =========================================================================
    # Status and Health Reporting
    # =========================================================================

    def get_status(self) -> dict[str, Any]:
        """Get orchestrator status for monitoring.

        Returns:
            Dict with status information. Subclasses should extend this.
        """
        return {
            "name": self._name,
            "created_at": self._status.created_at,
            "last_activity": self._status.last_activity,
            "uptime_seconds": time.time() - self._status.created_at,
            "error_count": self._status.error_count,
            "last_error": self._status.last_error,
            "is_healthy": self.is_healthy(),
        }

    def is_healthy(self) -> bool:
        """Healthy unless five or more errors landed in the last 5 minutes."""
        recent_errors = sum(
            1
            for e in self._error_log[-10:]
            if time.time() - e.get("timestamp", 0) < 300
        )
        return recent_errors < 5

    # =========================================================================
    # Error Tracking
    # =========================================================================

    def _record_error(self, message: str, error_type: str = "general") -> None:
        """Record an error in the error log.

        Args:
            message: Error message
            error_type: Category of error (for filtering)
        """
        self._status.error_count += 1
        self._status.last_error = message

        self._error_log.append({
            "timestamp": time.time(),
            "message": message,
            "type": error_type,
        })

        # Keep error log bounded
        if len(self._error_log) > self._max_error_log:
            self._error_log = self._error_log[-self._max_error_log :]

        logger.error(f"[{self._name}] {error_type}: {message}")

    def get_recent_errors(self, limit: int = 10) -> list[dict[str, Any]]:
        return self._error_log[-limit:]
