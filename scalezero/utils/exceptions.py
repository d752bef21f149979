"""Exception types and narrow-catch tuples for scalezero.

Two things live here:

1. The scalezero exception hierarchy. Everything raised on purpose by the
   orchestrator, fleet controller and registrars derives from
   ScaleZeroError so the HTTP layer can map it to a generic failure
   without leaking internals.

2. Exception type tuples for narrow exception handlers, so programming
   errors (NameError, AttributeError, etc.) bubble up immediately while
   expected operational errors are handled.

Usage:
    from scalezero.utils.exceptions import AWS_ERRORS, NETWORK_ERRORS

    try:
        await probe(url)
    except NETWORK_ERRORS as e:
        logger.warning(f"Network error: {e}")
"""

from __future__ import annotations

import asyncio
import json
import logging

import aiohttp
from botocore.exceptions import BotoCoreError, ClientError

# Provisioning failures whose reason starts with this prefix are capacity-class
# (CPU/memory exhaustion on the backend fleet).
CAPACITY_FAILURE_PREFIX = "RESOURCE:"


# =============================================================================
# Exception Hierarchy
# =============================================================================


class ScaleZeroError(Exception):
    """Base class for all scalezero errors."""


class ConfigurationError(ScaleZeroError):
    """Raised when required configuration is missing or invalid."""


class InvalidWorkloadNameError(ScaleZeroError, ValueError):
    """Raised when a workload name is not a valid DNS label."""

    def __init__(self, name: str, reason: str):
        super().__init__(f"Invalid workload name {name!r}: {reason}")
        self.name = name
        self.reason = reason


class ProvisioningError(ScaleZeroError):
    """Raised when the provisioning API refuses to create a unit.

    Attributes:
        reason: Failure reason reported by the provider (e.g. "RESOURCE:MEMORY")
    """

    def __init__(self, message: str, reason: str = ""):
        super().__init__(message)
        self.reason = reason

    @property
    def is_capacity_error(self) -> bool:
        """True if the provider reported CPU/memory exhaustion."""
        return self.reason.startswith(CAPACITY_FAILURE_PREFIX)


class CapacityExhaustedError(ScaleZeroError):
    """Raised when capacity-class failures outlast the retry budget."""

    def __init__(self, workload: str, attempts: int, last_reason: str = ""):
        super().__init__(
            f"Backend for {workload} could not be placed after {attempts} attempts"
            f" (last reason: {last_reason or 'unknown'})"
        )
        self.workload = workload
        self.attempts = attempts
        self.last_reason = last_reason


class PollTimeoutError(ScaleZeroError, TimeoutError):
    """Raised when poll_until() reaches its deadline."""

    def __init__(self, description: str, timeout: float):
        super().__init__(f"Timed out after {timeout:.0f}s waiting for {description}")
        self.description = description
        self.timeout = timeout


class LaunchTimeoutError(ScaleZeroError, TimeoutError):
    """Raised when a bounded wait inside the launch flow expires."""


class RegistrationError(ScaleZeroError):
    """Raised when a name record cannot be registered."""


# =============================================================================
# Exception Type Tuples
# =============================================================================

# Network-related exceptions to catch for I/O operations
# Use for: health probes, public IP lookups, reachability checks
NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    aiohttp.ClientError,  # Connection refused, bad status line, etc.
    ConnectionError,      # Connection refused, reset, aborted
    TimeoutError,         # Socket/connect timeout
    OSError,              # Low-level I/O errors (includes socket.error)
    asyncio.TimeoutError, # Async operation timeout
)

# AWS SDK exceptions
# Use for: ECS, Auto Scaling, DynamoDB, Cloud Map, Route 53 calls
AWS_ERRORS: tuple[type[BaseException], ...] = (
    ClientError,    # Service returned an error response
    BotoCoreError,  # Credential, endpoint and transport failures
)

# JSON/parsing exceptions for data deserialization
# Use for: event payloads, config overlays, PID files
PARSE_ERRORS: tuple[type[BaseException], ...] = (
    json.JSONDecodeError,
    KeyError,
    TypeError,
    ValueError,
)


# =============================================================================
# Utility Functions
# =============================================================================


def aws_error_code(e: BaseException) -> str:
    """Return the AWS error code of a ClientError, or "" for anything else."""
    if isinstance(e, ClientError):
        return str(e.response.get("Error", {}).get("Code", ""))
    return ""


def log_and_continue(
    e: BaseException,
    context: str,
    logger_instance: logging.Logger,
    level: int = logging.WARNING,
) -> None:
    """Log exception with context, allowing the caller to continue.

    Use this for best-effort calls (lease release, record cleanup) whose
    failure must not abort the surrounding operation.

    Args:
        e: The exception that was caught
        context: Short description of the operation (e.g., "lease_release")
        logger_instance: Logger to use for logging
        level: Logging level (default: WARNING)
    """
    logger_instance.log(
        level,
        f"[{context}] Caught {type(e).__name__}: {e}",
    )
