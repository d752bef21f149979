"""Async utilities for polling, injected time and subprocess execution.

This module provides utilities for:
- An injectable Clock so waits and retries can be simulated in tests
- poll_until(): cooperative "poll until predicate or deadline" loops
- Running subprocesses asynchronously without blocking the event loop

Use `async_subprocess_run()` instead of `subprocess.run()` in async contexts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from scalezero.utils.exceptions import PollTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Clock
# =============================================================================


class Clock:
    """Source of time and sleeping for every wait loop in scalezero.

    Components take a Clock in their constructor instead of calling
    time.time() / asyncio.sleep() directly, so tests can swap in a fake
    that advances instantly.
    """

    def now(self) -> float:
        """Wall-clock time in epoch seconds (used for lease expiry)."""
        return time.time()

    def monotonic(self) -> float:
        """Monotonic time in seconds (used for deadlines)."""
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        """Suspend the current task for the given number of seconds."""
        await asyncio.sleep(max(0.0, seconds))


SYSTEM_CLOCK = Clock()


# =============================================================================
# Polling
# =============================================================================


async def poll_until(
    predicate: Callable[[], Awaitable[T | None]],
    *,
    interval: float,
    timeout: float,
    description: str = "condition",
    clock: Clock | None = None,
) -> T:
    """Call ``predicate`` until it returns a truthy value or the deadline passes.

    The predicate is always called at least once. Exceptions raised by the
    predicate propagate to the caller unchanged.

    Args:
        predicate: Async callable returning a truthy value once satisfied.
        interval: Seconds to sleep between attempts.
        timeout: Maximum seconds to keep polling.
        description: Human-readable name of what is awaited (for errors/logs).
        clock: Clock to use (defaults to the system clock).

    Returns:
        The first truthy value returned by the predicate.

    Raises:
        PollTimeoutError: If the predicate never succeeds before the deadline.

    Example:
        unit = await poll_until(
            lambda: find_running_unit(ref),
            interval=3.0,
            timeout=300.0,
            description="backend RUNNING",
        )
    """
    clock = clock or SYSTEM_CLOCK
    deadline = clock.monotonic() + timeout
    attempts = 0

    while True:
        attempts += 1
        result = await predicate()
        if result:
            return result

        remaining = deadline - clock.monotonic()
        if remaining <= 0:
            logger.debug(f"Gave up waiting for {description} after {attempts} attempts")
            raise PollTimeoutError(description, timeout)

        await clock.sleep(min(interval, remaining))


# =============================================================================
# Async Subprocess Utilities
# =============================================================================


class SubprocessError(Exception):
    """Error raised when async subprocess execution fails."""

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class SubprocessTimeoutError(SubprocessError):
    """Error raised when subprocess times out."""

    pass


@dataclass
class SubprocessResult:
    """Result of async subprocess execution.

    Attributes:
        returncode: Exit code from the process (0 = success).
        stdout: Captured standard output as string.
        stderr: Captured standard error as string.
    """

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        """Check if process exited successfully (returncode == 0)."""
        return self.returncode == 0


async def async_subprocess_run(
    cmd: Sequence[str],
    *,
    timeout: float = 30.0,
    check: bool = False,
) -> SubprocessResult:
    """Run a subprocess asynchronously without blocking the event loop.

    Args:
        cmd: Command and arguments as a sequence (e.g., ["pkill", "-TERM", "supervisord"]).
        timeout: Maximum time to wait in seconds (default: 30).
        check: If True, raise SubprocessError on non-zero exit code.

    Returns:
        SubprocessResult with returncode, stdout, and stderr.

    Raises:
        SubprocessTimeoutError: If the process exceeds the timeout.
        SubprocessError: If check=True and process exits with non-zero code.
        OSError: If the command cannot be executed.
    """
    proc: asyncio.subprocess.Process | None = None
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            proc.communicate(),
            timeout=timeout,
        )

        stdout = stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else ""
        stderr = stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else ""
        returncode = proc.returncode or 0

        if check and returncode != 0:
            raise SubprocessError(
                f"Command {cmd[0]} failed with exit code {returncode}: {stderr}",
                returncode=returncode,
                stdout=stdout,
                stderr=stderr,
            )

        return SubprocessResult(returncode=returncode, stdout=stdout, stderr=stderr)

    except asyncio.TimeoutError:
        # Kill the process on timeout
        if proc is not None:
            proc.kill()
            await proc.wait()
        raise SubprocessTimeoutError(
            f"Command {cmd[0]} timed out after {timeout}s",
            returncode=-1,
        )
