"""Retry and backoff strategies for scalezero coordination loops.

Two loops in scalezero need a delay policy:
- The launch orchestrator retries backend creation after capacity-class
  failures (fixed delay, bounded attempts).
- The peer health monitor spaces out its probe cycles (fixed interval, or
  exponential backoff while the peer keeps failing).

Available Strategies:
- FixedDelayStrategy: Constant delay between attempts
- ExponentialBackoffStrategy: base * multiplier^(n-1), capped

Usage:
    from scalezero.coordination.retry_strategies import (
        FixedDelayStrategy,
        RetryContext,
    )

    strategy = FixedDelayStrategy(max_retries=3, delay=10.0)
    ctx = RetryContext(target="demo", operation="create_backend")

    while True:
        try:
            return await create()
        except ProvisioningError as e:
            ctx.record_failure(e)
            if not strategy.should_retry(ctx):
                raise
            await clock.sleep(strategy.get_delay(ctx))
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class RetryContext:
    """Context for tracking retry state of a single operation."""

    target: str = ""  # Workload name, URL, etc.
    operation: str = ""  # Operation name for logging
    attempt: int = 0  # Failures recorded so far
    failures: list[Exception] = field(default_factory=list)
    total_delay: float = 0.0

    def record_failure(self, error: Exception) -> None:
        """Record a failure for this operation."""
        self.failures.append(error)
        self.attempt += 1

    def record_delay(self, delay: float) -> None:
        self.total_delay += delay


# =============================================================================
# Base Strategy Class
# =============================================================================


class RetryStrategy(ABC):
    """Abstract base class for retry strategies.

    Implementations define:
    - should_retry(): Whether to continue retrying
    - get_delay(): How long to wait before next attempt
    """

    def __init__(self, max_retries: int = 3, max_delay: float = 60.0):
        """Initialize the retry strategy.

        Args:
            max_retries: Maximum number of retries after the first failure
            max_delay: Maximum delay between attempts (seconds)
        """
        self.max_retries = max_retries
        self.max_delay = max_delay

    @abstractmethod
    def get_delay(self, ctx: RetryContext) -> float:
        """Calculate delay before the next attempt."""

    def should_retry(self, ctx: RetryContext) -> bool:
        """True while the number of recorded failures is within the budget."""
        return ctx.attempt <= self.max_retries

    def on_retry(self, ctx: RetryContext, delay: float) -> None:
        """Called before each retry. Override for custom logging."""
        logger.debug(
            f"[{self.__class__.__name__}] Retry {ctx.attempt}/{self.max_retries} "
            f"for {ctx.operation} on {ctx.target} in {delay:.2f}s"
        )


# =============================================================================
# Concrete Strategies
# =============================================================================


class FixedDelayStrategy(RetryStrategy):
    """Constant delay between attempts."""

    def __init__(self, max_retries: int = 3, delay: float = 5.0):
        super().__init__(max_retries=max_retries, max_delay=delay)
        self.delay = delay

    def get_delay(self, ctx: RetryContext) -> float:
        return self.delay


class ExponentialBackoffStrategy(RetryStrategy):
    """Exponential backoff retry strategy.

    Delay after n consecutive failures is base_delay * multiplier^(n-1),
    capped at max_delay. With no failures recorded the delay is base_delay.
    Common pattern: 5s, 5s, 10s, 20s, 30s, 30s, ...
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 60.0,
    ):
        """Initialize exponential backoff.

        Args:
            max_retries: Maximum retry attempts
            base_delay: Initial delay in seconds
            multiplier: Exponential multiplier (typically 2)
            max_delay: Maximum delay cap
        """
        super().__init__(max_retries, max_delay)
        self.base_delay = base_delay
        self.multiplier = multiplier

    def get_delay(self, ctx: RetryContext) -> float:
        exponent = max(ctx.attempt - 1, 0)
        delay = self.base_delay * (self.multiplier ** exponent)
        return min(delay, self.max_delay)
