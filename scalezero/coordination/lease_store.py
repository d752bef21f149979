"""Time-bounded mutual exclusion keyed by string.

A lease is a record (key, acquired_at, expires_at). Acquisition is a single
conditional write that succeeds only if no record exists for the key or the
existing record has expired, so two concurrent launches of the same workload
can never both proceed. A holder that crashes is recovered from once the TTL
passes; there is no heartbeat or renewal.

Stores:
- DynamoLeaseStore: DynamoDB table, conditional PutItem (production)
- InMemoryLeaseStore: dict guarded by an asyncio.Lock (local runs, tests)

Usage:
    from scalezero.coordination.lease_store import DynamoLeaseStore

    leases = DynamoLeaseStore(table_name="launch-locks", ttl_seconds=900)
    result = await leases.acquire("demo")
    if not result.granted:
        return starting(result.reason)
    try:
        ...
    finally:
        await leases.release("demo")
"""

from __future__ import annotations

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from scalezero.core.models import LeaseRecord
from scalezero.utils.async_utils import SYSTEM_CLOCK, Clock
from scalezero.utils.exceptions import AWS_ERRORS, aws_error_code, log_and_continue

logger = logging.getLogger(__name__)

LEASE_IN_PROGRESS_REASON = "in progress"

FLEET_LEASE_PREFIX = "fleet#"


def fleet_lease_key(fleet_id: str) -> str:
    """Lease key for the fleet controller ('#' never appears in workload names)."""
    return f"{FLEET_LEASE_PREFIX}{fleet_id}"


@dataclass
class LeaseResult:
    """Outcome of an acquire() call. Contention is a result, not an error."""

    granted: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.granted


class LeaseStore(ABC):
    """Common interface and TTL handling for lease stores."""

    def __init__(self, ttl_seconds: int, clock: Clock | None = None):
        self.ttl_seconds = ttl_seconds
        self.clock = clock or SYSTEM_CLOCK

    def _now(self) -> int:
        return math.floor(self.clock.now())

    @abstractmethod
    async def acquire(self, key: str) -> LeaseResult:
        """Try to take the lease for ``key``.

        Returns granted=True if no record existed or the record had expired.
        Store failures other than contention propagate.
        """

    @abstractmethod
    async def release(self, key: str) -> None:
        """Delete the lease for ``key``. Never raises."""

    @abstractmethod
    async def is_held(self, key: str) -> bool:
        """True if an unexpired record exists. Read errors count as not held."""


# =============================================================================
# DynamoDB
# =============================================================================


class DynamoLeaseStore(LeaseStore):
    """Lease store backed by a DynamoDB table keyed by ``key_attribute``.

    Items carry ``locked_at`` and ``ttl`` (epoch seconds). The table's native
    TTL can be enabled on ``ttl`` for garbage collection, but expiry is always
    enforced by the conditional write itself.
    """

    def __init__(
        self,
        table_name: str,
        ttl_seconds: int,
        client: Any | None = None,
        key_attribute: str = "lock_key",
        region: str | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(ttl_seconds, clock)
        self.table_name = table_name
        self.key_attribute = key_attribute
        self._region = region
        self._client = client

    @property
    def client(self) -> Any:
        """Lazily create the DynamoDB client."""
        if self._client is None:
            import boto3
            from botocore.config import Config

            self._client = boto3.client(
                "dynamodb",
                region_name=self._region or None,
                config=Config(retries={"max_attempts": 5, "mode": "standard"}),
            )
        return self._client

    def _key(self, key: str) -> dict[str, Any]:
        return {self.key_attribute: {"S": key}}

    async def acquire(self, key: str) -> LeaseResult:
        now = self._now()
        item = {
            **self._key(key),
            "locked_at": {"N": str(now)},
            "ttl": {"N": str(now + self.ttl_seconds)},
        }

        try:
            await asyncio.to_thread(
                self.client.put_item,
                TableName=self.table_name,
                Item=item,
                ConditionExpression=f"attribute_not_exists({self.key_attribute}) OR #ttl < :now",
                # 'ttl' is a reserved word in DynamoDB expressions
                ExpressionAttributeNames={"#ttl": "ttl"},
                ExpressionAttributeValues={":now": {"N": str(now)}},
            )
        except AWS_ERRORS as e:
            if aws_error_code(e) == "ConditionalCheckFailedException":
                logger.info(f"[{key}] Lease held by another request")
                return LeaseResult(granted=False, reason=LEASE_IN_PROGRESS_REASON)
            raise

        logger.debug(f"[{key}] Lease acquired until {now + self.ttl_seconds}")
        return LeaseResult(granted=True)

    async def release(self, key: str) -> None:
        try:
            await asyncio.to_thread(
                self.client.delete_item,
                TableName=self.table_name,
                Key=self._key(key),
            )
            logger.debug(f"[{key}] Lease released")
        except AWS_ERRORS as e:
            # Expired or already released; the TTL bounds any leftover record
            log_and_continue(e, f"{key}:lease_release", logger)

    async def get(self, key: str) -> LeaseRecord | None:
        """Read the stored record for ``key`` (expired or not)."""
        response = await asyncio.to_thread(
            self.client.get_item,
            TableName=self.table_name,
            Key=self._key(key),
            ConsistentRead=True,
        )
        item = response.get("Item")
        if not item:
            return None
        return LeaseRecord(
            key=key,
            acquired_at=float(item.get("locked_at", {}).get("N", 0)),
            expires_at=float(item.get("ttl", {}).get("N", 0)),
        )

    async def is_held(self, key: str) -> bool:
        try:
            record = await self.get(key)
        except AWS_ERRORS as e:
            log_and_continue(e, f"{key}:lease_check", logger, level=logging.ERROR)
            return False

        if record is None:
            return False
        if record.is_expired(self._now()):
            await self.release(key)
            return False
        return True


# =============================================================================
# In-memory
# =============================================================================


class InMemoryLeaseStore(LeaseStore):
    """Process-local lease store with the same semantics as DynamoLeaseStore."""

    def __init__(self, ttl_seconds: int, clock: Clock | None = None):
        super().__init__(ttl_seconds, clock)
        self._records: dict[str, LeaseRecord] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, key: str) -> LeaseResult:
        async with self._lock:
            now = self._now()
            existing = self._records.get(key)
            if existing is not None and not existing.is_expired(now):
                return LeaseResult(granted=False, reason=LEASE_IN_PROGRESS_REASON)
            self._records[key] = LeaseRecord(
                key=key,
                acquired_at=now,
                expires_at=now + self.ttl_seconds,
            )
            return LeaseResult(granted=True)

    async def release(self, key: str) -> None:
        async with self._lock:
            self._records.pop(key, None)

    async def is_held(self, key: str) -> bool:
        async with self._lock:
            record = self._records.get(key)
            if record is None:
                return False
            if record.is_expired(self._now()):
                del self._records[key]
                return False
            return True

    async def get(self, key: str) -> LeaseRecord | None:
        return self._records.get(key)
