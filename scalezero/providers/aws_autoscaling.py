"""EC2 Auto Scaling implementation of FleetSizingAPI.

The backend fleet is one Auto Scaling group. It is either named in the
configuration or discovered through its instances or its ECSCluster tag.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from scalezero.core.models import FleetDescription, FleetInstance

from .base import FleetSizingAPI

logger = logging.getLogger(__name__)

# SetInstanceProtection accepts at most this many instance ids per call
PROTECTION_BATCH_SIZE = 50


def parse_group(group: dict[str, Any]) -> FleetDescription:
    return FleetDescription(
        fleet_id=group.get("AutoScalingGroupName", ""),
        desired=int(group.get("DesiredCapacity", 0)),
        max_size=int(group.get("MaxSize", 0)),
        min_size=int(group.get("MinSize", 0)),
        instances=[
            FleetInstance(
                instance_id=inst.get("InstanceId", ""),
                lifecycle_state=inst.get("LifecycleState", ""),
                protected_from_scale_in=bool(inst.get("ProtectedFromScaleIn", False)),
            )
            for inst in group.get("Instances") or []
        ],
    )


class AutoScalingFleetClient(FleetSizingAPI):
    """FleetSizingAPI backed by the EC2 Auto Scaling API."""

    def __init__(self, region: str | None = None, client: Any | None = None):
        self._region = region
        self._client = client

    @property
    def client(self) -> Any:
        """Lazily create the Auto Scaling client."""
        if self._client is None:
            import boto3
            from botocore.config import Config

            self._client = boto3.client(
                "autoscaling",
                region_name=self._region or None,
                config=Config(retries={"max_attempts": 5, "mode": "standard"}),
            )
        return self._client

    def _all_groups_sync(self, **kwargs: Any) -> list[dict[str, Any]]:
        groups: list[dict[str, Any]] = []
        paginator = self.client.get_paginator("describe_auto_scaling_groups")
        for page in paginator.paginate(**kwargs):
            groups.extend(page.get("AutoScalingGroups", []))
        return groups

    async def describe_fleet(self, fleet_id: str) -> FleetDescription | None:
        groups = await asyncio.to_thread(
            self._all_groups_sync, AutoScalingGroupNames=[fleet_id]
        )
        if not groups:
            return None
        return parse_group(groups[0])

    async def set_desired_capacity(self, fleet_id: str, desired: int) -> None:
        logger.info(f"[{fleet_id}] Setting desired capacity to {desired}")
        await asyncio.to_thread(
            self.client.set_desired_capacity,
            AutoScalingGroupName=fleet_id,
            DesiredCapacity=desired,
            HonorCooldown=False,
        )

    async def set_instance_protection(
        self, fleet_id: str, instance_ids: Sequence[str], protected: bool
    ) -> None:
        ids = list(instance_ids)
        for i in range(0, len(ids), PROTECTION_BATCH_SIZE):
            await asyncio.to_thread(
                self.client.set_instance_protection,
                AutoScalingGroupName=fleet_id,
                InstanceIds=ids[i:i + PROTECTION_BATCH_SIZE],
                ProtectedFromScaleIn=protected,
            )
        logger.debug(
            f"[{fleet_id}] {'Protected' if protected else 'Unprotected'} {len(ids)} instance(s)"
        )

    async def find_fleet_for_instance(self, instance_id: str) -> str | None:
        response = await asyncio.to_thread(
            self.client.describe_auto_scaling_instances,
            InstanceIds=[instance_id],
        )
        instances = response.get("AutoScalingInstances") or []
        if not instances:
            return None
        return instances[0].get("AutoScalingGroupName")

    async def find_fleet_by_tag(self, key: str, value: str) -> str | None:
        groups = await asyncio.to_thread(
            self._all_groups_sync,
            Filters=[{"Name": f"tag:{key}", "Values": [value]}],
        )
        for group in groups:
            if any(t.get("Key") == key and t.get("Value") == value for t in group.get("Tags", [])):
                return group.get("AutoScalingGroupName")
        return None
