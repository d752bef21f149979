"""ECS implementation of ProvisioningAPI.

Pools are ECS clusters, units are tasks, hosts are container instances.
Frontends run on Fargate with a public IP; backends run on EC2 container
instances in private subnets.

All boto3 calls are blocking and are pushed to a worker thread with
asyncio.to_thread(). List calls are paginated; describe calls are batched
by 100 (the ECS limit).

Usage:
    from scalezero.providers.aws_ecs import EcsProvisioningClient

    provisioning = EcsProvisioningClient(config)
    units = await provisioning.describe_all_units(config.backend_pool)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from scalezero.config.settings import ScaleZeroConfig
from scalezero.core.models import WORKLOAD_METADATA_KEY, EndpointRole, HostDetail, UnitDetail
from scalezero.core.names import started_by_tag
from scalezero.utils.exceptions import ProvisioningError

from .base import ProvisioningAPI

logger = logging.getLogger(__name__)

DESCRIBE_BATCH_SIZE = 100


def _batches(items: Sequence[str], size: int = DESCRIBE_BATCH_SIZE) -> list[list[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def parse_task(task: dict[str, Any]) -> UnitDetail:
    """Convert a DescribeTasks entry into a UnitDetail."""
    metadata: dict[str, str] = {}
    for override in (task.get("overrides") or {}).get("containerOverrides") or []:
        for env in override.get("environment") or []:
            if env.get("name") and env.get("value") is not None:
                metadata.setdefault(env["name"], env["value"])

    return UnitDetail(
        ref=task.get("taskArn", ""),
        status=task.get("lastStatus", "UNKNOWN"),
        launch_type=task.get("launchType", ""),
        address=task_private_ip(task),
        started_by=task.get("startedBy"),
        metadata=metadata,
        host_ref=task.get("containerInstanceArn"),
        raw_data=task,
    )


def task_private_ip(task: dict[str, Any]) -> str | None:
    """Private IPv4 of an attached ENI, else of the first container interface."""
    for attachment in task.get("attachments") or []:
        if attachment.get("status") != "ATTACHED":
            continue
        for item in attachment.get("details") or []:
            if item.get("name") == "privateIPv4Address" and item.get("value"):
                return item["value"]

    for container in task.get("containers") or []:
        interfaces = container.get("networkInterfaces") or []
        if interfaces and interfaces[0].get("privateIpv4Address"):
            return interfaces[0]["privateIpv4Address"]
    return None


def parse_container_instance(instance: dict[str, Any]) -> HostDetail:
    remaining = {
        r.get("name"): r.get("integerValue", 0)
        for r in instance.get("remainingResources") or []
    }
    return HostDetail(
        ref=instance.get("containerInstanceArn", ""),
        instance_id=instance.get("ec2InstanceId"),
        active=instance.get("status", "ACTIVE") == "ACTIVE",
        connected=bool(instance.get("agentConnected", False)),
        remaining_cpu=int(remaining.get("CPU") or 0),
        remaining_memory=int(remaining.get("MEMORY") or 0),
    )


class EcsProvisioningClient(ProvisioningAPI):
    """ProvisioningAPI backed by the ECS API."""

    def __init__(self, config: ScaleZeroConfig, client: Any | None = None):
        self.config = config
        self._client = client

    @property
    def client(self) -> Any:
        """Lazily create the ECS client."""
        if self._client is None:
            import boto3
            from botocore.config import Config

            self._client = boto3.client(
                "ecs",
                region_name=self.config.region or None,
                config=Config(retries={"max_attempts": 5, "mode": "standard"}),
            )
        return self._client

    # -------------------------------------------------------------------------
    # Units
    # -------------------------------------------------------------------------

    def _list_units_sync(self, pool: str, desired_status: str) -> list[str]:
        refs: list[str] = []
        paginator = self.client.get_paginator("list_tasks")
        for page in paginator.paginate(cluster=pool, desiredStatus=desired_status):
            refs.extend(page.get("taskArns", []))
        return refs

    async def list_units(self, pool: str, desired_status: str = "RUNNING") -> list[str]:
        return await asyncio.to_thread(self._list_units_sync, pool, desired_status)

    def _describe_units_sync(self, pool: str, refs: Sequence[str]) -> list[UnitDetail]:
        units: list[UnitDetail] = []
        for batch in _batches(refs):
            response = self.client.describe_tasks(cluster=pool, tasks=batch)
            units.extend(parse_task(task) for task in response.get("tasks", []))
        return units

    async def describe_units(self, pool: str, refs: Sequence[str]) -> list[UnitDetail]:
        if not refs:
            return []
        return await asyncio.to_thread(self._describe_units_sync, pool, refs)

    def _run_task_request(
        self,
        pool: str,
        template: str,
        role: EndpointRole,
        workload: str,
        overrides: dict[str, str],
    ) -> dict[str, Any]:
        environment = [{"name": WORKLOAD_METADATA_KEY, "value": workload}]
        environment.extend({"name": k, "value": v} for k, v in overrides.items())

        return {
            "cluster": pool,
            "taskDefinition": template,
            "launchType": role.launch_type,
            "count": 1,
            "startedBy": started_by_tag(workload, self.config.started_by_prefix),
            "networkConfiguration": {
                "awsvpcConfiguration": {
                    "subnets": self.config.subnets_for(role),
                    "securityGroups": [self.config.security_group],
                    "assignPublicIp": "ENABLED" if role is EndpointRole.FRONTEND else "DISABLED",
                },
            },
            "overrides": {
                "containerOverrides": [
                    {
                        "name": self.config.container_for(role),
                        "environment": environment,
                    },
                ],
            },
        }

    async def create_unit(
        self,
        pool: str,
        template: str,
        role: EndpointRole,
        workload: str,
        overrides: dict[str, str],
    ) -> str:
        request = self._run_task_request(pool, template, role, workload, overrides)
        response = await asyncio.to_thread(self.client.run_task, **request)

        tasks = response.get("tasks") or []
        if tasks and tasks[0].get("taskArn"):
            return tasks[0]["taskArn"]

        failures = response.get("failures") or []
        reason = failures[0].get("reason", "") if failures else ""
        raise ProvisioningError(
            f"Failed to launch {role.value} task for {workload}: {reason or 'unknown'}",
            reason=reason,
        )

    # -------------------------------------------------------------------------
    # Hosts
    # -------------------------------------------------------------------------

    def _list_hosts_sync(self, pool: str) -> list[str]:
        refs: list[str] = []
        paginator = self.client.get_paginator("list_container_instances")
        for page in paginator.paginate(cluster=pool):
            refs.extend(page.get("containerInstanceArns", []))
        return refs

    async def list_hosts(self, pool: str) -> list[str]:
        return await asyncio.to_thread(self._list_hosts_sync, pool)

    def _describe_hosts_sync(self, pool: str, refs: Sequence[str]) -> list[HostDetail]:
        hosts: list[HostDetail] = []
        for batch in _batches(refs):
            response = self.client.describe_container_instances(
                cluster=pool, containerInstances=batch
            )
            hosts.extend(
                parse_container_instance(ci) for ci in response.get("containerInstances", [])
            )
        return hosts

    async def describe_hosts(self, pool: str, refs: Sequence[str]) -> list[HostDetail]:
        if not refs:
            return []
        return await asyncio.to_thread(self._describe_hosts_sync, pool, refs)
