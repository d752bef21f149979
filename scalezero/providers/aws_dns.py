"""Cloud Map and Route 53 implementation of NameRegistryAPI.

CloudMapRegistry keeps the private per-endpoint records; Route53PublicRecords
writes the public ``<workload>.<domain>`` record. AwsNameRegistry puts the
two behind the single NameRegistryAPI the registrars use.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from scalezero.utils.exceptions import AWS_ERRORS, aws_error_code

from .base import NameRegistryAPI

logger = logging.getLogger(__name__)

RECORD_TTL = 60

# Registering an instance that is already registered
DUPLICATE_REGISTRATION_CODES = frozenset({"DuplicateRequest", "ResourceInUse", "ResourceInUseException"})
INSTANCE_NOT_FOUND_CODES = frozenset({"InstanceNotFound"})


def _boto_client(service: str, region: str | None) -> Any:
    import boto3
    from botocore.config import Config

    return boto3.client(
        service,
        region_name=region or None,
        config=Config(retries={"max_attempts": 5, "mode": "standard"}),
    )


class CloudMapRegistry:
    """Private name records in one Cloud Map DNS namespace."""

    def __init__(
        self,
        namespace_id: str,
        region: str | None = None,
        client: Any | None = None,
        record_ttl: int = RECORD_TTL,
    ):
        self.namespace_id = namespace_id
        self.record_ttl = record_ttl
        self._region = region
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = _boto_client("servicediscovery", self._region)
        return self._client

    def _find_service_sync(self, name: str) -> str | None:
        paginator = self.client.get_paginator("list_services")
        for page in paginator.paginate(
            Filters=[{"Name": "NAMESPACE_ID", "Values": [self.namespace_id], "Condition": "EQ"}]
        ):
            for service in page.get("Services", []):
                if service.get("Name") == name:
                    return service.get("Id")
        return None

    async def find_service(self, name: str) -> str | None:
        return await asyncio.to_thread(self._find_service_sync, name)

    async def get_or_create_service(self, name: str) -> str:
        service_id = await self.find_service(name)
        if service_id:
            return service_id

        response = await asyncio.to_thread(
            self.client.create_service,
            Name=name,
            NamespaceId=self.namespace_id,
            DnsConfig={"DnsRecords": [{"Type": "A", "TTL": self.record_ttl}]},
        )
        logger.info(f"[{name}] Created registry service")
        return response["Service"]["Id"]

    async def register_instance(
        self, service_id: str, instance_id: str, ipv4: str, port: int
    ) -> None:
        try:
            await asyncio.to_thread(
                self.client.register_instance,
                ServiceId=service_id,
                InstanceId=instance_id,
                Attributes={
                    "AWS_INSTANCE_IPV4": ipv4,
                    "AWS_INSTANCE_PORT": str(port),
                },
            )
        except AWS_ERRORS as e:
            if aws_error_code(e) in DUPLICATE_REGISTRATION_CODES:
                logger.debug(f"[{service_id}] {instance_id} already registered")
                return
            raise

    async def deregister_instance(self, service_id: str, instance_id: str) -> None:
        try:
            await asyncio.to_thread(
                self.client.get_instance, ServiceId=service_id, InstanceId=instance_id
            )
            await asyncio.to_thread(
                self.client.deregister_instance, ServiceId=service_id, InstanceId=instance_id
            )
        except AWS_ERRORS as e:
            if aws_error_code(e) in INSTANCE_NOT_FOUND_CODES:
                logger.debug(f"[{service_id}] {instance_id} not registered")
                return
            raise


class Route53PublicRecords:
    """A records in the public hosted zone."""

    def __init__(self, hosted_zone_id: str, region: str | None = None, client: Any | None = None):
        self.hosted_zone_id = hosted_zone_id
        self._region = region
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = _boto_client("route53", self._region)
        return self._client

    async def upsert_a_record(self, name: str, ipv4: str, ttl: int = RECORD_TTL) -> None:
        await asyncio.to_thread(
            self.client.change_resource_record_sets,
            HostedZoneId=self.hosted_zone_id,
            ChangeBatch={
                "Changes": [
                    {
                        "Action": "UPSERT",
                        "ResourceRecordSet": {
                            "Name": name,
                            "Type": "A",
                            "TTL": ttl,
                            "ResourceRecords": [{"Value": ipv4}],
                        },
                    },
                ],
            },
        )


class AwsNameRegistry(NameRegistryAPI):
    """NameRegistryAPI over Cloud Map (private) and Route 53 (public)."""

    def __init__(self, private: CloudMapRegistry, public: Route53PublicRecords):
        self.private = private
        self.public = public

    async def get_or_create_service(self, name: str) -> str:
        return await self.private.get_or_create_service(name)

    async def find_service(self, name: str) -> str | None:
        return await self.private.find_service(name)

    async def register_instance(
        self, service_id: str, instance_id: str, ipv4: str, port: int
    ) -> None:
        await self.private.register_instance(service_id, instance_id, ipv4, port)

    async def deregister_instance(self, service_id: str, instance_id: str) -> None:
        await self.private.deregister_instance(service_id, instance_id)

    async def upsert_public_record(self, name: str, ipv4: str, ttl: int = RECORD_TTL) -> None:
        await self.public.upsert_a_record(name, ipv4, ttl)
