"""Tests for the Cloud Map and Route 53 name registry (botocore Stubber)."""

from __future__ import annotations

import datetime

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from scalezero.providers.aws_dns import AwsNameRegistry, CloudMapRegistry, Route53PublicRecords

NAMESPACE_FILTER = [{"Name": "NAMESPACE_ID", "Values": ["ns-123"], "Condition": "EQ"}]


def _client(service):
    return boto3.client(
        service,
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def sd_client():
    return _client("servicediscovery")


@pytest.fixture
def r53_client():
    return _client("route53")


@pytest.fixture
def cloud_map(sd_client):
    return CloudMapRegistry("ns-123", client=sd_client)


class TestCloudMapRegistry:
    """Tests for CloudMapRegistry."""

    @pytest.mark.asyncio
    async def test_find_service(self, cloud_map, sd_client):
        with Stubber(sd_client) as stubber:
            stubber.add_response(
                "list_services",
                {"Services": [
                    {"Id": "srv-1", "Name": "other.backend"},
                    {"Id": "srv-2", "Name": "demo.backend"},
                ]},
                {"Filters": NAMESPACE_FILTER},
            )
            assert await cloud_map.find_service("demo.backend") == "srv-2"

    @pytest.mark.asyncio
    async def test_get_or_create_creates_missing_service(self, cloud_map, sd_client):
        with Stubber(sd_client) as stubber:
            stubber.add_response("list_services", {"Services": []})
            stubber.add_response("create_service", {"Service": {"Id": "srv-9", "Name": "demo.frontend"}})
            assert await cloud_map.get_or_create_service("demo.frontend") == "srv-9"
            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_get_or_create_reuses_existing(self, cloud_map, sd_client):
        with Stubber(sd_client) as stubber:
            stubber.add_response("list_services", {"Services": [{"Id": "srv-2", "Name": "demo.backend"}]})
            assert await cloud_map.get_or_create_service("demo.backend") == "srv-2"
            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_register_instance(self, cloud_map, sd_client):
        with Stubber(sd_client) as stubber:
            stubber.add_response("register_instance", {"OperationId": "op-1"})
            await cloud_map.register_instance("srv-2", "abc123", "10.0.1.5", 9050)
            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_duplicate_registration_is_ignored(self, cloud_map, sd_client):
        with Stubber(sd_client) as stubber:
            stubber.add_client_error("register_instance", service_error_code="DuplicateRequest")
            await cloud_map.register_instance("srv-2", "abc123", "10.0.1.5", 9050)

    @pytest.mark.asyncio
    async def test_other_registration_errors_raise(self, cloud_map, sd_client):
        with Stubber(sd_client) as stubber:
            stubber.add_client_error("register_instance", service_error_code="ServiceNotFound")
            with pytest.raises(ClientError):
                await cloud_map.register_instance("srv-2", "abc123", "10.0.1.5", 9050)

    @pytest.mark.asyncio
    async def test_deregister_instance(self, cloud_map, sd_client):
        params = {"ServiceId": "srv-2", "InstanceId": "abc123"}
        with Stubber(sd_client) as stubber:
            stubber.add_response("get_instance", {"Instance": {"Id": "abc123"}}, params)
            stubber.add_response("deregister_instance", {"OperationId": "op-2"}, params)
            await cloud_map.deregister_instance("srv-2", "abc123")
            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_deregister_unknown_instance(self, cloud_map, sd_client):
        with Stubber(sd_client) as stubber:
            stubber.add_client_error("get_instance", service_error_code="InstanceNotFound")
            await cloud_map.deregister_instance("srv-2", "abc123")
            stubber.assert_no_pending_responses()


class TestRoute53PublicRecords:
    @pytest.mark.asyncio
    async def test_upsert(self, r53_client, sd_client):
        registry = AwsNameRegistry(
            CloudMapRegistry("ns-123", client=sd_client),
            Route53PublicRecords("Z123", client=r53_client),
        )
        with Stubber(r53_client) as stubber:
            stubber.add_response(
                "change_resource_record_sets",
                {"ChangeInfo": {
                    "Id": "/change/C1",
                    "Status": "PENDING",
                    "SubmittedAt": datetime.datetime(2026, 1, 1, tzinfo=datetime.timezone.utc),
                }},
                {
                    "HostedZoneId": "Z123",
                    "ChangeBatch": {"Changes": [{
                        "Action": "UPSERT",
                        "ResourceRecordSet": {
                            "Name": "demo.example.com",
                            "Type": "A",
                            "TTL": 60,
                            "ResourceRecords": [{"Value": "54.1.2.3"}],
                        },
                    }]},
                },
            )
            await registry.upsert_public_record("demo.example.com", "54.1.2.3")
            stubber.assert_no_pending_responses()
