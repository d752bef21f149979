"""Builds scalezero components wired to their AWS providers.

Every entry point (HTTP app, event handlers, container CLI) goes through
these builders so components are always constructed from one
ScaleZeroConfig.
"""

from __future__ import annotations

from scalezero.config.settings import ScaleZeroConfig
from scalezero.coordination.fleet_controller import FleetController
from scalezero.coordination.launch_orchestrator import LaunchOrchestrator
from scalezero.coordination.lease_store import DynamoLeaseStore
from scalezero.coordination.name_registration import NameRegistrar, PublicRecordRegistrar
from scalezero.providers.aws_autoscaling import AutoScalingFleetClient
from scalezero.providers.aws_dns import AwsNameRegistry, CloudMapRegistry, Route53PublicRecords
from scalezero.providers.aws_ecs import EcsProvisioningClient


def build_name_registry(config: ScaleZeroConfig) -> AwsNameRegistry:
    return AwsNameRegistry(
        private=CloudMapRegistry(config.namespace_id, region=config.region),
        public=Route53PublicRecords(config.hosted_zone_id, region=config.region),
    )


def build_launch_orchestrator(config: ScaleZeroConfig) -> LaunchOrchestrator:
    config.require_valid()
    return LaunchOrchestrator(
        config,
        provisioning=EcsProvisioningClient(config),
        fleet=AutoScalingFleetClient(region=config.region),
        leases=DynamoLeaseStore(
            config.lease_table, config.launch_lease_ttl, region=config.region
        ),
    )


def build_fleet_controller(config: ScaleZeroConfig) -> FleetController:
    return FleetController(
        config,
        provisioning=EcsProvisioningClient(config),
        fleet=AutoScalingFleetClient(region=config.region),
        leases=DynamoLeaseStore(
            config.lease_table, config.fleet_lease_ttl, region=config.region
        ),
    )


def build_name_registrar(config: ScaleZeroConfig) -> NameRegistrar:
    return NameRegistrar(config, build_name_registry(config))


def build_public_registrar(config: ScaleZeroConfig) -> PublicRecordRegistrar:
    return PublicRecordRegistrar(config, build_name_registry(config))
