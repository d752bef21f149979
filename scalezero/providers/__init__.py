"""Provider interfaces and their AWS implementations."""

from .base import FleetSizingAPI, NameRegistryAPI, ProvisioningAPI

__all__ = [
    "FleetSizingAPI",
    "NameRegistryAPI",
    "ProvisioningAPI",
]
