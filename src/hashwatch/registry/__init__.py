"""Registry module — discovered and user-added remote services."""

from hashwatch.registry.services import (
    DiscoveryClient,
    DiscoveryResult,
    RefreshResult,
    ServiceRegistry,
)

__all__ = ["DiscoveryClient", "DiscoveryResult", "RefreshResult", "ServiceRegistry"]
